"""LLM provider abstraction module."""

from parley.providers.base import (
    LLMProvider,
    LLMResponse,
    ParsedArgs,
    Raw,
    Structured,
    ToolCallRequest,
    parse_arguments,
)
from parley.providers.retry import RetryPolicy, call_with_retry, exponential_backoff, is_transient

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ParsedArgs",
    "Raw",
    "Structured",
    "ToolCallRequest",
    "parse_arguments",
    "RetryPolicy",
    "call_with_retry",
    "exponential_backoff",
    "is_transient",
]
