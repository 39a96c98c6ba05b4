"""Tool contract, registry and executor."""

from parley.agent.tools.base import (
    TOOL_RESULT_MARKER_RE,
    ToolInvocation,
    ToolOutcome,
    ToolRuntime,
    persisted_copy,
    tool_result_marker,
    wrap_tool_result,
)
from parley.agent.tools.executor import ToolExecutor, not_available_text
from parley.agent.tools.registry import ToolRegistry

__all__ = [
    "TOOL_RESULT_MARKER_RE",
    "ToolInvocation",
    "ToolOutcome",
    "ToolRuntime",
    "persisted_copy",
    "tool_result_marker",
    "wrap_tool_result",
    "ToolExecutor",
    "not_available_text",
    "ToolRegistry",
]
