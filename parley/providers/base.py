"""Base LLM provider interface and response types."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import json_repair


@dataclass(frozen=True)
class Structured:
    """Tool arguments that decoded to a JSON object."""

    value: dict[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return dict(self.value)


@dataclass(frozen=True)
class Raw:
    """Tool arguments kept verbatim because they did not decode to an object."""

    text: str

    def as_dict(self) -> dict[str, Any]:
        return {"raw": self.text}


ParsedArgs: TypeAlias = Structured | Raw


def parse_arguments(raw: Any) -> ParsedArgs:
    """Best-effort decode of a tool-call ``arguments`` value.

    Dicts pass through; strings are decoded leniently with json_repair and
    anything that is not an object afterwards is wrapped as ``Raw``.
    """
    if isinstance(raw, dict):
        return Structured(raw)
    if raw is None:
        return Structured({})
    text = raw if isinstance(raw, str) else str(raw)
    if not text.strip():
        return Structured({})
    try:
        decoded = json.loads(text)
    except ValueError:
        try:
            decoded = json_repair.loads(text)
        except Exception:
            return Raw(text)
    if isinstance(decoded, dict):
        return Structured(decoded)
    return Raw(text)


@dataclass
class ToolCallRequest:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: ParsedArgs
    arguments_raw: str = "{}"


@dataclass
class LLMResponse:
    """Response from an LLM provider."""

    content: str | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


class LLMProvider(ABC):
    """
    Abstract base class for completion-service providers.

    Implementations raise ``ClientError`` for 4xx responses and
    ``TransportError`` for everything transport-related; retrying is the
    caller's job (see ``parley.providers.retry``).
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
        tool_choice: str | None = "auto",
        api_key: str | None = None,
    ) -> LLMResponse:
        """Send one chat completion request."""

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this provider."""
