"""Tool contract types shared by the registry, executor and orchestrator."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol, TypeAlias

from parley.providers.base import ParsedArgs

TOOL_RESULT_PREFIX = "[tool-result:"
# Matches the marker wrapped around tool results that re-enter the model context.
TOOL_RESULT_MARKER_RE = re.compile(r"\[tool-result:[^\]\n]*\]")

TRUNCATION_MARKER = "\n... [truncated]"


def tool_result_marker(name: str) -> str:
    return f"{TOOL_RESULT_PREFIX}{name}]"


def wrap_tool_result(name: str, text: str) -> str:
    return f"{tool_result_marker(name)}\n{text}"


@dataclass(frozen=True)
class ToolInvocation:
    name: str
    arguments: ParsedArgs


@dataclass
class ToolRuntime:
    """Ambient facts a handler may need besides its arguments."""

    conversation_id: str
    model: str | None = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolOutcome:
    """Normalized result of one tool execution. ``payload`` keeps the structured value, if any."""

    tool: str
    text: str
    is_error: bool = False
    payload: Any = None


class CompleteFn(Protocol):
    """Re-enters the orchestrator for a sub-conversation and returns its answer."""

    def __call__(
        self,
        conversation: Any,
        params: Any | None = None,
        sequence_limit: int | None = None,
    ) -> Awaitable[str]: ...


ToolHandler: TypeAlias = Callable[[ToolInvocation, Any, CompleteFn, ToolRuntime], Any]


def persisted_copy(outcome: ToolOutcome, max_chars: int) -> str:
    """Marker-wrapped copy of a result for the log, body capped at *max_chars* (0 = no cap)."""
    body = outcome.text
    if max_chars > 0 and len(body) > max_chars:
        body = body[:max_chars] + TRUNCATION_MARKER
    return wrap_tool_result(outcome.tool, body)
