"""Message model and block helpers for the conversation buffer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

ROLES = frozenset({"system", "user", "assistant", "tool"})

SUMMARY_SENDER = "summary"

_SENDER_MAX_LEN = 64
_NON_IDENT_RE = re.compile(r"[^a-z0-9]+")


def sanitize_sender(value: Any) -> str:
    """Lower-case *value*, collapse non-alphanumerics to ``_`` and cap at 64 chars.

    >>> sanitize_sender("Ada Lovelace!")
    'ada_lovelace'
    """
    text = str(value or "").lower()
    text = _NON_IDENT_RE.sub("_", text).strip("_")[:_SENDER_MAX_LEN].rstrip("_")
    return text or "system"


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation carried by an assistant message."""

    id: str
    name: str
    arguments_raw: str = "{}"

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_raw or "{}"},
        }


@dataclass
class Message:
    role: str
    content: str = ""
    sender: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("Only assistant messages may carry tool calls")
        if self.tool_call_id is not None and self.role != "tool":
            raise ValueError("Only tool messages may carry a tool_call_id")
        self.content = "" if self.content is None else str(self.content)

    @property
    def is_summary(self) -> bool:
        return self.role == "assistant" and self.sender == SUMMARY_SENDER

    def to_wire(self) -> dict[str, Any]:
        """Chat-completion dict; ``sender`` travels as ``name``."""
        wire: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.sender:
            wire["name"] = self.sender
        if self.tool_calls:
            wire["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            wire["tool_call_id"] = self.tool_call_id
        return wire


def head_length(messages: list[Message]) -> int:
    """Length of the fixed prefix: the system message plus any summary messages."""
    i = 0
    if messages and messages[0].role == "system":
        i = 1
    while i < len(messages) and messages[i].is_summary:
        i += 1
    return i


def split_blocks(messages: list[Message]) -> tuple[list[Message], list[list[Message]]]:
    """Partition *messages* into leading non-user messages and user-led blocks.

    A block is one ``user`` message followed by every non-user message up to
    the next ``user`` message.
    """
    leading: list[Message] = []
    blocks: list[list[Message]] = []
    for msg in messages:
        if msg.role == "user":
            blocks.append([msg])
        elif blocks:
            blocks[-1].append(msg)
        else:
            leading.append(msg)
    return leading, blocks


def count_blocks(messages: list[Message]) -> int:
    return sum(1 for m in messages[head_length(messages):] if m.role == "user")


def apply_window(messages: list[Message], max_user_blocks: int | None) -> list[Message]:
    """Drop whole blocks from the oldest end until at most *max_user_blocks* remain.

    Non-user leftovers ahead of the first block go with the first evicted block.
    """
    if max_user_blocks is None:
        return messages
    head = head_length(messages)
    _, blocks = split_blocks(messages[head:])
    if len(blocks) <= max_user_blocks:
        return messages
    kept = blocks[len(blocks) - max_user_blocks:] if max_user_blocks > 0 else []
    trimmed = list(messages[:head])
    for block in kept:
        trimmed.extend(block)
    return trimmed
