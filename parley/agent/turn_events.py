"""Typed turn-event payloads emitted by the Orchestrator to observers."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Literal, TypeAlias, TypedDict

TURN_EVENT_TURN_START = "turn_start"
TURN_EVENT_TOOL_START = "tool_start"
TURN_EVENT_TOOL_END = "tool_end"
TURN_EVENT_TURN_END = "turn_end"
TURN_EVENT_NAMESPACE = "parley.turn"
TURN_EVENT_SCHEMA_VERSION = 1

TurnEventType: TypeAlias = Literal[
    "turn_start",
    "tool_start",
    "tool_end",
    "turn_end",
]


class BaseTurnEvent(TypedDict):
    namespace: str
    version: int
    type: TurnEventType
    turn_id: str
    conversation_id: str
    sequence: int
    timestamp_ms: int


class TurnStartEvent(BaseTurnEvent):
    type: Literal["turn_start"]
    initial_message_count: int
    sequence_limit: int
    pseudo_tool_calls: bool


class ToolStartEvent(BaseTurnEvent):
    type: Literal["tool_start"]
    send: int
    tool: str
    tool_call_id: str
    arguments: dict[str, Any]


class ToolEndEvent(BaseTurnEvent):
    type: Literal["tool_end"]
    send: int
    tool: str
    tool_call_id: str
    is_error: bool


class TurnEndEvent(BaseTurnEvent):
    type: Literal["turn_end"]
    sends: int
    tool_count: int
    continuations: int
    sequence_limit_reached: bool


TurnEventPayload: TypeAlias = TurnStartEvent | ToolStartEvent | ToolEndEvent | TurnEndEvent
TurnEventCallback: TypeAlias = Callable[[TurnEventPayload], Awaitable[None]]


def turn_event_trace_fields(event: TurnEventPayload) -> dict[str, Any]:
    """Common trace fields for event logging sinks."""
    return {
        "namespace": event.get("namespace"),
        "version": event.get("version"),
        "turn_id": event.get("turn_id"),
        "conversation_id": event.get("conversation_id"),
        "sequence": event.get("sequence"),
    }
