"""Build a protocol-correct outbound message list."""

from __future__ import annotations

import re
from typing import Any, Iterable

from parley.conversation.messages import Message
from parley.logging import get_logger

logger = get_logger(__name__)

_ALLOWED_KEYS = ("role", "content", "name", "tool_calls", "tool_call_id")
_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_RESERVED_NAMES = frozenset({"system", "user", "assistant", "tool", "function", "developer"})


def _as_wire(msg: Message | dict[str, Any]) -> dict[str, Any]:
    wire = msg.to_wire() if isinstance(msg, Message) else dict(msg)
    clean = {k: wire[k] for k in _ALLOWED_KEYS if k in wire}
    content = clean.get("content")
    clean["content"] = "" if content is None else str(content)
    return clean


def _clean_name(wire: dict[str, Any]) -> None:
    name = wire.pop("name", None)
    if wire["role"] in ("system", "tool") or not isinstance(name, str):
        return
    if _NAME_RE.match(name) and name.lower() not in _RESERVED_NAMES:
        wire["name"] = name


def sanitize_outbound(messages: Iterable[Message | dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Return wire dicts safe to send to the completion service.

    Unknown keys are stripped and content is always a string. ``name`` is
    dropped for system and tool messages and kept elsewhere only if it is a
    valid, non-reserved identifier. Tool-result messages are kept only right
    after the assistant message whose call ids they answer; unanswered calls
    are removed from that assistant message.
    """
    wires = [_as_wire(m) for m in messages]
    out: list[dict[str, Any]] = []
    dropped = 0
    i = 0
    while i < len(wires):
        wire = wires[i]
        _clean_name(wire)
        role = wire.get("role")

        if role == "assistant" and wire.get("tool_calls"):
            calls = list(wire["tool_calls"])
            call_ids = {c.get("id") for c in calls}
            results: list[dict[str, Any]] = []
            answered: set[Any] = set()
            j = i + 1
            while j < len(wires) and wires[j].get("role") == "tool":
                result = wires[j]
                _clean_name(result)
                call_id = result.get("tool_call_id")
                if call_id in call_ids and call_id not in answered:
                    answered.add(call_id)
                    results.append(result)
                else:
                    dropped += 1
                j += 1

            kept_calls = [c for c in calls if c.get("id") in answered]
            text = wire["content"].strip()
            if kept_calls:
                assistant: dict[str, Any] = {"role": "assistant", "tool_calls": kept_calls}
                if text:
                    assistant["content"] = text
                if "name" in wire:
                    assistant["name"] = wire["name"]
                out.append(assistant)
                out.extend(results)
            elif text:
                out.append({k: v for k, v in wire.items() if k != "tool_calls"} | {"content": text})
            i = j
            continue

        if role == "tool":
            dropped += 1
            i += 1
            continue

        wire.pop("tool_calls", None)
        wire.pop("tool_call_id", None)
        out.append(wire)
        i += 1

    if dropped:
        logger.debug("outbound_orphan_tool_results_dropped", count=dropped)
    return out
