"""Recover a tool invocation that the model wrote as plain text."""

from __future__ import annotations

import json
import re
import uuid
from typing import Any, Callable, Iterable

import json_repair

from parley.agent.tools.base import TOOL_RESULT_MARKER_RE
from parley.errors import ParseError
from parley.logging import get_logger
from parley.providers.base import ToolCallRequest, parse_arguments

logger = get_logger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]{0,63}$")
_TAG_RE = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*\s*\n(.*?)```", re.DOTALL)
_NAME_LINE_RE = re.compile(
    r"^\s*(?:(?:tool|function|call)\s*[:=]\s*)?`?([A-Za-z_][A-Za-z0-9_.-]{0,63})`?\s*:?\s*$",
    re.IGNORECASE,
)
_ARG_KEYS = ("arguments", "args", "parameters", "input")
_NAME_KEYS = ("name", "tool", "tool_name")


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        try:
            return json_repair.loads(text)
        except Exception as e:
            raise ParseError(f"not JSON: {e}") from e


def _call_from_obj(obj: Any, known: set[str] | None) -> tuple[str, Any]:
    """Pull (name, arguments) out of one of the common call shapes."""
    if not isinstance(obj, dict):
        raise ParseError("call is not an object")
    if isinstance(obj.get("tool_calls"), list) and obj["tool_calls"]:
        obj = obj["tool_calls"][0]
        if not isinstance(obj, dict):
            raise ParseError("tool_calls entry is not an object")
    fn = obj.get("function")
    if isinstance(fn, dict):
        obj = fn
    elif isinstance(fn, str) and "name" not in obj:
        obj = {**obj, "name": fn}

    name = next((obj[k] for k in _NAME_KEYS if isinstance(obj.get(k), str)), None)
    if not name or not _NAME_RE.match(name):
        raise ParseError("no usable tool name")
    has_args = any(k in obj for k in _ARG_KEYS)
    if not has_args and (known is None or name not in known):
        raise ParseError("object names no tool arguments")
    args = next((obj[k] for k in _ARG_KEYS if k in obj), {})
    return name, args


def _from_whole_body(text: str, known: set[str] | None) -> tuple[str, Any]:
    body = text.strip()
    if not body.startswith("{"):
        raise ParseError("body is not a JSON object")
    return _call_from_obj(_loads(body), known)


def _from_tag(text: str, known: set[str] | None) -> tuple[str, Any]:
    for m in _TAG_RE.finditer(text):
        try:
            return _call_from_obj(_loads(m.group(1)), known)
        except ParseError:
            continue
    raise ParseError("no tagged call")


def _from_fence(text: str, known: set[str] | None) -> tuple[str, Any]:
    for m in _FENCE_RE.finditer(text):
        inner = m.group(1).strip()
        if not inner.startswith("{"):
            continue
        try:
            return _call_from_obj(_loads(inner), known)
        except ParseError:
            continue
    raise ParseError("no fenced call")


def _from_name_line(text: str, known: set[str] | None) -> tuple[str, Any]:
    """``tool_name`` on its own line followed by a JSON object of arguments."""
    lines = text.splitlines()
    decoder = json.JSONDecoder()
    for idx, line in enumerate(lines[:-1]):
        m = _NAME_LINE_RE.match(line)
        if not m:
            continue
        name = m.group(1)
        if known is not None and name not in known:
            continue
        rest = "\n".join(lines[idx + 1:]).lstrip()
        if rest.startswith("```"):
            rest = rest.split("\n", 1)[1] if "\n" in rest else ""
        if not rest.startswith("{"):
            continue
        try:
            args, _ = decoder.raw_decode(rest)
        except ValueError:
            continue
        if isinstance(args, dict):
            return name, args
    raise ParseError("no name-line call")


_STRATEGIES: list[tuple[str, Callable[[str, set[str] | None], tuple[str, Any]]]] = [
    ("whole_body", _from_whole_body),
    ("tag", _from_tag),
    ("fence", _from_fence),
    ("name_line", _from_name_line),
]


def extract_pseudo_call(text: str | None, known_tools: Iterable[str] | None = None) -> ToolCallRequest | None:
    """Find at most one text-embedded tool call in *text*.

    Strategies run in order (whole-body JSON, ``<tool_call>`` tag, fenced
    block, name line plus JSON) and the first hit wins. Text carrying a
    tool-result marker is never treated as a call.
    """
    if not text or not text.strip():
        return None
    if TOOL_RESULT_MARKER_RE.search(text):
        logger.debug("pseudo_call_rejected_marker")
        return None

    known = set(known_tools) if known_tools is not None else None
    for label, strategy in _STRATEGIES:
        try:
            name, args = strategy(text, known)
        except ParseError:
            continue
        raw = args if isinstance(args, str) else json.dumps(args, ensure_ascii=False)
        logger.debug("pseudo_call_found", strategy=label, tool=name)
        return ToolCallRequest(
            id=f"pseudo_{uuid.uuid4().hex[:12]}",
            name=name,
            arguments=parse_arguments(args),
            arguments_raw=raw or "{}",
        )
    return None
