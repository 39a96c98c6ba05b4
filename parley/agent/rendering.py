"""Turn the last tool result and the model's text into the user-facing answer."""

from __future__ import annotations

import json
from typing import Any

from parley.agent.tools.base import ToolOutcome, TOOL_RESULT_MARKER_RE

_URL_KEYS = ("url", "image_url", "link", "href")
_MAX_LABELED_ITEMS = 8
_MAX_BULLETS = 20
_SCALARS = (str, int, float, bool)


def _structured(outcome: ToolOutcome) -> Any:
    if outcome.payload is not None:
        return outcome.payload
    text = outcome.text.strip()
    if text[:1] in ("{", "["):
        try:
            return json.loads(text)
        except ValueError:
            return None
    return None


def _is_echo(text: str, outcome: ToolOutcome, payload: Any) -> bool:
    if TOOL_RESULT_MARKER_RE.search(text):
        return True
    if text == outcome.text.strip() and payload is not None:
        return True
    if payload is not None and text[:1] in ("{", "["):
        try:
            return json.loads(text) == payload
        except ValueError:
            return False
    return False


def _from_payload(tool: str, payload: Any) -> str:
    if isinstance(payload, dict):
        if payload.get("error"):
            return f"The tool '{payload.get('tool') or tool}' failed: {payload['error']}"
        for key in _URL_KEYS:
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        if payload and len(payload) <= _MAX_LABELED_ITEMS and all(
            v is None or isinstance(v, _SCALARS) for v in payload.values()
        ):
            return "\n".join(f"- {k}: {v}" for k, v in payload.items())
    elif isinstance(payload, list):
        if payload and len(payload) <= _MAX_BULLETS and all(isinstance(v, _SCALARS) for v in payload):
            return "\n".join(f"- {v}" for v in payload)
    else:
        return str(payload)
    return json.dumps(payload, ensure_ascii=False, indent=2)


def render_answer(model_text: str | None, outcome: ToolOutcome | None = None) -> str:
    """
    Final answer for a turn.

    Without a tool the trimmed model text is the answer. After a tool ran,
    the model's text is kept unless it is empty or just echoes the tool
    payload; in that case the answer is derived from the result: a URL
    field, a short ``- key: value`` list, bullets, or pretty-printed JSON.
    """
    text = (model_text or "").strip()
    if outcome is None:
        return text

    payload = _structured(outcome)
    if text and not _is_echo(text, outcome, payload):
        return text
    if payload is not None:
        return _from_payload(outcome.tool, payload)
    return outcome.text.strip()
