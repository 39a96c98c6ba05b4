"""Dispatch tool invocations and normalize every outcome into text."""

from __future__ import annotations

import inspect
import json
import time
from typing import Any

from parley.agent.tools.base import CompleteFn, ToolInvocation, ToolOutcome, ToolRuntime
from parley.agent.tools.registry import ToolRegistry
from parley.logging import get_logger
from parley.providers.base import ParsedArgs, Raw

audit_log = get_logger("parley.audit")


def not_available_text(name: str) -> str:
    return f"Tool '{name}' not available."


def coerce_result(result: Any) -> tuple[str, Any]:
    """Turn a handler return value into (text, structured payload or None)."""
    if isinstance(result, str):
        return result, None
    if isinstance(result, (dict, list)):
        return json.dumps(result, ensure_ascii=False), result
    if isinstance(result, (int, float, bool)):
        return json.dumps(result), result
    return str(result), None


class ToolExecutor:
    """
    Runs one tool invocation against a registry.

    Never raises for tool-side problems: an unknown name yields a "not
    available" text and a handler exception yields an ``{"error", "tool"}``
    JSON payload, so the turn always continues.
    """

    _TRUNCATE_KEYS = {"content", "text", "prompt", "query", "message"}

    def __init__(self, registry: ToolRegistry | None = None, audit: bool = True):
        self.registry = registry if registry is not None else ToolRegistry()
        self._audit = audit

    def registry_for(self, conversation: Any) -> ToolRegistry:
        """The conversation's own registry when it has one, else the default."""
        own = getattr(conversation, "tool_registry", None)
        return own if own is not None else self.registry

    def _sanitize_params(self, arguments: ParsedArgs) -> dict[str, Any]:
        """Truncate long values for audit logging."""
        if isinstance(arguments, Raw):
            text = arguments.text
            return {"raw": text[:200] + "..." if len(text) > 200 else text}
        sanitized = {}
        for k, v in arguments.value.items():
            if k in self._TRUNCATE_KEYS and isinstance(v, str) and len(v) > 200:
                sanitized[k] = v[:200] + "..."
            else:
                sanitized[k] = v
        return sanitized

    async def execute(
        self,
        name: str,
        arguments: ParsedArgs,
        conversation: Any,
        runtime: ToolRuntime,
        complete: CompleteFn,
    ) -> ToolOutcome:
        tool = self.registry_for(conversation).get(name)
        if tool is None:
            if self._audit:
                audit_log.warning("tool_not_available", tool=name)
            return ToolOutcome(tool=name, text=not_available_text(name), is_error=True)

        if self._audit:
            audit_log.info("tool_call_started", tool=name, params=self._sanitize_params(arguments))

        t0 = time.monotonic()
        try:
            result = tool.handler(ToolInvocation(name=name, arguments=arguments), conversation, complete, runtime)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            if self._audit:
                audit_log.warning(
                    "tool_call_failed",
                    tool=name,
                    error_type=type(e).__name__,
                    error=str(e),
                    duration_ms=round((time.monotonic() - t0) * 1000, 1),
                )
            payload = {"error": str(e) or type(e).__name__, "tool": name}
            return ToolOutcome(
                tool=name,
                text=json.dumps(payload, ensure_ascii=False),
                is_error=True,
                payload=payload,
            )

        if result is None:
            outcome = ToolOutcome(tool=name, text=f"Tool '{name}' returned an empty result.", is_error=True)
        else:
            text, payload = coerce_result(result)
            outcome = ToolOutcome(tool=name, text=text, payload=payload)

        if self._audit:
            audit_log.info(
                "tool_call_completed",
                tool=name,
                duration_ms=round((time.monotonic() - t0) * 1000, 1),
                result_length=len(outcome.text),
                is_error=outcome.is_error,
            )
        return outcome
