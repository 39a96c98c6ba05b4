"""LiteLLM provider implementation for the completion service."""

import asyncio
import copy
import json
import logging
import os
from typing import Any

import httpx
import litellm
from litellm import acompletion

from parley.errors import ClientError, TransportError
from parley.logging import get_logger, mask_secret
from parley.providers.base import LLMProvider, LLMResponse, ToolCallRequest, parse_arguments

logger = get_logger("parley.providers.litellm")


# Standard OpenAI chat-completion message keys; anything else is stripped before sending.
_ALLOWED_MSG_KEYS = frozenset({"role", "content", "tool_calls", "tool_call_id", "name"})

# Seconds added on top of the request timeout for the asyncio safety net.
_SAFETY_MARGIN_S = 30


class LiteLLMProvider(LLMProvider):
    """
    Completion provider backed by LiteLLM.

    One ``chat`` call is one attempt: it carries an explicit timeout and maps
    every failure to ``ClientError`` (4xx) or ``TransportError`` (network,
    timeout, 5xx). Retries are applied by the caller's ``RetryPolicy``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "gpt-4.1",
        extra_headers: dict[str, str] | None = None,
        timeout: float = 120,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}
        self.timeout = timeout

        if api_key:
            os.environ.setdefault("OPENAI_API_KEY", api_key)
            logger.info("provider_initialized", model=default_model, api_key=mask_secret(api_key))

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters for providers (e.g., some models reject temperature)
        litellm.drop_params = True

    @staticmethod
    def _sanitize_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Strip non-standard keys and serialize dict tool arguments."""
        sanitized = []
        for msg in messages:
            clean = {k: v for k, v in msg.items() if k in _ALLOWED_MSG_KEYS}
            if clean.get("role") == "assistant" and "content" not in clean:
                clean["content"] = None
            if clean.get("tool_calls"):
                fixed_calls = []
                for tc in clean["tool_calls"]:
                    tc = dict(tc)
                    if "function" in tc:
                        fn = dict(tc["function"])
                        if isinstance(fn.get("arguments"), dict):
                            fn["arguments"] = json.dumps(fn["arguments"], ensure_ascii=False)
                        tc["function"] = fn
                    fixed_calls.append(tc)
                clean["tool_calls"] = fixed_calls
            sanitized.append(clean)
        return sanitized

    @staticmethod
    def _value(obj: Any, key: str, default: Any = None) -> Any:
        if isinstance(obj, dict):
            return obj.get(key, default)
        return getattr(obj, key, default)

    @classmethod
    def _extract_tool_calls_from_message(cls, message: Any) -> list[ToolCallRequest]:
        tool_calls: list[ToolCallRequest] = []
        raw_tool_calls = cls._value(message, "tool_calls") or []
        for idx, tc in enumerate(raw_tool_calls):
            fn = cls._value(tc, "function") or {}
            name = cls._value(fn, "name")
            if not isinstance(name, str) or not name:
                continue
            args_raw = cls._value(fn, "arguments")
            if isinstance(args_raw, dict):
                raw_text = json.dumps(args_raw, ensure_ascii=False)
            else:
                raw_text = args_raw if isinstance(args_raw, str) else ""
            call_id = cls._value(tc, "id") or f"call_{idx}"
            tool_calls.append(ToolCallRequest(
                id=str(call_id),
                name=name,
                arguments=parse_arguments(args_raw),
                arguments_raw=raw_text or "{}",
            ))
        return tool_calls

    def _redact(self, text: str, api_key: str | None) -> str:
        for key in (api_key, self.api_key):
            if key and key in text:
                text = text.replace(key, mask_secret(key))
        return text

    def _classify_error(self, e: Exception, api_key: str | None) -> Exception:
        """Map a LiteLLM/httpx failure onto ClientError or TransportError."""
        message = self._redact(str(e) or type(e).__name__, api_key)
        if isinstance(e, (asyncio.TimeoutError, litellm.Timeout, httpx.TimeoutException)):
            return TransportError(f"request timed out: {message}", status_code=None)
        if isinstance(e, (litellm.APIConnectionError, httpx.TransportError, ConnectionError)):
            return TransportError(message, status_code=None)
        status = self._value(e, "status_code")
        if isinstance(status, int) and 400 <= status < 500:
            return ClientError(message, status_code=status)
        if isinstance(status, int):
            return TransportError(message, status_code=status, transient=status >= 500)
        return TransportError(message, transient=False)

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
        """
        Send a chat completion request via LiteLLM.

        Args:
            messages: Wire-format message dicts.
            tools: Optional tool definitions in OpenAI format.
            model: Model identifier; defaults to ``default_model``.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature, omitted when None.
            tool_choice: Tool choice sent alongside ``tools``.
            api_key: Per-call key overriding the provider key.

        Returns:
            LLMResponse with content and/or tool calls.

        Raises:
            ClientError: 4xx from the service.
            TransportError: network failure, timeout or 5xx.
        """
        model = model or self.default_model
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._sanitize_messages(messages),
            "max_tokens": max(1, max_tokens),
            "timeout": self.timeout,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        key = api_key or self.api_key
        if key:
            kwargs["api_key"] = key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice or "auto"

        if logging.getLogger("parley").isEnabledFor(logging.DEBUG):
            dbg = copy.deepcopy(kwargs)
            dbg.pop("api_key", None)
            dbg.pop("extra_headers", None)
            for m in dbg.get("messages", []):
                if isinstance(m.get("content"), str) and len(m["content"]) > 200:
                    m["content"] = m["content"][:200] + f"... ({len(m['content'])} chars)"
            logger.debug("litellm_request", **dbg)

        try:
            response = await asyncio.wait_for(
                acompletion(**kwargs),
                timeout=self.timeout + _SAFETY_MARGIN_S,
            )
        except Exception as e:
            classified = self._classify_error(e, key)
            logger.error(
                "llm_call_failed",
                model=model,
                error_type=type(e).__name__,
                status_code=getattr(classified, "status_code", None),
                error=str(classified),
            )
            raise classified from e
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message
        tool_calls = self._extract_tool_calls_from_message(message)

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        content = message.content
        return LLMResponse(
            content=content if isinstance(content, str) else None,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
