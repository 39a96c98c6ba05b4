"""Tests for LiteLLMProvider request building, parsing and error classification."""

import asyncio
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from parley.errors import ClientError, TransportError
from parley.providers.base import Raw, Structured
from parley.providers.litellm_provider import LiteLLMProvider
from parley.providers.retry import RetryPolicy, call_with_retry


class _StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def _response(content="ok", tool_calls=None, finish_reason="stop"):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    usage = SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)], usage=usage)


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.fixture
def provider(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "preset")
    return LiteLLMProvider(api_key="sk-test-1234567890", default_model="gpt-test", timeout=30)


@pytest.mark.asyncio
async def test_request_kwargs(provider):
    captured = {}

    async def fake_acompletion(**kwargs):
        captured.update(kwargs)
        return _response()

    tools = [{"type": "function", "function": {"name": "lookup", "parameters": {"type": "object"}}}]
    with patch("parley.providers.litellm_provider.acompletion", side_effect=fake_acompletion):
        result = await provider.chat(
            messages=[{"role": "user", "content": "hi", "_meta": 1}],
            tools=tools,
            max_tokens=50,
        )

    assert result.content == "ok"
    assert result.usage == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}
    assert captured["model"] == "gpt-test"
    assert captured["timeout"] == 30
    assert captured["max_tokens"] == 50
    assert captured["tools"] == tools
    assert captured["tool_choice"] == "auto"
    assert captured["api_key"] == "sk-test-1234567890"
    assert captured["messages"] == [{"role": "user", "content": "hi"}]
    assert "temperature" not in captured


@pytest.mark.asyncio
async def test_no_tools_means_no_tool_choice(provider):
    captured = {}

    async def fake_acompletion(**kwargs):
        captured.update(kwargs)
        return _response()

    with patch("parley.providers.litellm_provider.acompletion", side_effect=fake_acompletion):
        await provider.chat(messages=[{"role": "user", "content": "hi"}], api_key="sk-call", temperature=0.1)

    assert "tools" not in captured
    assert "tool_choice" not in captured
    assert captured["api_key"] == "sk-call"
    assert captured["temperature"] == 0.1


@pytest.mark.asyncio
async def test_tool_calls_are_parsed(provider):
    calls = [
        _tool_call("call_a", "lookup", '{"q": "tides"}'),
        _tool_call("call_b", "echo", "not json at all"),
        _tool_call(None, "dicty", {"x": 1}),
    ]
    with patch("parley.providers.litellm_provider.acompletion", return_value=_response(None, calls, "tool_calls")):
        result = await provider.chat(messages=[{"role": "user", "content": "hi"}])

    assert result.content is None
    assert [tc.name for tc in result.tool_calls] == ["lookup", "echo", "dicty"]
    assert result.tool_calls[0].arguments == Structured({"q": "tides"})
    assert isinstance(result.tool_calls[1].arguments, Raw)
    assert result.tool_calls[2].id == "call_2"
    assert result.tool_calls[2].arguments_raw == '{"x": 1}'


@pytest.mark.asyncio
async def test_length_finish_marks_truncation(provider):
    with patch("parley.providers.litellm_provider.acompletion", return_value=_response("cut", finish_reason="length")):
        result = await provider.chat(messages=[{"role": "user", "content": "hi"}])

    assert result.truncated


@pytest.mark.asyncio
async def test_4xx_is_client_error_with_key_redacted(provider):
    error = _StatusError("invalid key sk-test-1234567890", status_code=404)
    with patch("parley.providers.litellm_provider.acompletion", side_effect=error):
        with pytest.raises(ClientError) as exc_info:
            await provider.chat(messages=[{"role": "user", "content": "hi"}])

    assert exc_info.value.status_code == 404
    assert "sk-test-1234567890" not in str(exc_info.value)


@pytest.mark.asyncio
async def test_5xx_is_transient_transport_error(provider):
    with patch("parley.providers.litellm_provider.acompletion", side_effect=_StatusError("overloaded", 503)):
        with pytest.raises(TransportError) as exc_info:
            await provider.chat(messages=[{"role": "user", "content": "hi"}])

    assert exc_info.value.status_code == 503
    assert exc_info.value.transient


@pytest.mark.asyncio
async def test_timeout_is_transport_error(provider):
    async def slow(**kwargs):
        raise asyncio.TimeoutError()

    with patch("parley.providers.litellm_provider.acompletion", side_effect=slow):
        with pytest.raises(TransportError) as exc_info:
            await provider.chat(messages=[{"role": "user", "content": "hi"}])

    assert "timed out" in str(exc_info.value)
    assert exc_info.value.transient


@pytest.mark.asyncio
async def test_unclassified_error_is_not_retried(provider):
    policy = RetryPolicy(max_attempts=4, backoff=lambda attempt: 0)
    with patch(
        "parley.providers.litellm_provider.acompletion",
        side_effect=ValueError("LLM Provider NOT provided"),
    ) as mock_completion:
        with pytest.raises(TransportError) as exc_info:
            await call_with_retry(
                lambda: provider.chat(messages=[{"role": "user", "content": "hi"}]),
                policy,
            )

    assert mock_completion.call_count == 1
    assert not exc_info.value.transient
    assert isinstance(exc_info.value.__cause__, ValueError)


def test_sanitize_messages_serializes_dict_arguments():
    clean = LiteLLMProvider._sanitize_messages([
        {
            "role": "assistant",
            "tool_calls": [{"id": "1", "type": "function", "function": {"name": "t", "arguments": {"a": 1}}}],
            "reasoning": "hidden",
        },
    ])

    assert clean == [{
        "role": "assistant",
        "content": None,
        "tool_calls": [{"id": "1", "type": "function", "function": {"name": "t", "arguments": '{"a": 1}'}}],
    }]
