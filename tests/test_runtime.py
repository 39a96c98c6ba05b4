"""Tests for ConversationRuntime and the per-conversation in-flight gate."""

import asyncio

import pytest

from parley.agent.tools.registry import ToolRegistry
from parley.config.schema import Config, ConversationConfig, SummaryConfig
from parley.errors import ConfigError, ConversationBusyError
from parley.providers.base import LLMProvider, LLMResponse
from parley.runtime import ConversationRuntime, InFlightGate
from parley.store.memory import InMemoryMessageStore


@pytest.fixture(autouse=True)
def _char_token_estimate(monkeypatch):
    monkeypatch.setattr("parley.conversation.summarizer.count_tokens", lambda text: len(text) // 4)


class _EchoProvider(LLMProvider):
    """Answers every request; summary requests are recognised by their system prompt."""

    def __init__(self, summary_prompt="Summarize the chat."):
        super().__init__()
        self.summary_prompt = summary_prompt
        self.calls: list[dict] = []

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=None,
                   tool_choice="auto", api_key=None):
        self.calls.append({"messages": messages, "tools": tools, "model": model})
        if messages and messages[0]["content"] == self.summary_prompt:
            return LLMResponse(content="a short summary")
        return LLMResponse(content=f"reply {len(self.calls)}")

    def get_default_model(self) -> str:
        return "default-model"


def _config(**summary):
    return Config(
        conversation=ConversationConfig(persona="You are Bot", bot_name="Bot", inject_time=False),
        summary=SummaryConfig(**summary),
    )


# ---------------------------------------------------------------------------
# InFlightGate
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_gate_serializes_turns_of_one_conversation():
    gate = InFlightGate(limit=3)
    order = []
    release = asyncio.Event()

    async def first():
        order.append("first-start")
        await release.wait()
        order.append("first-end")

    async def second():
        order.append("second")

    t1 = asyncio.create_task(gate.run("c1", first))
    await asyncio.sleep(0)
    t2 = asyncio.create_task(gate.run("c1", second))
    await asyncio.sleep(0)
    assert gate.in_flight("c1") == 2

    release.set()
    await asyncio.gather(t1, t2)

    assert order == ["first-start", "first-end", "second"]
    assert gate.in_flight("c1") == 0
    assert "c1" not in gate.locks


@pytest.mark.asyncio
async def test_gate_rejects_past_limit():
    gate = InFlightGate(limit=1)
    release = asyncio.Event()

    async def hold():
        await release.wait()

    task = asyncio.create_task(gate.run("c1", hold))
    await asyncio.sleep(0)

    with pytest.raises(ConversationBusyError) as exc_info:
        await gate.run("c1", hold)
    assert exc_info.value.limit == 1

    assert await gate.run("c2", lambda: asyncio.sleep(0, result="other")) == "other"

    release.set()
    await task


# ---------------------------------------------------------------------------
# ConversationRuntime
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_handle_turn_records_user_and_answer():
    store = InMemoryMessageStore()
    provider = _EchoProvider()
    runtime = ConversationRuntime(_config(auto_threshold=0), store, provider)

    answer = await runtime.handle_turn("c1", "Ada", "hello")

    assert answer == "reply 1"
    assert provider.calls[0]["model"] == "gpt-4.1"
    entries = await store.query_log_entries_after("c1", None, None)
    assert [(e.role, e.sender, e.content) for e in entries] == [
        ("user", "ada", "hello"),
        ("assistant", "bot", "reply 1"),
    ]
    ctx = await runtime.get_or_create("c1")
    assert [m.role for m in ctx.messages] == ["system", "user", "assistant"]
    await runtime.close()


@pytest.mark.asyncio
async def test_auto_summary_runs_in_background():
    store = InMemoryMessageStore()
    provider = _EchoProvider()
    runtime = ConversationRuntime(_config(auto_threshold=2, prompt="Summarize the chat."), store, provider)

    await runtime.handle_turn("c1", "ada", "hello")
    pending = list(runtime._background.values())
    assert len(pending) == 1
    await asyncio.gather(*pending)

    assert store.summary_count("c1") == 1
    ctx = await runtime.get_or_create("c1")
    assert ctx.messages[1].is_summary
    assert ctx.unsummarized_count == 0
    assert runtime._background == {}
    await runtime.close()


@pytest.mark.asyncio
async def test_auto_summary_waits_for_conversation_lock():
    store = InMemoryMessageStore()
    provider = _EchoProvider()
    runtime = ConversationRuntime(_config(auto_threshold=2, prompt="Summarize the chat."), store, provider)

    await runtime.handle_turn("c1", "ada", "hello")
    pending = list(runtime._background.values())
    lock = runtime.gate.get_lock("c1")
    await lock.acquire()
    for _ in range(5):
        await asyncio.sleep(0)

    assert store.summary_count("c1") == 0
    assert len(provider.calls) == 1

    lock.release()
    await asyncio.gather(*pending)

    assert store.summary_count("c1") == 1
    await runtime.close()


@pytest.mark.asyncio
async def test_no_auto_summary_without_prompt():
    store = InMemoryMessageStore()
    runtime = ConversationRuntime(_config(auto_threshold=1), store, _EchoProvider())

    await runtime.handle_turn("c1", "ada", "hello")

    assert runtime._background == {}
    await runtime.close()


@pytest.mark.asyncio
async def test_explicit_summarize():
    store = InMemoryMessageStore()
    provider = _EchoProvider(summary_prompt="Be brief.")
    runtime = ConversationRuntime(_config(auto_threshold=0), store, provider)

    await runtime.handle_turn("c1", "ada", "hello")
    record = await runtime.summarize("c1", prompt="Be brief.")

    assert record.summary_text == "a short summary"
    assert record.cursor == 2
    await runtime.close()


@pytest.mark.asyncio
async def test_context_cached_until_settings_change():
    runtime = ConversationRuntime(_config(), InMemoryMessageStore(), _EchoProvider())

    first = await runtime.get_or_create("c1")
    again = await runtime.get_or_create("c1")
    changed = await runtime.get_or_create("c1", ConversationConfig(persona="Someone else"))

    assert first is again
    assert changed is not first
    assert changed.system_prompt == "Someone else"
    assert await runtime.get_or_create("c1") is changed
    await runtime.close()


@pytest.mark.asyncio
async def test_conversation_tool_subset():
    registry = ToolRegistry()
    registry.register("lookup", lambda *a: "found")
    registry.register("shell", lambda *a: "ran")
    runtime = ConversationRuntime(_config(), InMemoryMessageStore(), _EchoProvider(), registry)

    ctx = await runtime.get_or_create("c1", ConversationConfig(tools=["lookup"]))

    assert ctx.tool_registry.tool_names == ["lookup"]
    assert [s["function"]["name"] for s in ctx.tool_schemas] == ["lookup"]
    await runtime.close()


@pytest.mark.asyncio
async def test_close_cancels_background_work():
    runtime = ConversationRuntime(_config(), InMemoryMessageStore(), _EchoProvider())
    blocker = asyncio.Event()
    task = asyncio.create_task(blocker.wait())
    runtime._background["c1"] = task

    await runtime.close()

    assert task.cancelled()
    assert runtime._background == {}


@pytest.mark.asyncio
async def test_open_requires_api_key():
    with pytest.raises(ConfigError):
        await ConversationRuntime.open(Config())
