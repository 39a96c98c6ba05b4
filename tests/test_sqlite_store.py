"""Tests for the aiosqlite-backed message store."""

import pytest

from parley.conversation.context import ConversationContext
from parley.errors import PersistenceError
from parley.store.base import MessageStore, NewLogEntry
from parley.store.memory import InMemoryMessageStore
from parley.store.sqlite import SQLiteMessageStore


def _entry(ts, content, role="user", sender="ada"):
    return NewLogEntry(timestamp=ts, role=role, sender=sender, content=content)


@pytest.mark.asyncio
async def test_append_assigns_monotonic_ids(tmp_path):
    store = SQLiteMessageStore(tmp_path / "log.db")
    await store.initialize()
    try:
        first = await store.append_log_entry("c1", _entry(1.0, "a"))
        second = await store.append_log_entry("c2", _entry(2.0, "b"))
        third = await store.append_log_entry("c1", _entry(3.0, "c"))
    finally:
        await store.close()

    assert first.id < second.id < third.id
    assert third.conversation_id == "c1"


@pytest.mark.asyncio
async def test_query_filters_by_cursor_cutoff_and_conversation(tmp_path):
    store = SQLiteMessageStore(tmp_path / "log.db")
    await store.initialize()
    try:
        for i, ts in enumerate([10.0, 20.0, 30.0, 40.0]):
            await store.append_log_entry("c1", _entry(ts, f"m{i}"))
        await store.append_log_entry("other", _entry(25.0, "elsewhere"))

        all_rows = await store.query_log_entries_after("c1", None, None)
        after_cursor = await store.query_log_entries_after("c1", all_rows[1].id, None)
        bounded = await store.query_log_entries_after("c1", None, 25.0)
    finally:
        await store.close()

    assert [r.content for r in all_rows] == ["m0", "m1", "m2", "m3"]
    assert [r.content for r in after_cursor] == ["m2", "m3"]
    assert [r.content for r in bounded] == ["m0", "m1"]
    assert [r.id for r in all_rows] == sorted(r.id for r in all_rows)


@pytest.mark.asyncio
async def test_latest_summaries_are_oldest_first(tmp_path):
    store = SQLiteMessageStore(tmp_path / "log.db")
    await store.initialize()
    try:
        for cursor in (1, 2, 3, 4):
            await store.insert_summary("c1", f"s{cursor}", cursor)
        await store.insert_summary("c2", "unrelated", 9)

        latest = await store.latest_summaries("c1", 3)
        none = await store.latest_summaries("c1", 0)
    finally:
        await store.close()

    assert [s.summary_text for s in latest] == ["s2", "s3", "s4"]
    assert [s.cursor for s in latest] == [2, 3, 4]
    assert none == []


@pytest.mark.asyncio
async def test_insert_summary_rejects_decreasing_cursor(tmp_path):
    store = SQLiteMessageStore(tmp_path / "log.db")
    await store.initialize()
    try:
        await store.insert_summary("c1", "s", 10)
        await store.insert_summary("c1", "same cursor is fine", 10)
        with pytest.raises(PersistenceError):
            await store.insert_summary("c1", "backwards", 9)
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_uninitialized_store_raises_persistence_error(tmp_path):
    store = SQLiteMessageStore(tmp_path / "log.db")
    with pytest.raises(PersistenceError):
        await store.append_log_entry("c1", _entry(1.0, "x"))


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path):
    path = tmp_path / "nested" / "log.db"
    store = SQLiteMessageStore(path)
    await store.initialize()
    await store.append_log_entry("c1", _entry(1.0, "persisted"))
    await store.insert_summary("c1", "kept", 0)
    await store.close()

    reopened = SQLiteMessageStore(path)
    await reopened.initialize()
    try:
        rows = await reopened.query_log_entries_after("c1", None, None)
        summaries = await reopened.latest_summaries("c1", 5)
    finally:
        await reopened.close()

    assert [r.content for r in rows] == ["persisted"]
    assert [s.summary_text for s in summaries] == ["kept"]


@pytest.mark.asyncio
async def test_context_rebuilds_from_sqlite_after_restart(tmp_path):
    path = tmp_path / "log.db"
    store = SQLiteMessageStore(path)
    await store.initialize()
    ctx = await ConversationContext.create("Bot", "", [], None, "c1", store=store)
    await ctx.add("user", "ada", "before restart")
    await ctx.add("assistant", "bot", "noted")
    await store.close()

    store = SQLiteMessageStore(path)
    await store.initialize()
    try:
        restored = await ConversationContext.create("Bot", "", [], None, "c1", store=store)
    finally:
        await store.close()

    assert [(m.role, m.content) for m in restored.messages] == [
        ("system", "Bot"),
        ("user", "before restart"),
        ("assistant", "noted"),
    ]


def test_both_stores_satisfy_protocol(tmp_path):
    assert isinstance(InMemoryMessageStore(), MessageStore)
    assert isinstance(SQLiteMessageStore(tmp_path / "x.db"), MessageStore)
