"""In-process message store."""

from __future__ import annotations

import time

from parley.errors import PersistenceError
from parley.store.base import LogEntry, NewLogEntry, SummaryRecord


class InMemoryMessageStore:
    """Dict-backed ``MessageStore`` for embedding and tests. Not durable."""

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []
        self._summaries: list[SummaryRecord] = []
        self._next_entry_id = 1
        self._next_summary_id = 1

    async def append_log_entry(self, conversation_id: str, entry: NewLogEntry) -> LogEntry:
        stored = LogEntry(
            id=self._next_entry_id,
            timestamp=entry.timestamp,
            conversation_id=conversation_id,
            role=entry.role,
            sender=entry.sender,
            content=entry.content,
        )
        self._next_entry_id += 1
        self._entries.append(stored)
        return stored

    async def query_log_entries_after(
        self,
        conversation_id: str,
        cursor: int | None,
        cutoff: float | None,
    ) -> list[LogEntry]:
        lower = cursor if cursor is not None else 0
        return [
            e for e in self._entries
            if e.conversation_id == conversation_id
            and e.id > lower
            and (cutoff is None or e.timestamp <= cutoff)
        ]

    async def insert_summary(self, conversation_id: str, text: str, cursor: int) -> SummaryRecord:
        latest = await self.latest_summaries(conversation_id, 1)
        if latest and cursor < latest[-1].cursor:
            raise PersistenceError(
                f"summary cursor {cursor} would move backwards from {latest[-1].cursor}"
            )
        record = SummaryRecord(
            id=self._next_summary_id,
            timestamp=time.time(),
            conversation_id=conversation_id,
            summary_text=text,
            cursor=cursor,
        )
        self._next_summary_id += 1
        self._summaries.append(record)
        return record

    async def latest_summaries(self, conversation_id: str, n: int) -> list[SummaryRecord]:
        if n <= 0:
            return []
        own = [s for s in self._summaries if s.conversation_id == conversation_id]
        return own[-n:]

    def summary_count(self, conversation_id: str) -> int:
        return sum(1 for s in self._summaries if s.conversation_id == conversation_id)
