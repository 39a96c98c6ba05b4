"""Message log store contract and record types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class NewLogEntry:
    """A log entry before the store has assigned its id."""

    timestamp: float
    role: str
    sender: str
    content: str


@dataclass(frozen=True)
class LogEntry:
    """One persisted conversation turn. Ids are monotonic per store and never reused."""

    id: int
    timestamp: float
    conversation_id: str
    role: str
    sender: str
    content: str


@dataclass(frozen=True)
class SummaryRecord:
    """A summary of the log entries with id in (previous cursor, cursor]."""

    id: int
    timestamp: float
    conversation_id: str
    summary_text: str
    cursor: int


@runtime_checkable
class MessageStore(Protocol):
    """Append-only per-conversation log plus a summaries table."""

    async def append_log_entry(self, conversation_id: str, entry: NewLogEntry) -> LogEntry: ...

    async def query_log_entries_after(
        self,
        conversation_id: str,
        cursor: int | None,
        cutoff: float | None,
    ) -> list[LogEntry]:
        """Entries with id > cursor and timestamp <= cutoff, ordered by id ascending."""
        ...

    async def insert_summary(self, conversation_id: str, text: str, cursor: int) -> SummaryRecord: ...

    async def latest_summaries(self, conversation_id: str, n: int) -> list[SummaryRecord]:
        """The newest *n* summaries, returned oldest first."""
        ...
