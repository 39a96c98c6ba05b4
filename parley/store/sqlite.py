"""Append-only SQLite-backed message store."""

from __future__ import annotations

import time
from pathlib import Path

import aiosqlite

from parley.errors import PersistenceError
from parley.logging import get_logger
from parley.store.base import LogEntry, NewLogEntry, SummaryRecord

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS context_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    sender TEXT NOT NULL,
    content TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_context_log_conversation
    ON context_log(conversation_id, id);
CREATE TABLE IF NOT EXISTS summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    conversation_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    cursor INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_summaries_conversation
    ON summaries(conversation_id, id);
"""


class SQLiteMessageStore:
    """
    ``MessageStore`` on a single aiosqlite connection.

    Construct once per process and inject it into every conversation context;
    call ``initialize()`` before use and ``close()`` on shutdown.
    """

    def __init__(self, db_path: Path | str, *, connection_timeout: float = 5.0, wal_mode: bool = True) -> None:
        self._db_path = str(Path(db_path).expanduser())
        self._connection_timeout = connection_timeout
        self._wal_mode = wal_mode
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and apply the schema idempotently."""
        if self._conn is not None:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path, timeout=self._connection_timeout)
        try:
            conn.row_factory = aiosqlite.Row
            if self._wal_mode:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(_SCHEMA)
            await conn.commit()
        except Exception:
            await conn.close()
            raise
        self._conn = conn
        logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Store is not initialized. Call initialize() first.")
        return self._conn

    async def append_log_entry(self, conversation_id: str, entry: NewLogEntry) -> LogEntry:
        conn = self._conn_or_raise()
        try:
            cursor = await conn.execute(
                "INSERT INTO context_log (timestamp, conversation_id, role, sender, content)"
                " VALUES (?, ?, ?, ?, ?)",
                (entry.timestamp, conversation_id, entry.role, entry.sender, entry.content),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"append_log_entry failed: {e}") from e
        return LogEntry(
            id=int(cursor.lastrowid),
            timestamp=entry.timestamp,
            conversation_id=conversation_id,
            role=entry.role,
            sender=entry.sender,
            content=entry.content,
        )

    async def query_log_entries_after(
        self,
        conversation_id: str,
        cursor: int | None,
        cutoff: float | None,
    ) -> list[LogEntry]:
        conn = self._conn_or_raise()
        sql = (
            "SELECT id, timestamp, conversation_id, role, sender, content"
            " FROM context_log WHERE conversation_id = ? AND id > ?"
        )
        params: list[object] = [conversation_id, cursor if cursor is not None else 0]
        if cutoff is not None:
            sql += " AND timestamp <= ?"
            params.append(cutoff)
        sql += " ORDER BY id ASC"
        try:
            async with conn.execute(sql, params) as rows:
                return [
                    LogEntry(
                        id=int(r["id"]),
                        timestamp=float(r["timestamp"]),
                        conversation_id=r["conversation_id"],
                        role=r["role"],
                        sender=r["sender"],
                        content=r["content"],
                    )
                    async for r in rows
                ]
        except aiosqlite.Error as e:
            raise PersistenceError(f"query_log_entries_after failed: {e}") from e

    async def insert_summary(self, conversation_id: str, text: str, cursor: int) -> SummaryRecord:
        conn = self._conn_or_raise()
        latest = await self.latest_summaries(conversation_id, 1)
        if latest and cursor < latest[-1].cursor:
            raise PersistenceError(
                f"summary cursor {cursor} would move backwards from {latest[-1].cursor}"
            )
        now = time.time()
        try:
            result = await conn.execute(
                "INSERT INTO summaries (timestamp, conversation_id, summary, cursor) VALUES (?, ?, ?, ?)",
                (now, conversation_id, text, cursor),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"insert_summary failed: {e}") from e
        return SummaryRecord(
            id=int(result.lastrowid),
            timestamp=now,
            conversation_id=conversation_id,
            summary_text=text,
            cursor=cursor,
        )

    async def latest_summaries(self, conversation_id: str, n: int) -> list[SummaryRecord]:
        if n <= 0:
            return []
        conn = self._conn_or_raise()
        try:
            async with conn.execute(
                "SELECT id, timestamp, conversation_id, summary, cursor FROM summaries"
                " WHERE conversation_id = ? ORDER BY id DESC LIMIT ?",
                (conversation_id, n),
            ) as rows:
                newest_first = [
                    SummaryRecord(
                        id=int(r["id"]),
                        timestamp=float(r["timestamp"]),
                        conversation_id=r["conversation_id"],
                        summary_text=r["summary"],
                        cursor=int(r["cursor"]),
                    )
                    async for r in rows
                ]
        except aiosqlite.Error as e:
            raise PersistenceError(f"latest_summaries failed: {e}") from e
        return list(reversed(newest_first))
