"""Message log store module."""

from parley.store.base import LogEntry, MessageStore, NewLogEntry, SummaryRecord
from parley.store.memory import InMemoryMessageStore
from parley.store.sqlite import SQLiteMessageStore

__all__ = [
    "LogEntry",
    "MessageStore",
    "NewLogEntry",
    "SummaryRecord",
    "InMemoryMessageStore",
    "SQLiteMessageStore",
]
