"""Live message buffer for one conversation."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from parley.conversation.messages import (
    SUMMARY_SENDER,
    Message,
    apply_window,
    count_blocks,
    sanitize_sender,
)
from parley.errors import PersistenceError
from parley.logging import get_logger
from parley.store.base import NewLogEntry

if TYPE_CHECKING:
    from parley.agent.tools.registry import ToolRegistry
    from parley.conversation.summarizer import Summarizer
    from parley.store.base import LogEntry, MessageStore, SummaryRecord

logger = get_logger(__name__)


@dataclass
class ContextOptions:
    skip_initial_summaries: bool = False
    keep_summaries: int = 5
    max_user_blocks: int | None = None
    summary_prompt: str = ""
    pseudo_tool_calls: bool = False


def _epoch(value: float | datetime | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


class ConversationContext:
    """
    In-memory buffer of one conversation, backed by the message log store.

    The buffer always reads ``[system] + [summaries, oldest first] + turns``.
    Turns are appended with ``add()`` and written to the store best-effort;
    a store failure is logged and never reaches the caller.
    """

    def __init__(
        self,
        persona: str,
        instructions: str,
        tool_schemas: list[dict[str, Any]] | None,
        tool_registry: ToolRegistry | None,
        conversation_id: str = "global",
        *,
        store: MessageStore,
        summarizer: Summarizer | None = None,
        options: ContextOptions | None = None,
    ):
        self.persona = persona or ""
        self.instructions = instructions or ""
        self.tool_schemas = list(tool_schemas or [])
        self.tool_registry = tool_registry
        self.conversation_id = conversation_id
        self.store = store
        self.summarizer = summarizer
        self.options = options or ContextOptions()
        self.window_cap: int | None = None

        self.messages: list[Message] = self._system_messages()
        self._ready = False
        self._ready_lock = asyncio.Lock()
        self._summarizing = False
        self._unsummarized = 0

        if self.options.max_user_blocks is not None:
            self.set_user_window(self.options.max_user_blocks)

    @classmethod
    async def create(cls, *args: Any, **kwargs: Any) -> ConversationContext:
        """Construct a context and wait until its initial summaries are loaded."""
        ctx = cls(*args, **kwargs)
        await ctx.ensure_ready()
        return ctx

    @property
    def system_prompt(self) -> str:
        return f"{self.persona}\n{self.instructions}".strip()

    @property
    def is_summarizing(self) -> bool:
        return self._summarizing

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def unsummarized_count(self) -> int:
        """Log entries not yet folded into a summary, as far as this instance knows."""
        return self._unsummarized

    def _system_messages(self) -> list[Message]:
        text = self.system_prompt
        return [Message(role="system", content=text)] if text else []

    async def ensure_ready(self) -> None:
        """Load the latest summaries and the turns after them, once per instance."""
        if self._ready:
            return
        async with self._ready_lock:
            if self._ready:
                return
            try:
                if not self.options.skip_initial_summaries:
                    await self._rebuild()
            except Exception as e:
                self.messages = self._system_messages()
                self._unsummarized = 0
                logger.warning(
                    "summary_load_failed",
                    conversation_id=self.conversation_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            finally:
                self._ready = True

    async def _rebuild(self) -> None:
        """Replace the buffer with system + latest summaries + entries after the newest cursor."""
        summaries = await self.store.latest_summaries(self.conversation_id, self.options.keep_summaries)
        if summaries:
            cursor: int | None = summaries[-1].cursor
        else:
            # keep_summaries may be 0; the cursor still comes from the newest record.
            newest = await self.store.latest_summaries(self.conversation_id, 1)
            cursor = newest[-1].cursor if newest else None
        entries = await self.store.query_log_entries_after(self.conversation_id, cursor, None)

        rebuilt = self._system_messages()
        rebuilt.extend(
            Message(role="assistant", sender=SUMMARY_SENDER, content=s.summary_text) for s in summaries
        )
        rebuilt.extend(self._from_entry(e) for e in entries)
        self.messages = apply_window(rebuilt, self.window_cap)
        self._unsummarized = len(entries)
        logger.debug(
            "context_rebuilt",
            conversation_id=self.conversation_id,
            summaries=len(summaries),
            entries=len(entries),
            cursor=cursor,
        )

    @staticmethod
    def _from_entry(entry: LogEntry) -> Message:
        role = entry.role if entry.role in ("system", "user", "assistant") else "assistant"
        return Message(role=role, sender=entry.sender or None, content=entry.content)

    async def add(
        self,
        role: str,
        sender: str | None,
        content: Any,
        timestamp: float | datetime | None = None,
    ) -> Message:
        """Append a turn, persist it best-effort and re-apply the window."""
        await self.ensure_ready()
        safe_sender = sanitize_sender(sender)
        msg = Message(role=role, sender=safe_sender, content="" if content is None else str(content))
        self.messages.append(msg)

        ts = _epoch(timestamp)
        entry = NewLogEntry(
            timestamp=time.time() if ts is None else ts,
            role=role,
            sender=safe_sender,
            content=msg.content,
        )
        try:
            await self.store.append_log_entry(self.conversation_id, entry)
            self._unsummarized += 1
        except Exception as e:
            logger.warning(
                "log_append_failed",
                conversation_id=self.conversation_id,
                role=role,
                error_type=type(e).__name__,
                error=str(e),
            )

        if self.window_cap is not None:
            self.messages = apply_window(self.messages, self.window_cap)
        return msg

    def set_user_window(self, max_user_blocks: int | None) -> None:
        """Cap the buffer at *max_user_blocks* user-led blocks; None disables the cap."""
        if max_user_blocks is not None and max_user_blocks < 0:
            raise ValueError("max_user_blocks must be >= 0 or None")
        self.window_cap = max_user_blocks
        self.messages = apply_window(self.messages, max_user_blocks)

    def block_count(self) -> int:
        return count_blocks(self.messages)

    def snapshot(self) -> list[Message]:
        """Copy of the buffer a turn can extend without touching the live list."""
        return list(self.messages)

    async def summarize_since(
        self,
        cutoff: float | datetime | None = None,
        prompt_override: str | None = None,
    ) -> SummaryRecord | None:
        """Fold unsummarized log entries up to *cutoff* into a summary and rebuild the buffer.

        A call made while another summarization of this instance is running
        returns None immediately. Store failures are logged and yield None;
        completion-service errors propagate.
        """
        if self.summarizer is None:
            raise RuntimeError("ConversationContext has no summarizer")
        if self._summarizing:
            logger.info("summary_already_running", conversation_id=self.conversation_id)
            return None

        await self.ensure_ready()
        self._summarizing = True
        try:
            try:
                record = await self.summarizer.summarize(
                    self.conversation_id,
                    _epoch(cutoff),
                    prompt_override=prompt_override,
                    conversation_prompt=self.options.summary_prompt,
                )
            except PersistenceError as e:
                logger.warning("summary_store_failed", conversation_id=self.conversation_id, error=str(e))
                return None
            if record is None:
                return None
            try:
                await self._rebuild()
            except Exception as e:
                logger.warning(
                    "context_rebuild_failed",
                    conversation_id=self.conversation_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            return record
        finally:
            self._summarizing = False

    async def last_summaries(self, limit: int = 5) -> list[SummaryRecord]:
        """The newest *limit* summaries, oldest first."""
        return await self.store.latest_summaries(self.conversation_id, limit)

    def dump_chunks(self, max_length: int = 1900) -> list[str]:
        """Buffer as pretty JSON split into pieces of at most *max_length* chars."""
        payload = [{"role": m.role, "name": m.sender, "content": m.content} for m in self.messages]
        text = json.dumps(payload, ensure_ascii=False, indent=2)
        return [text[i:i + max_length] for i in range(0, len(text), max_length)]
