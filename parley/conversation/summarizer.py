"""Delta summarization of the message log with a chunked map-reduce fallback."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from parley.config.schema import SummaryConfig
from parley.logging import get_logger
from parley.providers.retry import RetryPolicy, call_with_retry
from parley.utils.tokens import count_tokens

if TYPE_CHECKING:
    from parley.providers.base import LLMProvider
    from parley.store.base import LogEntry, MessageStore, SummaryRecord

logger = get_logger(__name__)


DEFAULT_SUMMARY_PROMPT = """You write factual, well-structured chat summaries.
Rules:
- Short but complete: decisions, tasks, important facts, links.
- Neutral language, sensible sections and headings, bullet points where useful.
- Quote people only when it matters, and name them."""

EXTRACTIVE_CHUNK_PROMPT = """You condense one part of a longer chat log into a lossless outline.
Rules:
- Strictly extractive. Keep names, dates, numbers, decisions, tasks and links exactly as written.
- No interpretation and no creative rewriting.
- One bullet per distinct fact or event, in chronological order.
- Output only the outline."""


def render_line(entry: LogEntry) -> str:
    """``[ISO time] ROLE(sender): text`` line used in summary prompts."""
    ts = datetime.fromtimestamp(entry.timestamp, tz=timezone.utc).isoformat()
    return f"[{ts}] {entry.role.upper()}({entry.sender}): {entry.content}"


def chunk_rows(rows: list[LogEntry], max_rows: int, max_chars: int) -> list[list[LogEntry]]:
    """Split *rows* into chunks bounded by row count and rendered size.

    A row is never split; a single row larger than *max_chars* forms its own chunk.
    """
    chunks: list[list[LogEntry]] = []
    current: list[LogEntry] = []
    size = 0
    for row in rows:
        row_size = len(render_line(row)) + 1
        if current and (len(current) >= max_rows or size + row_size > max_chars):
            chunks.append(current)
            current, size = [], 0
        current.append(row)
        size += row_size
    if current:
        chunks.append(current)
    return chunks


class Summarizer:
    """
    Folds log entries newer than the last summary cursor into a new summary.

    Small deltas are summarized in one call with the effective prompt. Larger
    deltas are split into chunks, each condensed with a neutral extractive
    outline prompt, and the outlines are merged in a final call.
    """

    def __init__(
        self,
        provider: LLMProvider,
        store: MessageStore,
        *,
        config: SummaryConfig | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.provider = provider
        self.store = store
        self.config = config or SummaryConfig()
        self.retry_policy = retry_policy or RetryPolicy()

    @property
    def model(self) -> str:
        return self.config.model or self.provider.get_default_model()

    def effective_prompt(self, prompt_override: str | None = None, conversation_prompt: str = "") -> str:
        for candidate in (prompt_override, conversation_prompt, self.config.prompt):
            if candidate and candidate.strip():
                return candidate.strip()
        return DEFAULT_SUMMARY_PROMPT

    async def summarize(
        self,
        conversation_id: str,
        cutoff: float | None = None,
        *,
        prompt_override: str | None = None,
        conversation_prompt: str = "",
    ) -> SummaryRecord | None:
        """Summarize entries with id > last cursor and timestamp <= *cutoff*.

        Returns the stored record, or None when there was nothing to fold or
        the model returned an empty summary. Provider errors propagate.
        """
        latest = await self.store.latest_summaries(conversation_id, 1)
        cursor = latest[-1].cursor if latest else None
        rows = await self.store.query_log_entries_after(conversation_id, cursor, cutoff)
        if not rows:
            logger.debug("summary_nothing_new", conversation_id=conversation_id, cursor=cursor)
            return None

        prompt = self.effective_prompt(prompt_override, conversation_prompt)
        transcript = "\n".join(render_line(r) for r in rows)
        estimated = count_tokens(transcript)

        if estimated <= self.config.single_pass_max_tokens:
            text = await self._complete(prompt, transcript, self.config.max_tokens)
            mode = "single"
        else:
            text = await self._map_reduce(conversation_id, rows, prompt)
            mode = "chunked"

        text = text.strip()
        if not text:
            logger.warning(
                "summary_empty",
                conversation_id=conversation_id,
                rows=len(rows),
                mode=mode,
            )
            return None

        new_cursor = max(r.id for r in rows)
        record = await self.store.insert_summary(conversation_id, text, new_cursor)
        logger.info(
            "summary_written",
            conversation_id=conversation_id,
            rows=len(rows),
            estimated_tokens=estimated,
            mode=mode,
            cursor=new_cursor,
        )
        return record

    async def _map_reduce(self, conversation_id: str, rows: list[LogEntry], prompt: str) -> str:
        chunks = chunk_rows(rows, self.config.chunk_rows, self.config.chunk_chars)
        total = len(chunks)
        outlines: list[str] = []
        for i, chunk in enumerate(chunks, start=1):
            outline = await self._complete(
                EXTRACTIVE_CHUNK_PROMPT,
                "\n".join(render_line(r) for r in chunk),
                self.config.chunk_max_tokens,
            )
            outline = outline.strip()
            if not outline:
                # A gap would fold unsummarized rows under the new cursor.
                logger.warning("summary_chunk_empty", conversation_id=conversation_id, part=i, parts=total)
                return ""
            outlines.append(f"### Part {i}/{total}\n{outline}")
        logger.debug("summary_merging", conversation_id=conversation_id, parts=total, outlines=len(outlines))
        return await self._complete(prompt, "\n\n".join(outlines), self.config.max_tokens)

    async def _complete(self, system_prompt: str, user_text: str, max_tokens: int) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]
        response = await call_with_retry(
            lambda: self.provider.chat(messages=messages, model=self.model, max_tokens=max_tokens),
            self.retry_policy,
            operation="summary",
        )
        return response.content or ""
