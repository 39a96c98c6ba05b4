"""Per-process host for many conversations."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from parley.agent.orchestrator import ModelParams, Orchestrator
from parley.agent.tools.executor import ToolExecutor
from parley.agent.tools.registry import ToolRegistry
from parley.agent.turn_events import TurnEventCallback
from parley.config.schema import Config, ConversationConfig
from parley.conversation.context import ContextOptions, ConversationContext
from parley.conversation.summarizer import Summarizer
from parley.errors import ConversationBusyError
from parley.logging import bind_conversation, get_logger, unbind_conversation
from parley.providers.base import LLMProvider
from parley.providers.litellm_provider import LiteLLMProvider
from parley.store.base import MessageStore, SummaryRecord
from parley.store.sqlite import SQLiteMessageStore

logger = get_logger(__name__)

T = TypeVar("T")


class InFlightGate:
    """Per-conversation in-flight counter; turns of one conversation run one at a time."""

    def __init__(self, limit: int = 3) -> None:
        self.limit = limit
        self.counts: dict[str, int] = {}
        self.locks: dict[str, asyncio.Lock] = {}

    def get_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self.locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self.locks[conversation_id] = lock
        return lock

    def prune_lock(self, conversation_id: str, lock: asyncio.Lock) -> None:
        """Drop lock entry if no longer in use; batch-clean when dict grows large."""
        if not lock.locked() and not self.counts.get(conversation_id):
            self.locks.pop(conversation_id, None)
        if len(self.locks) > 100:
            stale = [k for k, v in self.locks.items() if not v.locked() and not self.counts.get(k)]
            for key in stale:
                del self.locks[key]

    def in_flight(self, conversation_id: str) -> int:
        return self.counts.get(conversation_id, 0)

    async def run(self, conversation_id: str, work: Callable[[], Awaitable[T]]) -> T:
        """Queue *work* behind earlier turns; raise ConversationBusyError past the limit."""
        if self.in_flight(conversation_id) >= self.limit:
            raise ConversationBusyError(conversation_id, self.limit)
        self.counts[conversation_id] = self.in_flight(conversation_id) + 1
        lock = self.get_lock(conversation_id)
        try:
            async with lock:
                return await work()
        finally:
            remaining = self.counts.get(conversation_id, 1) - 1
            if remaining > 0:
                self.counts[conversation_id] = remaining
            else:
                self.counts.pop(conversation_id, None)
            self.prune_lock(conversation_id, lock)


class ConversationRuntime:
    """
    Owns one context per conversation id plus the shared orchestrator.

    ``handle_turn`` adds the user turn, runs the orchestrator and records
    the answer. Once enough unsummarized turns pile up, a background
    summarization is started for that conversation.
    """

    def __init__(
        self,
        config: Config,
        store: MessageStore,
        provider: LLMProvider,
        registry: ToolRegistry | None = None,
        *,
        on_event: TurnEventCallback | None = None,
    ):
        self.config = config
        self.store = store
        self.provider = provider
        self.registry = registry if registry is not None else ToolRegistry()

        retry_policy = config.provider.resilience.to_retry_policy()
        self.summarizer = Summarizer(provider, store, config=config.summary, retry_policy=retry_policy)
        self.executor = ToolExecutor(self.registry)
        self.orchestrator = Orchestrator(
            provider,
            self.executor,
            retry_policy=retry_policy,
            runtime_config=config.runtime,
            default_params=ModelParams(
                model=config.provider.model,
                max_output_tokens=config.conversation.max_output_tokens,
                api_key=config.provider.api_key or None,
            ),
            sequence_limit=config.conversation.sequence_limit,
            inject_time=config.conversation.inject_time,
            on_event=on_event,
        )
        self.gate = InFlightGate(config.runtime.max_inflight_per_conversation)

        self._contexts: dict[str, ConversationContext] = {}
        self._configs: dict[str, ConversationConfig] = {}
        self._signatures: dict[str, str] = {}
        self._background: dict[str, asyncio.Task[Any]] = {}
        self._owned_store: Any = None

    @classmethod
    async def open(cls, config: Config, registry: ToolRegistry | None = None, **kwargs: Any) -> ConversationRuntime:
        """Build a runtime with a LiteLLM provider and a SQLite store from *config*."""
        api_key = config.provider.require_api_key()
        provider = LiteLLMProvider(
            api_key=api_key,
            api_base=config.provider.api_base,
            default_model=config.provider.model,
            extra_headers=config.provider.extra_headers,
            timeout=config.provider.resilience.timeout,
        )
        store = SQLiteMessageStore(config.store_file)
        await store.initialize()
        runtime = cls(config, store, provider, registry, **kwargs)
        runtime._owned_store = store
        return runtime

    def _context_options(self, conv: ConversationConfig) -> ContextOptions:
        return ContextOptions(
            keep_summaries=self.config.summary.keep_summaries,
            max_user_blocks=conv.max_user_blocks,
            summary_prompt=conv.summary_prompt,
            pseudo_tool_calls=conv.pseudo_tool_calls,
        )

    async def get_or_create(
        self,
        conversation_id: str,
        conversation_config: ConversationConfig | None = None,
    ) -> ConversationContext:
        """Cached context for *conversation_id*, rebuilt when its settings change."""
        conv = conversation_config or self._configs.get(conversation_id) or self.config.conversation
        signature = conv.signature()
        ctx = self._contexts.get(conversation_id)
        if ctx is not None and self._signatures.get(conversation_id) == signature:
            return ctx

        registry = self.registry.subset(conv.tools) if conv.tools is not None else self.registry
        ctx = await ConversationContext.create(
            conv.persona,
            conv.instructions,
            registry.get_definitions(),
            registry,
            conversation_id,
            store=self.store,
            summarizer=self.summarizer,
            options=self._context_options(conv),
        )
        self._contexts[conversation_id] = ctx
        self._configs[conversation_id] = conv
        self._signatures[conversation_id] = signature
        logger.info("conversation_context_created", conversation_id=conversation_id, tools=registry.tool_names)
        return ctx

    async def handle_turn(
        self,
        conversation_id: str,
        sender: str,
        text: str,
        params: ModelParams | None = None,
        conversation_config: ConversationConfig | None = None,
    ) -> str:
        """
        Run one user turn and return the answer text.

        Raises:
            ConversationBusyError: the conversation already has the maximum turns in flight.
            ClientError / TransportError: the completion service failed.
        """
        bind_conversation(conversation_id)
        try:
            return await self.gate.run(
                conversation_id,
                lambda: self._turn(conversation_id, sender, text, params, conversation_config),
            )
        finally:
            unbind_conversation()

    async def _turn(
        self,
        conversation_id: str,
        sender: str,
        text: str,
        params: ModelParams | None,
        conversation_config: ConversationConfig | None,
    ) -> str:
        ctx = await self.get_or_create(conversation_id, conversation_config)
        conv = self._configs[conversation_id]
        await ctx.add("user", sender, text)
        result = await self.orchestrator.run(ctx, params, conv.sequence_limit)
        await ctx.add("assistant", conv.bot_name, result.answer)
        logger.info(
            "turn_completed",
            sends=result.sends,
            tools_used=result.tools_used,
            answer_chars=len(result.answer),
        )
        self._maybe_schedule_summary(conversation_id, ctx, conv)
        return result.answer

    def _summary_prompt_configured(self, conv: ConversationConfig) -> bool:
        return bool(conv.summary_prompt.strip() or self.config.summary.prompt.strip())

    def _maybe_schedule_summary(
        self,
        conversation_id: str,
        ctx: ConversationContext,
        conv: ConversationConfig,
    ) -> asyncio.Task[Any] | None:
        threshold = self.config.summary.auto_threshold
        if threshold <= 0 or ctx.unsummarized_count < threshold:
            return None
        if not self._summary_prompt_configured(conv):
            return None
        running = self._background.get(conversation_id)
        if ctx.is_summarizing or (running is not None and not running.done()):
            return None

        async def _runner() -> None:
            lock = self.gate.get_lock(conversation_id)
            try:
                async with lock:
                    await ctx.summarize_since()
            except Exception as e:
                logger.error(
                    "auto_summary_failed",
                    conversation_id=conversation_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            finally:
                self._background.pop(conversation_id, None)
                self.gate.prune_lock(conversation_id, lock)

        logger.info("auto_summary_scheduled", conversation_id=conversation_id, pending=ctx.unsummarized_count)
        task = asyncio.create_task(_runner())
        self._background[conversation_id] = task
        return task

    async def summarize(
        self,
        conversation_id: str,
        cutoff: float | datetime | None = None,
        prompt: str | None = None,
    ) -> SummaryRecord | None:
        ctx = await self.get_or_create(conversation_id)
        return await ctx.summarize_since(cutoff, prompt)

    async def close(self) -> None:
        """Cancel background summarizations and close a store this runtime opened."""
        tasks = list(self._background.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        if self._owned_store is not None:
            await self._owned_store.close()
            self._owned_store = None
