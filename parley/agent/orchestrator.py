"""Tool-call loop between a conversation and the completion service."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, cast

from parley.agent.outbound import sanitize_outbound
from parley.agent.pseudo_calls import extract_pseudo_call
from parley.agent.rendering import render_answer
from parley.agent.tools.base import ToolOutcome, ToolRuntime, persisted_copy, wrap_tool_result
from parley.agent.turn_events import (
    TURN_EVENT_NAMESPACE,
    TURN_EVENT_SCHEMA_VERSION,
    TURN_EVENT_TOOL_END,
    TURN_EVENT_TOOL_START,
    TURN_EVENT_TURN_END,
    TURN_EVENT_TURN_START,
    TurnEventCallback,
    TurnEventPayload,
)
from parley.config.schema import ConfigPrecedence, RuntimeConfig, ToolResultPersistence
from parley.conversation.messages import Message, ToolCall
from parley.logging import get_logger
from parley.providers.retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from parley.agent.tools.executor import ToolExecutor
    from parley.conversation.context import ConversationContext
    from parley.providers.base import LLMProvider, LLMResponse, ToolCallRequest

logger = get_logger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 4096
DEFAULT_SEQUENCE_LIMIT = 8

TIME_NOTE = (
    "Current UTC time: {now} <- Use this time whenever you are asked for the current time. "
    "Translate it to the location for which the time is requested."
)
CONTINUE_NOTE = (
    "Your previous reply was cut off at the output limit. "
    "Continue exactly where it stopped without repeating anything."
)
PSEUDO_TOOLS_NOTE = (
    "You can use the tools listed below. To call one, reply with only a JSON object of the form "
    '{{"name": "<tool name>", "arguments": {{...}}}} and nothing else. '
    "Call at most one tool per reply. Tool results come back as system messages starting with "
    "[tool-result:<name>]; never write that marker yourself.\n\nTools:\n{tools}"
)


class TurnState(str, Enum):
    SENDING = "sending"
    TOOL_REQUESTED = "tool_requested"
    EXECUTING = "executing"
    TRUNCATED = "truncated"
    CONTINUING = "continuing"
    DONE = "done"


@dataclass
class ModelParams:
    """Per-call completion settings; None means "not set"."""

    model: str | None = None
    max_output_tokens: int | None = None
    temperature: float | None = None
    tool_choice: str | None = None
    api_key: str | None = None

    def merged(self, defaults: ModelParams, precedence: ConfigPrecedence = ConfigPrecedence.CALL) -> ModelParams:
        """Combine with *defaults*; the winning side's set fields take priority."""
        winner, fallback = (self, defaults) if precedence == ConfigPrecedence.CALL else (defaults, self)
        values = {}
        for f in fields(self):
            value = getattr(winner, f.name)
            values[f.name] = value if value is not None else getattr(fallback, f.name)
        return ModelParams(**values)


@dataclass
class TurnResult:
    answer: str
    tools_used: list[str] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    sends: int = 0
    state_trace: list[TurnState] = field(default_factory=list)
    sequence_limit_reached: bool = False


class Orchestrator:
    """
    Drives one conversational turn against the completion service.

    States per turn::

        SENDING -> TOOL_REQUESTED -> EXECUTING -> SENDING
        SENDING -> TRUNCATED -> CONTINUING -> SENDING
        SENDING -> DONE

    The loop works on a copy of the conversation buffer. At most one tool
    call is honoured per response, and ``sequence_limit`` bounds the number
    of completion requests so the loop always halts.
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolExecutor,
        *,
        retry_policy: RetryPolicy | None = None,
        runtime_config: RuntimeConfig | None = None,
        default_params: ModelParams | None = None,
        sequence_limit: int = DEFAULT_SEQUENCE_LIMIT,
        inject_time: bool = True,
        on_event: TurnEventCallback | None = None,
    ):
        self.provider = provider
        self.tools = tools
        self.retry_policy = retry_policy or RetryPolicy()
        self.runtime_config = runtime_config or RuntimeConfig()
        self.default_params = default_params or ModelParams()
        self.sequence_limit = sequence_limit
        self.inject_time = inject_time
        self.on_event = on_event

    def resolve_params(self, params: ModelParams | None) -> ModelParams:
        resolved = (params or ModelParams()).merged(self.default_params, self.runtime_config.config_precedence)
        if resolved.model is None:
            resolved = replace(resolved, model=self.provider.get_default_model())
        if resolved.max_output_tokens is None:
            resolved = replace(resolved, max_output_tokens=DEFAULT_MAX_OUTPUT_TOKENS)
        return resolved

    def _working_messages(self, conversation: ConversationContext, schemas: list[dict[str, Any]], pseudo: bool) -> list[Message]:
        working = conversation.snapshot()
        notes: list[Message] = []
        if self.inject_time:
            now = datetime.now(timezone.utc).isoformat()
            notes.append(Message(role="system", content=TIME_NOTE.format(now=now)))
        if pseudo and schemas:
            described = json.dumps([s.get("function", s) for s in schemas], ensure_ascii=False, indent=2)
            notes.append(Message(role="system", content=PSEUDO_TOOLS_NOTE.format(tools=described)))
        at = 1 if working and working[0].role == "system" else 0
        working[at:at] = notes
        return working

    async def _send(
        self,
        working: list[Message],
        params: ModelParams,
        schemas: list[dict[str, Any]],
        pseudo: bool,
    ) -> LLMResponse:
        outbound = sanitize_outbound(working)
        tools = None if pseudo or not schemas else schemas
        return await call_with_retry(
            lambda: self.provider.chat(
                messages=outbound,
                tools=tools,
                model=params.model,
                max_tokens=params.max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
                temperature=params.temperature,
                tool_choice=params.tool_choice or "auto",
                api_key=params.api_key,
            ),
            self.retry_policy,
            operation="completion",
        )

    def _pick_call(self, response: LLMResponse, pseudo: bool, known: list[str]) -> ToolCallRequest | None:
        if response.has_tool_calls:
            if len(response.tool_calls) > 1:
                logger.warning(
                    "extra_tool_calls_dropped",
                    kept=response.tool_calls[0].name,
                    dropped=[tc.name for tc in response.tool_calls[1:]],
                )
            return response.tool_calls[0]
        if pseudo:
            return extract_pseudo_call(response.content, known)
        return None

    async def _persist_tool_result(self, conversation: ConversationContext, outcome: ToolOutcome) -> None:
        mode = self.runtime_config.tool_result_persistence
        if mode == ToolResultPersistence.NONE:
            return
        await conversation.add(
            mode.value,
            outcome.tool,
            persisted_copy(outcome, self.runtime_config.tool_result_persist_max_chars),
        )

    async def run(
        self,
        conversation: ConversationContext,
        params: ModelParams | None = None,
        sequence_limit: int | None = None,
        runtime: ToolRuntime | None = None,
    ) -> TurnResult:
        """
        Run one turn and return the rendered answer.

        Raises:
            ClientError: the service rejected a request (4xx).
            TransportError: a transient failure outlasted the retry policy.
        """
        await conversation.ensure_ready()
        resolved = self.resolve_params(params)
        limit = max(1, self.sequence_limit if sequence_limit is None else sequence_limit)
        pseudo = bool(getattr(conversation.options, "pseudo_tool_calls", False))
        registry = self.tools.registry_for(conversation)
        schemas = list(conversation.tool_schemas) or registry.get_definitions()
        if runtime is None:
            runtime = ToolRuntime(conversation_id=conversation.conversation_id, model=resolved.model)

        async def complete(
            conversation: ConversationContext,
            params: ModelParams | None = None,
            sequence_limit: int | None = None,
        ) -> str:
            result = await self.run(conversation, params or resolved, sequence_limit, runtime)
            return result.answer

        working = self._working_messages(conversation, schemas, pseudo)
        trace = [TurnState.SENDING]
        sends = 0
        continuations = 0
        parts: list[str] = []
        tools_used: list[str] = []
        last_outcome: ToolOutcome | None = None
        limit_hit = False

        turn_id = f"turn_{uuid.uuid4().hex[:12]}"
        event_sequence = 0

        async def _emit_event(payload: dict[str, Any]) -> None:
            nonlocal event_sequence
            if not self.on_event:
                return
            event_sequence += 1
            event = cast(TurnEventPayload, {
                "namespace": TURN_EVENT_NAMESPACE,
                "version": TURN_EVENT_SCHEMA_VERSION,
                "turn_id": turn_id,
                "conversation_id": conversation.conversation_id,
                "sequence": event_sequence,
                "timestamp_ms": int(time.time() * 1000),
                **payload,
            })
            await self.on_event(event)

        await _emit_event({
            "type": TURN_EVENT_TURN_START,
            "initial_message_count": len(working),
            "sequence_limit": limit,
            "pseudo_tool_calls": pseudo,
        })

        while True:
            sends += 1
            response = await self._send(working, resolved, schemas, pseudo)
            content = response.content or ""
            call = self._pick_call(response, pseudo, registry.tool_names)

            if call is not None:
                trace.append(TurnState.TOOL_REQUESTED)
                if pseudo and not response.tool_calls:
                    working.append(Message(role="assistant", content=content))
                else:
                    working.append(Message(
                        role="assistant",
                        content=content.strip(),
                        tool_calls=[ToolCall(id=call.id, name=call.name, arguments_raw=call.arguments_raw)],
                    ))

                trace.append(TurnState.EXECUTING)
                logger.info("tool_call", tool=call.name, send=sends, args=call.arguments_raw[:200])
                await _emit_event({
                    "type": TURN_EVENT_TOOL_START,
                    "send": sends,
                    "tool": call.name,
                    "tool_call_id": call.id,
                    "arguments": call.arguments.as_dict(),
                })
                outcome = await self.tools.execute(call.name, call.arguments, conversation, runtime, complete)
                await _emit_event({
                    "type": TURN_EVENT_TOOL_END,
                    "send": sends,
                    "tool": call.name,
                    "tool_call_id": call.id,
                    "is_error": outcome.is_error,
                })
                tools_used.append(call.name)
                last_outcome = outcome

                if pseudo and not response.tool_calls:
                    working.append(Message(role="system", content=wrap_tool_result(call.name, outcome.text)))
                else:
                    working.append(Message(role="tool", content=outcome.text, tool_call_id=call.id))
                await self._persist_tool_result(conversation, outcome)

                if sends >= limit:
                    limit_hit = True
                    logger.warning("sequence_limit_reached", sends=sends, limit=limit, last_tool=call.name)
                    break
                trace.append(TurnState.SENDING)
                continue

            parts.append(content)
            if response.truncated and sends < limit:
                trace.append(TurnState.TRUNCATED)
                working.append(Message(role="assistant", content=content))
                trace.append(TurnState.CONTINUING)
                working.append(Message(role="system", content=CONTINUE_NOTE))
                continuations += 1
                logger.info("turn_continuing", send=sends, partial_chars=len(content))
                trace.append(TurnState.SENDING)
                continue
            if response.truncated:
                limit_hit = True
                logger.warning("sequence_limit_reached", sends=sends, limit=limit, truncated=True)
            working.append(Message(role="assistant", content=content))
            break

        trace.append(TurnState.DONE)
        answer = render_answer("".join(parts), last_outcome)

        await _emit_event({
            "type": TURN_EVENT_TURN_END,
            "sends": sends,
            "tool_count": len(tools_used),
            "continuations": continuations,
            "sequence_limit_reached": limit_hit,
        })
        return TurnResult(
            answer=answer,
            tools_used=tools_used,
            messages=working,
            sends=sends,
            state_trace=trace,
            sequence_limit_reached=limit_hit,
        )
