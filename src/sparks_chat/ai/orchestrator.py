"""Conversation orchestrator: pre-flight sparks check, model/tool loop, persistence and settlement.

One ``handle`` call drives one inbound user message through::

    estimating -> balance_checked -> model_call -> (tool_executing -> model_call)*
               -> finalizing -> persisted

ending early in ``blocked`` (not enough sparks, nothing is called or charged)
or ``failed``. The tool loop is an explicit loop bounded by ``max_rounds``.
Settlement is best-effort: a ledger failure after the model has answered is
logged and the answer is still returned.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Optional

from sparks_chat.ai.client import AIClient, ModelTurn
from sparks_chat.ai.conversation import (
    Attachment,
    build_messages,
    build_system_prompt,
    conversation_text,
)
from sparks_chat.ai.tools.base import ToolContext, ToolResult
from sparks_chat.ai.tools.dispatcher import ToolDispatcher
from sparks_chat.ai.tools.registry import ToolRegistry
from sparks_chat.config import AIConfig, OrchestratorConfig, ToolsConfig
from sparks_chat.core.errors import (
    InsufficientBalance,
    InvalidRequest,
    ModelCallFailed,
    SparksChatError,
    ToolLoopExceeded,
    ToolNotFound,
    TurnCancelled,
)
from sparks_chat.core.types import Role, TurnState
from sparks_chat.ledger.pricing import estimate_token_count
from sparks_chat.ledger.sparks import SparksLedger
from sparks_chat.log import bind_turn_context, clear_turn_context, get_logger
from sparks_chat.storage.history_repo import HistoryStore
from sparks_chat.storage.memory_repo import MemoryRepository
from sparks_chat.storage.models import Message, new_id, utcnow

logger = get_logger(__name__)

LOOP_LIMIT_TEXT = "[Tool execution limit reached]"
NO_TOOL_CALLS = {"type": "none"}
LOOP_LIMIT_NUDGE = (
    "The tool call limit for this message has been reached. "
    "Answer now with the information you already have, without calling tools."
)


@dataclass
class SendMessageRequest:
    conversation_id: str
    user_id: str
    messages: list[Message]
    model_id: str
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class TurnResult:
    message: Message
    state: TurnState
    estimated_cost: int
    input_tokens: int = 0
    output_tokens: int = 0
    rounds: int = 0
    sparks_spent: Optional[int] = None
    new_balance: Optional[int] = None
    error: Optional[SparksChatError] = None  # non-fatal: loop limit or failed settlement


@dataclass
class _Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, turn: ModelTurn) -> None:
        self.input_tokens += turn.input_tokens
        self.output_tokens += turn.output_tokens


class ConversationOrchestrator:
    """Handles the full flow: message -> estimate -> model -> tools -> history -> ledger."""

    def __init__(
        self,
        ai_client: AIClient,
        registry: ToolRegistry,
        dispatcher: ToolDispatcher,
        ledger: SparksLedger,
        history: HistoryStore,
        memories: MemoryRepository,
        ai_config: AIConfig,
        tools_config: ToolsConfig,
        orchestrator_config: OrchestratorConfig,
    ):
        self._ai_client = ai_client
        self._registry = registry
        self._dispatcher = dispatcher
        self._ledger = ledger
        self._history = history
        self._memories = memories
        self._ai_config = ai_config
        self._max_rounds = tools_config.max_rounds
        self._model_timeout = orchestrator_config.model_timeout

    async def handle(
        self,
        request: SendMessageRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> TurnResult:
        """Process one inbound user message end-to-end."""
        bind_turn_context(user_id=request.user_id, conversation_id=request.conversation_id)
        try:
            return await self._handle(request, cancel_event)
        except SparksChatError as e:
            state = TurnState.BLOCKED if isinstance(e, InsufficientBalance) else TurnState.FAILED
            logger.warning("turn_ended", state=str(state), error=e.code, detail=e.message)
            raise
        finally:
            clear_turn_context()

    async def _handle(
        self, request: SendMessageRequest, cancel_event: asyncio.Event | None
    ) -> TurnResult:
        user_message, already_stored = await self._validate(request)

        self._enter(TurnState.ESTIMATING)
        memories = await self._memories.recent(
            request.user_id, limit=self._ai_config.memory_context_limit
        )
        system = build_system_prompt(self._ai_config.system_prompt, memories)
        input_estimate = estimate_token_count(conversation_text(request.messages))
        estimate = self._ledger.estimate(request.model_id, input_estimate)

        await self._ledger.check_affordable(request.user_id, estimate)
        self._enter(TurnState.BALANCE_CHECKED, estimate=estimate)

        transcript = build_messages(request.messages, request.attachments)
        tool_defs = [d.to_api_dict() for d in self._registry.list_declarations()]
        ctx = ToolContext(user_id=request.user_id, conversation_id=request.conversation_id)
        usage = _Usage()
        tools_used: list[str] = []
        rounds = 0
        loop_error: Optional[ToolLoopExceeded] = None

        while True:
            _check_cancelled(cancel_event, rounds)
            self._enter(TurnState.MODEL_CALL, round=rounds)
            turn = await self._call_model(system, transcript, request.model_id, tool_defs)
            usage.add(turn)
            if not turn.wants_tools:
                final_text = turn.text
                break
            if rounds >= self._max_rounds:
                loop_error = ToolLoopExceeded(self._max_rounds)
                logger.warning("tool_loop_exceeded", max_rounds=self._max_rounds)
                final_text = await self._best_effort_answer(
                    system, transcript, request.model_id, tool_defs, usage
                )
                break

            transcript.append({"role": "assistant", "content": turn.assistant_content()})
            _check_cancelled(cancel_event, rounds)
            self._enter(TurnState.TOOL_EXECUTING, round=rounds, calls=len(turn.tool_calls))
            results = await self._dispatcher.dispatch_all(turn.tool_calls, ctx)
            _record_tools_used(tools_used, results)
            transcript.append({"role": "user", "content": [r.to_api_block() for r in results]})
            rounds += 1

        self._enter(TurnState.FINALIZING, rounds=rounds, tools_used=tools_used)
        assistant_message = Message(
            conversation_id=request.conversation_id,
            role=Role.ASSISTANT,
            content=final_text,
            tools_used=tuple(tools_used),
            model=request.model_id,
            created_at=_stamp_after(user_message.created_at),
            id=new_id(),
        )

        result = TurnResult(
            message=assistant_message,
            state=TurnState.FINALIZING,
            estimated_cost=estimate,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            rounds=rounds,
            error=loop_error,
        )
        # The debit is attempted before the assistant message is written.
        await self._settle(request, assistant_message, usage, result)

        if not already_stored:
            await self._history.append_message(user_message)
        await self._history.append_message(assistant_message)
        result.state = TurnState.PERSISTED
        self._enter(
            TurnState.PERSISTED,
            message_id=assistant_message.id,
            sparks_spent=result.sparks_spent,
        )
        return result

    async def _validate(self, request: SendMessageRequest) -> tuple[Message, bool]:
        """Return the user message to persist and whether it is already stored.

        A new user message is stamped with the server clock; client timestamps
        are not trusted for history order.
        """
        if not request.messages:
            raise InvalidRequest("messages must not be empty")
        last = request.messages[-1]
        if last.role != Role.USER:
            raise InvalidRequest("Last message must be from user")
        if last.conversation_id != request.conversation_id:
            raise InvalidRequest("Last message belongs to a different conversation")
        conversation = await self._history.get_conversation(request.conversation_id)
        if conversation.owner_id != request.user_id:
            raise InvalidRequest("Conversation is not owned by this user")
        stored = await self._history.find_message(last.id)
        if stored is None:
            return replace(last, created_at=utcnow()), False
        if stored.conversation_id != request.conversation_id:
            raise InvalidRequest(f"Message id {last.id} is already used in another conversation")
        return stored, True

    async def _call_model(
        self,
        system: str,
        transcript: list[dict[str, Any]],
        model: str,
        tool_defs: list[dict[str, Any]] | None,
        tool_choice: dict[str, Any] | None = None,
    ) -> ModelTurn:
        try:
            return await asyncio.wait_for(
                self._ai_client.complete(
                    system=system,
                    messages=transcript,
                    model=model,
                    max_tokens=self._ai_config.max_tokens,
                    temperature=self._ai_config.temperature,
                    tools=tool_defs or None,
                    tool_choice=tool_choice,
                ),
                timeout=self._model_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ModelCallFailed(f"Model call timed out after {self._model_timeout} seconds") from e
        except Exception as e:
            logger.error("model_call_error", model=model, error=str(e))
            raise ModelCallFailed(f"Model call failed: {e}") from e

    async def _best_effort_answer(
        self,
        system: str,
        transcript: list[dict[str, Any]],
        model: str,
        tool_defs: list[dict[str, Any]],
        usage: _Usage,
    ) -> str:
        """One last call with tool use disabled so the user still gets an answer.

        The tool definitions are still sent because the transcript holds
        tool_use and tool_result blocks.
        """
        # the transcript ends with the tool results of the last round
        last = dict(transcript[-1])
        content = last["content"]
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        last["content"] = [*content, {"type": "text", "text": LOOP_LIMIT_NUDGE}]
        nudged = transcript[:-1] + [last]
        try:
            turn = await self._call_model(
                system, nudged, model, tool_defs, tool_choice=NO_TOOL_CALLS
            )
        except ModelCallFailed as e:
            logger.warning("best_effort_answer_failed", error=e.message)
            return LOOP_LIMIT_TEXT
        usage.add(turn)
        return turn.text or LOOP_LIMIT_TEXT

    async def _settle(
        self,
        request: SendMessageRequest,
        assistant_message: Message,
        usage: _Usage,
        result: TurnResult,
    ) -> None:
        try:
            charge = await self._ledger.charge_message(
                request.user_id,
                request.model_id,
                usage.input_tokens,
                usage.output_tokens,
                assistant_message.id,
            )
        except SparksChatError as e:
            logger.error(
                "sparks_settlement_failed",
                message_id=assistant_message.id,
                error=e.code,
                detail=e.message,
            )
            if result.error is None:
                result.error = e
            return
        result.sparks_spent = charge.sparks_spent
        result.new_balance = charge.new_balance

    @staticmethod
    def _enter(state: TurnState, **context: Any) -> None:
        logger.debug("turn_state", state=str(state), **context)


def _check_cancelled(cancel_event: asyncio.Event | None, rounds: int) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info("turn_cancelled", round=rounds)
        raise TurnCancelled("Request was cancelled")


def _record_tools_used(tools_used: list[str], results: list[ToolResult]) -> None:
    """Distinct names of registered tools that were called, in first-use order."""
    for result in results:
        if isinstance(result.error, ToolNotFound):
            continue
        if result.name not in tools_used:
            tools_used.append(result.name)


def _stamp_after(previous: datetime) -> datetime:
    """Server time, but strictly later than *previous*."""
    return max(utcnow(), previous + timedelta(microseconds=1))
