"""Facade exposing the chat, history and sparks operations to an outer transport."""

from __future__ import annotations

import asyncio

from sparks_chat.ai.orchestrator import ConversationOrchestrator, SendMessageRequest
from sparks_chat.api.schemas import (
    BalanceResponse,
    ClaimResponse,
    EstimateRequest,
    EstimateResponse,
    HistoryPageRequest,
    HistoryPageResponse,
    MessageOut,
    SendMessageIn,
    SendMessageResponse,
    TransactionOut,
)
from sparks_chat.config import AppConfig
from sparks_chat.core.errors import AlreadyClaimedToday, ConversationNotFound
from sparks_chat.ledger.sparks import SparksLedger
from sparks_chat.log import get_logger
from sparks_chat.storage.history_repo import HistoryStore
from sparks_chat.storage.models import Conversation

logger = get_logger(__name__)


class ChatService:
    """Authenticated operations for one user id each.

    Domain errors propagate unchanged except an already-claimed daily claim,
    which is reported as an unsuccessful :class:`ClaimResponse`.
    """

    def __init__(
        self,
        config: AppConfig,
        orchestrator: ConversationOrchestrator,
        ledger: SparksLedger,
        history: HistoryStore,
    ):
        self._config = config
        self._orchestrator = orchestrator
        self._ledger = ledger
        self._history = history

    async def create_conversation(self, user_id: str, title: str = "") -> Conversation:
        return await self._history.create_conversation(Conversation(owner_id=user_id, title=title))

    async def history(self, user_id: str, request: HistoryPageRequest) -> HistoryPageResponse:
        conversation = await self._history.get_conversation(request.conversation_id)
        if conversation.owner_id != user_id:
            # other users' conversations do not exist as far as this caller knows
            raise ConversationNotFound(request.conversation_id)
        limit = request.limit or self._config.history.default_limit
        page = await self._history.get_page(request.conversation_id, limit, request.cursor)
        return HistoryPageResponse(
            messages=[MessageOut.from_message(m) for m in page.messages],
            next_cursor=page.next_cursor,
        )

    def estimate(self, request: EstimateRequest) -> EstimateResponse:
        output_tokens = (
            request.output_tokens if request.output_tokens is not None else request.input_tokens
        )
        cost = self._ledger.estimate(request.model_id, request.input_tokens, output_tokens)
        return EstimateResponse(
            estimated_cost=cost,
            model_id=request.model_id,
            input_tokens=request.input_tokens,
            output_tokens=output_tokens,
        )

    async def balance(self, user_id: str) -> BalanceResponse:
        view = await self._ledger.balance_view(user_id)
        return BalanceResponse(
            current_sparks=view.current_sparks,
            can_claim_today=view.can_claim_today,
            is_verified=view.is_verified,
            last_claim_at=view.last_claim_at,
        )

    async def claim(self, user_id: str) -> ClaimResponse:
        try:
            result = await self._ledger.claim_daily(user_id)
        except AlreadyClaimedToday as e:
            logger.info("daily_claim_rejected", user_id=user_id, next_claim_date=str(e.next_claim_date))
            return ClaimResponse(success=False, error=e.code, next_claim_date=e.next_claim_date)
        return ClaimResponse(
            success=True,
            sparks_granted=result.sparks_granted,
            new_balance=result.new_balance,
            is_verified=result.is_verified,
            transaction=TransactionOut.from_transaction(result.transaction),
        )

    async def send_message(
        self,
        user_id: str,
        request: SendMessageIn,
        cancel_event: asyncio.Event | None = None,
    ) -> SendMessageResponse:
        turn = await self._orchestrator.handle(
            SendMessageRequest(
                conversation_id=request.conversation_id,
                user_id=user_id,
                messages=[m.to_message(request.conversation_id) for m in request.messages],
                model_id=request.model_id or self._config.ai.default_model,
                attachments=[a.to_attachment() for a in request.attachments],
            ),
            cancel_event=cancel_event,
        )
        return SendMessageResponse(
            message=MessageOut.from_message(turn.message),
            sparks_spent=turn.sparks_spent,
            new_balance=turn.new_balance,
            warning=turn.error.code if turn.error else None,
        )
