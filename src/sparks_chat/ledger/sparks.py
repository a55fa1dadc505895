"""Sparks ledger: cost estimation, balance checks, debits and daily claims."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sparks_chat.config import SparksConfig
from sparks_chat.core.errors import InsufficientBalance
from sparks_chat.core.types import TransactionKind
from sparks_chat.ledger.pricing import PricingTable
from sparks_chat.ledger.store import LedgerStore
from sparks_chat.log import get_logger
from sparks_chat.storage.models import SparkBalance, SparkTransaction, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class BalanceView:
    current_sparks: int
    can_claim_today: bool
    is_verified: bool
    last_claim_at: Optional[datetime]


@dataclass(frozen=True)
class ClaimResult:
    sparks_granted: int
    new_balance: int
    is_verified: bool
    transaction: SparkTransaction


@dataclass(frozen=True)
class ChargeResult:
    sparks_spent: int
    new_balance: int
    transaction: SparkTransaction


class SparksLedger:
    """Per-user sparks balance. All amounts are non-negative integers.

    Mutations are delegated to :class:`LedgerStore`, which performs each of
    them as one atomic conditional update; this class never reads a balance
    and then writes a value derived from it.
    """

    def __init__(
        self,
        store: LedgerStore,
        pricing: PricingTable,
        config: SparksConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._pricing = pricing
        self._config = config
        self._tz = ZoneInfo(config.timezone)
        self._clock = clock

    @property
    def pricing(self) -> PricingTable:
        return self._pricing

    def today(self) -> date:
        """Calendar date in the reference timezone."""
        return self._clock().astimezone(self._tz).date()

    def estimate(self, model_id: str, input_tokens: int, output_tokens: Optional[int] = None) -> int:
        return self._pricing.cost(model_id, input_tokens, output_tokens)

    async def open_account(self, user_id: str, verified: bool = False) -> SparkBalance:
        grant = self._config.initial_grant
        amount = grant.verified if verified else grant.non_verified
        txn = await self._store.open_account(user_id, verified, amount, self._clock())
        if txn is not None:
            logger.info("sparks_account_opened", user_id=user_id, initial_grant=amount)
        return await self._store.get_account(user_id)

    async def get_balance(self, user_id: str) -> SparkBalance:
        return await self._store.get_account(user_id)

    async def balance_view(self, user_id: str) -> BalanceView:
        balance = await self._store.get_account(user_id)
        return BalanceView(
            current_sparks=balance.current_balance,
            can_claim_today=self._can_claim(balance),
            is_verified=balance.is_verified,
            last_claim_at=balance.last_claim_at,
        )

    async def check_affordable(self, user_id: str, estimate: int) -> SparkBalance:
        """Raise InsufficientBalance when the balance is below *estimate*. Writes nothing."""
        balance = await self._store.get_account(user_id)
        if balance.current_balance < estimate:
            raise InsufficientBalance(required=estimate, current=balance.current_balance)
        return balance

    async def debit(
        self,
        user_id: str,
        amount: int,
        related_message_id: Optional[str] = None,
        model_used: Optional[str] = None,
        estimated_tokens: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> SparkTransaction:
        _require_amount(amount)
        txn = await self._store.debit(
            user_id,
            amount,
            TransactionKind.MESSAGE_COST,
            self._clock(),
            message_id=related_message_id,
            model_used=model_used,
            estimated_tokens=estimated_tokens,
            metadata=metadata,
        )
        logger.info(
            "sparks_debited",
            user_id=user_id,
            amount=amount,
            balance_after=txn.balance_after,
            message_id=related_message_id,
        )
        return txn

    async def charge_message(
        self,
        user_id: str,
        model_id: str,
        input_tokens: int,
        output_tokens: int,
        message_id: str,
    ) -> ChargeResult:
        """Price measured token usage and debit it against the message."""
        cost = self._pricing.cost(model_id, input_tokens, output_tokens)
        txn = await self.debit(
            user_id,
            cost,
            related_message_id=message_id,
            model_used=model_id,
            estimated_tokens=input_tokens + output_tokens,
            metadata={
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "model": model_id,
            },
        )
        return ChargeResult(sparks_spent=cost, new_balance=txn.balance_after, transaction=txn)

    async def claim_daily(self, user_id: str) -> ClaimResult:
        claim = self._config.daily_claim
        txn = await self._store.claim_daily(
            user_id,
            self.today(),
            verified_amount=claim.verified,
            non_verified_amount=claim.non_verified,
            now=self._clock(),
        )
        is_verified = bool(txn.metadata.get("verified_user"))
        logger.info(
            "sparks_daily_claimed",
            user_id=user_id,
            amount=txn.amount,
            balance_after=txn.balance_after,
            verified=is_verified,
        )
        return ClaimResult(
            sparks_granted=txn.amount,
            new_balance=txn.balance_after,
            is_verified=is_verified,
            transaction=txn,
        )

    async def adjust(self, user_id: str, amount: int, reason: str) -> SparkTransaction:
        """Signed administrative change. A negative change never overdraws."""
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValueError("Adjustment must be an integer")
        metadata = {"reason": reason}
        if amount < 0:
            txn = await self._store.debit(
                user_id, -amount, TransactionKind.ADMIN_ADJUSTMENT, self._clock(), metadata=metadata
            )
        else:
            txn = await self._store.credit(
                user_id, amount, TransactionKind.ADMIN_ADJUSTMENT, self._clock(), metadata=metadata
            )
        logger.info("sparks_adjusted", user_id=user_id, amount=amount, reason=reason)
        return txn

    async def set_verified(self, user_id: str, verified: bool) -> None:
        await self._store.set_verified(user_id, verified, self._clock())

    async def transactions(self, user_id: str) -> list[SparkTransaction]:
        return await self._store.list_transactions(user_id)

    async def reconstruct_balance(self, user_id: str) -> int:
        """Fold the transaction log; equals the stored balance when the log is intact."""
        return sum(txn.amount for txn in await self._store.list_transactions(user_id))

    def _can_claim(self, balance: SparkBalance) -> bool:
        return balance.last_claim_date is None or balance.last_claim_date < self.today()


def _require_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise ValueError(f"Amount must be a non-negative integer, got {amount!r}")
