"""Ledger Store: sparks balances and their append-only transaction log.

Each mutation is a single conditional UPDATE (guarded on the current balance or
the last claim date) plus the INSERT of the transaction row that records it,
both inside one serialized database transaction. A guard that does not match
means the operation is rejected; nothing is written.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta
from typing import Any, Optional

import aiosqlite

from sparks_chat.core.errors import (
    AccountNotFound,
    AlreadyClaimedToday,
    InsufficientBalance,
    LedgerWriteError,
)
from sparks_chat.core.types import TransactionKind
from sparks_chat.log import get_logger
from sparks_chat.storage.database import Database
from sparks_chat.storage.models import SparkBalance, SparkTransaction, format_ts, parse_ts

logger = get_logger(__name__)


class LedgerStore:
    def __init__(self, db: Database):
        self._db = db

    async def open_account(
        self, user_id: str, verified: bool, initial_grant: int, now: datetime
    ) -> Optional[SparkTransaction]:
        """Create the account if missing. Returns the grant transaction when one was recorded."""
        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """INSERT INTO sparks_accounts
                       (user_id, current_sparks, is_verified, total_sparks_earned, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT(user_id) DO NOTHING""",
                    (user_id, initial_grant, int(verified), initial_grant, format_ts(now), format_ts(now)),
                )
                if cursor.rowcount == 0 or initial_grant == 0:
                    return None
                txn = SparkTransaction(
                    user_id=user_id,
                    kind=TransactionKind.ADMIN_ADJUSTMENT,
                    amount=initial_grant,
                    balance_after=initial_grant,
                    metadata={"reason": "initial_grant", "verified_user": verified},
                    created_at=now,
                )
                await self._insert_transaction(conn, txn)
        except aiosqlite.Error as e:
            raise LedgerWriteError(f"Failed to open account for {user_id}: {e}") from e
        return txn

    async def get_account(self, user_id: str) -> SparkBalance:
        cursor = await self._db.conn.execute(
            "SELECT * FROM sparks_accounts WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise AccountNotFound(user_id)
        return self._row_to_balance(row)

    async def set_verified(self, user_id: str, verified: bool, now: datetime) -> None:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE sparks_accounts SET is_verified = ?, updated_at = ? WHERE user_id = ?",
                (int(verified), format_ts(now), user_id),
            )
            if cursor.rowcount == 0:
                raise AccountNotFound(user_id)

    async def debit(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind,
        now: datetime,
        message_id: Optional[str] = None,
        model_used: Optional[str] = None,
        estimated_tokens: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SparkTransaction:
        """Subtract *amount* only if the balance covers it."""
        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """UPDATE sparks_accounts
                       SET current_sparks = current_sparks - ?,
                           total_sparks_spent = total_sparks_spent + ?,
                           updated_at = ?
                       WHERE user_id = ? AND current_sparks >= ?
                       RETURNING current_sparks""",
                    (amount, amount, format_ts(now), user_id, amount),
                )
                rows = await cursor.fetchall()
                if not rows:
                    current = await self._current_sparks(conn, user_id)
                    raise InsufficientBalance(required=amount, current=current)
                txn = SparkTransaction(
                    user_id=user_id,
                    kind=kind,
                    amount=-amount,
                    balance_after=rows[0]["current_sparks"],
                    message_id=message_id,
                    model_used=model_used,
                    estimated_tokens=estimated_tokens,
                    metadata=metadata or {},
                    created_at=now,
                )
                await self._insert_transaction(conn, txn)
        except aiosqlite.Error as e:
            raise LedgerWriteError(f"Failed to debit {user_id}: {e}") from e
        return txn

    async def credit(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind,
        now: datetime,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SparkTransaction:
        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """UPDATE sparks_accounts
                       SET current_sparks = current_sparks + ?,
                           total_sparks_earned = total_sparks_earned + ?,
                           updated_at = ?
                       WHERE user_id = ?
                       RETURNING current_sparks""",
                    (amount, amount, format_ts(now), user_id),
                )
                rows = await cursor.fetchall()
                if not rows:
                    raise AccountNotFound(user_id)
                txn = SparkTransaction(
                    user_id=user_id,
                    kind=kind,
                    amount=amount,
                    balance_after=rows[0]["current_sparks"],
                    metadata=metadata or {},
                    created_at=now,
                )
                await self._insert_transaction(conn, txn)
        except aiosqlite.Error as e:
            raise LedgerWriteError(f"Failed to credit {user_id}: {e}") from e
        return txn

    async def claim_daily(
        self,
        user_id: str,
        today: date,
        verified_amount: int,
        non_verified_amount: int,
        now: datetime,
    ) -> SparkTransaction:
        """Grant the daily amount unless the stored claim date is already *today*.

        The date check and the credit are one conditional UPDATE, so concurrent
        claims for the same day cannot both pass.
        """
        today_str = today.isoformat()
        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """UPDATE sparks_accounts
                       SET current_sparks = current_sparks
                               + CASE WHEN is_verified THEN ? ELSE ? END,
                           total_sparks_earned = total_sparks_earned
                               + CASE WHEN is_verified THEN ? ELSE ? END,
                           last_claim_date = ?,
                           last_claim_at = ?,
                           updated_at = ?
                       WHERE user_id = ?
                         AND (last_claim_date IS NULL OR last_claim_date < ?)
                       RETURNING current_sparks, is_verified""",
                    (
                        verified_amount,
                        non_verified_amount,
                        verified_amount,
                        non_verified_amount,
                        today_str,
                        format_ts(now),
                        format_ts(now),
                        user_id,
                        today_str,
                    ),
                )
                rows = await cursor.fetchall()
                if not rows:
                    # raises AccountNotFound for an unknown user
                    await self._current_sparks(conn, user_id)
                    raise AlreadyClaimedToday(next_claim_date=today + timedelta(days=1))
                is_verified = bool(rows[0]["is_verified"])
                granted = verified_amount if is_verified else non_verified_amount
                txn = SparkTransaction(
                    user_id=user_id,
                    kind=TransactionKind.DAILY_CLAIM,
                    amount=granted,
                    balance_after=rows[0]["current_sparks"],
                    metadata={"verified_user": is_verified, "claim_date": today_str},
                    created_at=now,
                )
                await self._insert_transaction(conn, txn, claim_date=today_str)
        except aiosqlite.IntegrityError as e:
            # one-claim-per-day index
            raise AlreadyClaimedToday(next_claim_date=today + timedelta(days=1)) from e
        except aiosqlite.Error as e:
            raise LedgerWriteError(f"Failed to claim daily sparks for {user_id}: {e}") from e
        return txn

    async def list_transactions(self, user_id: str) -> list[SparkTransaction]:
        """All transactions of a user in the order they were applied."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM sparks_transactions WHERE user_id = ? ORDER BY seq ASC",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    @staticmethod
    async def _current_sparks(conn: aiosqlite.Connection, user_id: str) -> int:
        cursor = await conn.execute(
            "SELECT current_sparks FROM sparks_accounts WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise AccountNotFound(user_id)
        return int(row["current_sparks"])

    @staticmethod
    async def _insert_transaction(
        conn: aiosqlite.Connection, txn: SparkTransaction, claim_date: Optional[str] = None
    ) -> None:
        await conn.execute(
            """INSERT INTO sparks_transactions
               (id, user_id, transaction_type, amount, balance_after, message_id,
                model_used, estimated_tokens, claim_date, metadata_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                txn.id,
                txn.user_id,
                str(txn.kind),
                txn.amount,
                txn.balance_after,
                txn.message_id,
                txn.model_used,
                txn.estimated_tokens,
                claim_date,
                json.dumps(txn.metadata),
                format_ts(txn.created_at),
            ),
        )

    @staticmethod
    def _row_to_balance(row) -> SparkBalance:
        return SparkBalance(
            user_id=row["user_id"],
            current_balance=row["current_sparks"],
            is_verified=bool(row["is_verified"]),
            last_claim_date=date.fromisoformat(row["last_claim_date"]) if row["last_claim_date"] else None,
            last_claim_at=parse_ts(row["last_claim_at"]) if row["last_claim_at"] else None,
            total_earned=row["total_sparks_earned"],
            total_spent=row["total_sparks_spent"],
        )

    @staticmethod
    def _row_to_transaction(row) -> SparkTransaction:
        return SparkTransaction(
            id=row["id"],
            user_id=row["user_id"],
            kind=TransactionKind(row["transaction_type"]),
            amount=row["amount"],
            balance_after=row["balance_after"],
            message_id=row["message_id"],
            model_used=row["model_used"],
            estimated_tokens=row["estimated_tokens"],
            metadata=json.loads(row["metadata_json"]),
            created_at=parse_ts(row["created_at"]),
        )
