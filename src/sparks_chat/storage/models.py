"""Data models for storage layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

from sparks_chat.core.types import Role, TransactionKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def format_ts(value: datetime) -> str:
    """Fixed-width UTC ISO timestamp; lexical order equals chronological order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Message:
    conversation_id: str
    role: Role
    content: str
    tools_used: tuple[str, ...] = ()
    model: str = ""
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": str(self.role),
            "content": self.content,
            "tools_used": list(self.tools_used),
            "created_at": format_ts(self.created_at),
        }


@dataclass(frozen=True)
class Conversation:
    owner_id: str
    title: str = ""
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class HistoryPage:
    messages: list[Message]
    next_cursor: Optional[str] = None


@dataclass(frozen=True)
class SparkBalance:
    user_id: str
    current_balance: int
    is_verified: bool
    last_claim_date: Optional[date] = None
    last_claim_at: Optional[datetime] = None
    total_earned: int = 0
    total_spent: int = 0


@dataclass(frozen=True)
class SparkTransaction:
    user_id: str
    kind: TransactionKind
    amount: int
    balance_after: int
    message_id: Optional[str] = None
    model_used: Optional[str] = None
    estimated_tokens: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "transaction_type": str(self.kind),
            "amount": self.amount,
            "balance_after": self.balance_after,
            "message_id": self.message_id,
            "model_used": self.model_used,
            "estimated_tokens": self.estimated_tokens,
            "metadata": dict(self.metadata),
            "created_at": format_ts(self.created_at),
        }


@dataclass(frozen=True)
class Memory:
    user_id: str
    content: str
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
