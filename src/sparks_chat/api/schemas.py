"""Request/response shapes of the chat, history and sparks interfaces."""

from __future__ import annotations

import base64
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sparks_chat.ai.conversation import Attachment
from sparks_chat.core.types import Role
from sparks_chat.storage.models import Message, SparkTransaction, new_id, utcnow


class Schema(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---- history ----


class MessageOut(Schema):
    id: str
    conversation_id: str
    role: Role
    content: str
    tools_used: list[str] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> MessageOut:
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            role=message.role,
            content=message.content,
            tools_used=list(message.tools_used),
            created_at=message.created_at,
        )


class HistoryPageRequest(Schema):
    conversation_id: str
    cursor: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)


class HistoryPageResponse(Schema):
    messages: list[MessageOut]
    next_cursor: Optional[str] = None


# ---- sparks ----


class EstimateRequest(Schema):
    model_id: str
    input_tokens: int = Field(ge=0)
    output_tokens: Optional[int] = Field(default=None, ge=0)


class EstimateResponse(Schema):
    estimated_cost: int
    model_id: str
    input_tokens: int
    output_tokens: int


class BalanceResponse(Schema):
    current_sparks: int
    can_claim_today: bool
    is_verified: bool
    last_claim_at: Optional[datetime] = None


class TransactionOut(Schema):
    id: str
    transaction_type: str
    amount: int
    balance_after: int
    message_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_transaction(cls, txn: SparkTransaction) -> TransactionOut:
        return cls(
            id=txn.id,
            transaction_type=str(txn.kind),
            amount=txn.amount,
            balance_after=txn.balance_after,
            message_id=txn.message_id,
            created_at=txn.created_at,
        )


class ClaimResponse(Schema):
    success: bool
    sparks_granted: int = 0
    new_balance: Optional[int] = None
    is_verified: Optional[bool] = None
    transaction: Optional[TransactionOut] = None
    error: Optional[str] = None
    next_claim_date: Optional[date] = None


# ---- chat ----


class MessageIn(Schema):
    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    created_at: datetime = Field(default_factory=utcnow)

    def to_message(self, conversation_id: str) -> Message:
        return Message(
            id=self.id,
            conversation_id=conversation_id,
            role=self.role,
            content=self.content,
            created_at=self.created_at,
        )


class AttachmentIn(Schema):
    filename: str = "attachment"
    media_type: str
    data: str  # base64

    @field_validator("data")
    @classmethod
    def _valid_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except ValueError as e:
            raise ValueError("data must be base64 encoded") from e
        return value

    def to_attachment(self) -> Attachment:
        return Attachment(
            data=base64.b64decode(self.data),
            media_type=self.media_type,
            filename=self.filename,
        )


class SendMessageIn(Schema):
    conversation_id: str
    messages: list[MessageIn]
    model_id: Optional[str] = None
    attachments: list[AttachmentIn] = Field(default_factory=list)


class SendMessageResponse(Schema):
    message: MessageOut
    sparks_spent: Optional[int] = None
    new_balance: Optional[int] = None
    warning: Optional[str] = None
