"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class TransactionKind(StrEnum):
    DAILY_CLAIM = "daily_claim"
    MESSAGE_COST = "message_cost"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class TurnState(StrEnum):
    ESTIMATING = "estimating"
    BALANCE_CHECKED = "balance_checked"
    MODEL_CALL = "model_call"
    TOOL_EXECUTING = "tool_executing"
    FINALIZING = "finalizing"
    PERSISTED = "persisted"
    BLOCKED = "blocked"
    FAILED = "failed"
