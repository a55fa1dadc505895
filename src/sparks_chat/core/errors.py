"""Exception hierarchy shared by the ledger, tools, history store and orchestrator.

Every error carries a stable ``code`` and a ``retryable`` flag. Validation
failures are never retryable; persistence, ledger and model failures are, so a
caller can decide whether to try again without matching on class names.
"""

from __future__ import annotations

from datetime import date


class SparksChatError(Exception):
    """Base class for all domain errors."""

    code = "error"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "message": self.message, "retryable": self.retryable}


class InvalidRequest(SparksChatError):
    """Malformed caller input (bad limit, empty message list, wrong role)."""

    code = "invalid_request"


# ---- tools ----


class ToolError(SparksChatError):
    code = "tool_error"


class ToolNotFound(ToolError):
    code = "tool_not_found"

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidToolInput(ToolError):
    code = "invalid_tool_input"

    def __init__(self, name: str, problems: list[str]):
        super().__init__(f"Invalid input for {name}: {'; '.join(problems)}")
        self.name = name
        self.problems = problems


class ToolExecutionFailed(ToolError):
    code = "tool_execution_failed"

    def __init__(self, name: str, reason: str):
        super().__init__(f"Error executing {name}: {reason}")
        self.name = name
        self.reason = reason


class RegistryFrozen(RuntimeError):
    """Raised when a tool is registered after the registry was sealed."""


# ---- ledger ----


class LedgerError(SparksChatError):
    code = "ledger_error"


class UnknownModel(LedgerError):
    code = "unknown_model"

    def __init__(self, model_id: str):
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


class InsufficientBalance(LedgerError):
    code = "insufficient_sparks"

    def __init__(self, required: int, current: int):
        super().__init__(f"Insufficient sparks: {required} required, {current} available")
        self.required = required
        self.current = current

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data.update(required=self.required, current=self.current)
        return data


class AlreadyClaimedToday(LedgerError):
    code = "already_claimed"

    def __init__(self, next_claim_date: date):
        super().__init__("Already claimed today.")
        self.next_claim_date = next_claim_date

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["next_claim_date"] = self.next_claim_date.isoformat()
        return data


class AccountNotFound(LedgerError):
    code = "account_not_found"

    def __init__(self, user_id: str):
        super().__init__(f"No sparks account for user {user_id}")
        self.user_id = user_id


class LedgerWriteError(LedgerError):
    code = "ledger_write_failed"
    retryable = True


# ---- history ----


class StorageError(SparksChatError):
    code = "storage_error"
    retryable = True


class ConversationNotFound(SparksChatError):
    code = "conversation_not_found"

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class InvalidCursor(InvalidRequest):
    code = "invalid_cursor"


# ---- orchestrator ----


class OrchestratorError(SparksChatError):
    code = "orchestrator_error"


class ToolLoopExceeded(OrchestratorError):
    code = "tool_loop_exceeded"

    def __init__(self, max_rounds: int):
        super().__init__(f"Tool execution limit reached after {max_rounds} rounds")
        self.max_rounds = max_rounds


class ModelCallFailed(OrchestratorError):
    code = "model_call_failed"
    retryable = True


class TurnCancelled(OrchestratorError):
    code = "turn_cancelled"
