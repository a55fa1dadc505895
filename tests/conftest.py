"""Shared fixtures: a temporary database, a fixed clock and a scripted model backend."""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from sparks_chat.ai.client import AIClient, ModelTurn
from sparks_chat.ai.orchestrator import ConversationOrchestrator
from sparks_chat.ai.tools.base import ToolCall
from sparks_chat.ai.tools.dispatcher import ToolDispatcher
from sparks_chat.ai.tools.registry import build_registry
from sparks_chat.config import AIConfig, DailyClaimConfig, OrchestratorConfig, SparksConfig, ToolsConfig
from sparks_chat.ledger.pricing import PricingTable
from sparks_chat.ledger.sparks import SparksLedger
from sparks_chat.ledger.store import LedgerStore
from sparks_chat.storage.database import Database
from sparks_chat.storage.history_repo import HistoryStore
from sparks_chat.storage.memory_repo import MemoryRepository

TEST_MODEL = "test-model"
PRICEY_MODEL = "pricey-model"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class ScriptedClient(AIClient):
    """Returns pre-programmed turns in order and records every request."""

    def __init__(self, turns: list[ModelTurn | Exception]):
        self._turns = list(turns)
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: dict[str, Any] | None = None,
    ) -> ModelTurn:
        self.calls.append({
            "system": system,
            "messages": copy.deepcopy(messages),
            "model": model,
            "tools": tools,
            "tool_choice": tool_choice,
        })
        if not self._turns:
            raise AssertionError("unexpected model call")
        turn = self._turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn


def text_turn(text: str, input_tokens: int = 10, output_tokens: int = 5) -> ModelTurn:
    return ModelTurn(text=text, input_tokens=input_tokens, output_tokens=output_tokens, stop_reason="end_turn")


def tool_turn(*calls: tuple[str, dict], input_tokens: int = 10, output_tokens: int = 5) -> ModelTurn:
    return ModelTurn(
        tool_calls=[ToolCall(id=f"call_{i}", name=name, input=args) for i, (name, args) in enumerate(calls)],
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        stop_reason="tool_use",
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sparks_config() -> SparksConfig:
    return SparksConfig(
        timezone="UTC",
        daily_claim=DailyClaimConfig(verified=10000, non_verified=5000),
        initial_grant=DailyClaimConfig(verified=1000, non_verified=500),
        min_cost=1,
        model_multipliers={TEST_MODEL: "1", PRICEY_MODEL: "2.5"},
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "sparks_chat.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def ledger(db, sparks_config, clock) -> SparksLedger:
    pricing = PricingTable(sparks_config.multipliers(), min_cost=sparks_config.min_cost)
    return SparksLedger(LedgerStore(db), pricing, sparks_config, clock=clock)


@pytest.fixture
def history(db) -> HistoryStore:
    return HistoryStore(db, max_page_size=50)


@pytest.fixture
def memories(db) -> MemoryRepository:
    return MemoryRepository(db)


@pytest.fixture
def make_orchestrator(ledger, history, memories):
    def _make(client: AIClient, max_rounds: int = 10, call_timeout: float = 5.0) -> ConversationOrchestrator:
        registry = build_registry(memories)
        return ConversationOrchestrator(
            ai_client=client,
            registry=registry,
            dispatcher=ToolDispatcher(registry, timeout=call_timeout),
            ledger=ledger,
            history=history,
            memories=memories,
            ai_config=AIConfig(default_model=TEST_MODEL, system_prompt="Be helpful."),
            tools_config=ToolsConfig(max_rounds=max_rounds, call_timeout=call_timeout),
            orchestrator_config=OrchestratorConfig(model_timeout=5.0),
        )

    return _make
