"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import Optional

from sparks_chat.ai.client import AIClient, AnthropicClient
from sparks_chat.ai.orchestrator import ConversationOrchestrator
from sparks_chat.ai.tools.dispatcher import ToolDispatcher
from sparks_chat.ai.tools.registry import ToolRegistry, build_registry
from sparks_chat.api.service import ChatService
from sparks_chat.config import AppConfig
from sparks_chat.ledger.pricing import PricingTable
from sparks_chat.ledger.sparks import SparksLedger
from sparks_chat.ledger.store import LedgerStore
from sparks_chat.log import get_logger
from sparks_chat.storage.database import Database
from sparks_chat.storage.history_repo import HistoryStore
from sparks_chat.storage.memory_repo import MemoryRepository

logger = get_logger(__name__)


class SparksChatApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, ai_client: Optional[AIClient] = None):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.history = HistoryStore(self.db, max_page_size=config.history.max_limit)
        self.memories = MemoryRepository(self.db)
        self.ledger = SparksLedger(
            LedgerStore(self.db),
            PricingTable(config.sparks.multipliers(), min_cost=config.sparks.min_cost),
            config.sparks,
        )
        self._ai_client = ai_client
        self.tool_registry: ToolRegistry | None = None
        self._service: ChatService | None = None

    @property
    def service(self) -> ChatService:
        if self._service is None:
            raise RuntimeError("Application not started. Call start() first.")
        return self._service

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()

        # 2. Tools (sealed once registered)
        self.tool_registry = build_registry(self.memories)

        # 3. Model backend
        ai_client = self._ai_client or self._create_ai_client()

        # 4. Orchestrator and service facade
        orchestrator = ConversationOrchestrator(
            ai_client=ai_client,
            registry=self.tool_registry,
            dispatcher=ToolDispatcher(self.tool_registry, timeout=self.config.tools.call_timeout),
            ledger=self.ledger,
            history=self.history,
            memories=self.memories,
            ai_config=self.config.ai,
            tools_config=self.config.tools,
            orchestrator_config=self.config.orchestrator,
        )
        self._service = ChatService(self.config, orchestrator, self.ledger, self.history)
        logger.info(
            "sparks_chat_started",
            tools=self.tool_registry.names(),
            models=self.ledger.pricing.model_ids,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.db.close()
        logger.info("sparks_chat_stopped")

    def _create_ai_client(self) -> AIClient:
        if not self.config.anthropic:
            raise ValueError("No 'anthropic' section in config; cannot create the model client")
        return AnthropicClient(self.config.anthropic)
