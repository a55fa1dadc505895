"""SQLite database connection manager with schema migration and serialized write transactions."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from sparks_chat.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id              TEXT    PRIMARY KEY,
    owner_id        TEXT    NOT NULL,
    title           TEXT    NOT NULL DEFAULT '',
    created_at      TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_owner
    ON conversations(owner_id, created_at);

CREATE TABLE IF NOT EXISTS messages (
    id              TEXT    PRIMARY KEY,
    conversation_id TEXT    NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role            TEXT    NOT NULL CHECK(role IN ('user','assistant')),
    content         TEXT    NOT NULL,
    tools_used_json TEXT    NOT NULL DEFAULT '[]',
    model           TEXT    NOT NULL DEFAULT '',
    created_at      TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_page
    ON messages(conversation_id, created_at DESC, id DESC);

CREATE TABLE IF NOT EXISTS sparks_accounts (
    user_id             TEXT    PRIMARY KEY,
    current_sparks      INTEGER NOT NULL DEFAULT 0 CHECK(current_sparks >= 0),
    is_verified         INTEGER NOT NULL DEFAULT 0,
    last_claim_date     TEXT,
    last_claim_at       TEXT,
    total_sparks_earned INTEGER NOT NULL DEFAULT 0,
    total_sparks_spent  INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS sparks_transactions (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT    NOT NULL UNIQUE,
    user_id          TEXT    NOT NULL REFERENCES sparks_accounts(user_id),
    transaction_type TEXT    NOT NULL
                     CHECK(transaction_type IN ('daily_claim','message_cost','admin_adjustment')),
    amount           INTEGER NOT NULL,
    balance_after    INTEGER NOT NULL CHECK(balance_after >= 0),
    message_id       TEXT,
    model_used       TEXT,
    estimated_tokens INTEGER,
    claim_date       TEXT,
    metadata_json    TEXT    NOT NULL DEFAULT '{}',
    created_at       TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_user
    ON sparks_transactions(user_id, seq);

CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_one_claim_per_day
    ON sparks_transactions(user_id, claim_date)
    WHERE transaction_type = 'daily_claim';

CREATE TABLE IF NOT EXISTS user_memories (
    id              TEXT    PRIMARY KEY,
    user_id         TEXT    NOT NULL,
    content         TEXT    NOT NULL,
    created_at      TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_user
    ON user_memories(user_id, created_at DESC);
"""


class Database:
    """Async SQLite database manager.

    The connection runs in autocommit mode. All writes go through
    :meth:`transaction`, which holds a process-wide lock and an IMMEDIATE
    SQLite transaction so that a conditional update and the ledger row that
    records it commit (or roll back) together.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed statements as one atomic write."""
        async with self._write_lock:
            conn = self.conn
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                await conn.execute("COMMIT")

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
