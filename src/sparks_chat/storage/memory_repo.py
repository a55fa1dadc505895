"""Persistence for user memories written by the save_memory tool."""

from __future__ import annotations

from sparks_chat.log import get_logger
from sparks_chat.storage.database import Database
from sparks_chat.storage.models import Memory, format_ts, parse_ts

logger = get_logger(__name__)


class MemoryRepository:
    def __init__(self, db: Database):
        self._db = db

    async def save(self, memory: Memory) -> Memory:
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO user_memories (id, user_id, content, created_at) VALUES (?, ?, ?, ?)",
                (memory.id, memory.user_id, memory.content, format_ts(memory.created_at)),
            )
        logger.info("memory_saved", user_id=memory.user_id, memory_id=memory.id)
        return memory

    async def recent(self, user_id: str, limit: int = 20) -> list[Memory]:
        """Newest memories first."""
        if limit <= 0:
            return []
        cursor = await self._db.conn.execute(
            """SELECT * FROM user_memories WHERE user_id = ?
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (user_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            Memory(
                id=row["id"],
                user_id=row["user_id"],
                content=row["content"],
                created_at=parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    async def count(self, user_id: str) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) FROM user_memories WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        return int(row[0])
