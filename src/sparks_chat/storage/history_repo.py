"""Append-only conversation history with cursor pagination."""

from __future__ import annotations

import json
from typing import Optional

import aiosqlite

from sparks_chat.core.errors import ConversationNotFound, InvalidRequest, StorageError
from sparks_chat.core.types import Role
from sparks_chat.log import get_logger
from sparks_chat.storage.database import Database
from sparks_chat.storage.models import (
    Conversation,
    HistoryPage,
    Message,
    format_ts,
    parse_ts,
)
from sparks_chat.storage.pagination import KeysetPaginator, PageKey

logger = get_logger(__name__)


class HistoryStore:
    """Conversations and their messages. Messages are never updated in place."""

    def __init__(self, db: Database, max_page_size: int = 50):
        self._db = db
        self._max_page_size = max_page_size

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    """INSERT INTO conversations (id, owner_id, title, created_at)
                       VALUES (?, ?, ?, ?)""",
                    (
                        conversation.id,
                        conversation.owner_id,
                        conversation.title,
                        format_ts(conversation.created_at),
                    ),
                )
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to create conversation: {e}") from e
        logger.info("conversation_created", conversation_id=conversation.id, owner_id=conversation.owner_id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        cursor = await self._db.conn.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise ConversationNotFound(conversation_id)
        return Conversation(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            created_at=parse_ts(row["created_at"]),
        )

    async def append_message(self, message: Message) -> Message:
        """Persist a message. Appending an id that already exists is an error."""
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    """INSERT INTO messages
                       (id, conversation_id, role, content, tools_used_json, model, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        message.id,
                        message.conversation_id,
                        str(message.role),
                        message.content,
                        json.dumps(list(message.tools_used)),
                        message.model,
                        format_ts(message.created_at),
                    ),
                )
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to append message {message.id}: {e}") from e
        return message

    async def find_message(self, message_id: str) -> Optional[Message]:
        """Look up a message by id in any conversation."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM messages WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row is not None else None

    async def get_page(
        self, conversation_id: str, limit: int, cursor: Optional[str] = None
    ) -> HistoryPage:
        """Return up to *limit* messages older than *cursor*, oldest first."""
        if limit < 1 or limit > self._max_page_size:
            raise InvalidRequest(f"limit must be between 1 and {self._max_page_size}")

        async def _fetch(before: Optional[PageKey], count: int) -> list[Message]:
            return await self._fetch_desc(conversation_id, before, count)

        paginator = KeysetPaginator(_fetch, key=_message_key)
        page = await paginator.page(limit, cursor)
        return HistoryPage(messages=page.items, next_cursor=page.next_cursor)

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Full transcript in chronological order."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM messages WHERE conversation_id = ?
               ORDER BY created_at ASC, id ASC""",
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def _fetch_desc(
        self, conversation_id: str, before: Optional[PageKey], count: int
    ) -> list[Message]:
        if before is None:
            sql = """SELECT * FROM messages WHERE conversation_id = ?
                     ORDER BY created_at DESC, id DESC LIMIT ?"""
            params: tuple = (conversation_id, count)
        elif before.id is None:
            sql = """SELECT * FROM messages
                     WHERE conversation_id = ? AND created_at < ?
                     ORDER BY created_at DESC, id DESC LIMIT ?"""
            params = (conversation_id, before.created_at, count)
        else:
            sql = """SELECT * FROM messages
                     WHERE conversation_id = ?
                       AND (created_at < ? OR (created_at = ? AND id < ?))
                     ORDER BY created_at DESC, id DESC LIMIT ?"""
            params = (conversation_id, before.created_at, before.created_at, before.id, count)
        try:
            db_cursor = await self._db.conn.execute(sql, params)
            rows = await db_cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to fetch messages: {e}") from e
        return [self._row_to_message(row) for row in rows]

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=Role(row["role"]),
            content=row["content"],
            tools_used=tuple(json.loads(row["tools_used_json"])),
            model=row["model"],
            created_at=parse_ts(row["created_at"]),
        )


def _message_key(message: Message) -> PageKey:
    return PageKey(created_at=format_ts(message.created_at), id=message.id)
