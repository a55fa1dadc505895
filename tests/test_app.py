"""Tests for application wiring and lifecycle."""

import pytest

from conftest import ScriptedClient, text_turn
from sparks_chat.api.schemas import MessageIn, SendMessageIn
from sparks_chat.app import SparksChatApp
from sparks_chat.config import AppConfig
from sparks_chat.core.types import Role


@pytest.mark.asyncio
async def test_start_chat_stop(tmp_path):
    config = AppConfig(
        storage={"db_path": str(tmp_path / "app.db")},
        ai={"default_model": "claude-3-5-haiku-latest"},
    )
    app = SparksChatApp(config, ai_client=ScriptedClient([text_turn("Hello from the app")]))

    with pytest.raises(RuntimeError):
        app.service

    await app.start()
    try:
        assert app.tool_registry.frozen
        await app.ledger.open_account("alice")
        conversation = await app.service.create_conversation("alice", title="First chat")
        response = await app.service.send_message(
            "alice",
            SendMessageIn(
                conversation_id=conversation.id,
                messages=[MessageIn(role=Role.USER, content="Hi")],
            ),
        )
    finally:
        await app.stop()

    assert response.message.content == "Hello from the app"
    assert response.new_balance == 5000 - 15


@pytest.mark.asyncio
async def test_missing_anthropic_section(tmp_path):
    app = SparksChatApp(AppConfig(storage={"db_path": str(tmp_path / "app.db")}))

    with pytest.raises(ValueError):
        await app.start()
    await app.stop()
