"""Tests for the Anthropic backend's request shaping and response parsing."""

from types import SimpleNamespace

import pytest

from sparks_chat.ai.client import AnthropicClient
from sparks_chat.config import AnthropicConfig

TOOLS = [{"name": "save_memory", "description": "Save", "input_schema": {"type": "object"}}]


class _Messages:
    def __init__(self, response):
        self.response = response
        self.kwargs: dict = {}

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self.response


def _response(*blocks):
    return SimpleNamespace(
        content=list(blocks),
        usage=SimpleNamespace(input_tokens=12, output_tokens=3),
        stop_reason="end_turn",
    )


@pytest.fixture
def client_and_messages():
    client = AnthropicClient(AnthropicConfig(api_key="test-key"))
    messages = _Messages(_response(SimpleNamespace(type="text", text="Done")))
    client._client = SimpleNamespace(messages=messages)
    return client, messages


class TestAnthropicClient:
    @pytest.mark.asyncio
    async def test_tool_choice_sent_with_tools(self, client_and_messages):
        client, messages = client_and_messages

        turn = await client.complete(
            "sys", [{"role": "user", "content": "hi"}], "test-model",
            tools=TOOLS, tool_choice={"type": "none"},
        )

        assert messages.kwargs["tools"] == TOOLS
        assert messages.kwargs["tool_choice"] == {"type": "none"}
        assert turn.text == "Done"
        assert (turn.input_tokens, turn.output_tokens) == (12, 3)

    @pytest.mark.asyncio
    async def test_no_tools_no_tool_choice(self, client_and_messages):
        client, messages = client_and_messages

        await client.complete(
            "sys", [{"role": "user", "content": "hi"}], "test-model", tool_choice={"type": "none"}
        )

        assert "tools" not in messages.kwargs
        assert "tool_choice" not in messages.kwargs

    @pytest.mark.asyncio
    async def test_tool_use_blocks_parsed(self, client_and_messages):
        client, messages = client_and_messages
        messages.response = _response(
            SimpleNamespace(type="text", text="Saving."),
            SimpleNamespace(type="tool_use", id="toolu_1", name="save_memory", input={"content": "x"}),
        )

        turn = await client.complete("sys", [], "test-model", tools=TOOLS)

        assert turn.wants_tools
        assert turn.tool_calls[0].name == "save_memory"
        assert turn.tool_calls[0].input == {"content": "x"}
        assert "tool_choice" not in messages.kwargs
