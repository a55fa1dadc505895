"""Tests for the tool registry, input validation and dispatch."""

import asyncio

import pytest

from sparks_chat.ai.tools.base import ParameterSpec, ToolCall, ToolContext, ToolDeclaration
from sparks_chat.ai.tools.dispatcher import ToolDispatcher
from sparks_chat.ai.tools.memory import SAVE_MEMORY, make_save_memory
from sparks_chat.ai.tools.registry import ToolRegistry, build_registry
from sparks_chat.core.errors import (
    InvalidToolInput,
    RegistryFrozen,
    ToolError,
    ToolExecutionFailed,
    ToolNotFound,
)

CTX = ToolContext(user_id="alice", conversation_id="conv-1")

ECHO = ToolDeclaration(
    name="echo",
    description="Echo text back.",
    parameters={
        "text": ParameterSpec(type="string", description="Text to echo.", required=True),
        "times": ParameterSpec(type="integer", description="Repeat count."),
    },
)


async def _echo(ctx, args):
    return args["text"] * args.get("times", 1)


async def _boom(ctx, args):
    raise RuntimeError("kaboom")


async def _slow(ctx, args):
    await asyncio.sleep(5)
    return "too late"


async def _silent(ctx, args):
    return None


async def _quota(ctx, args):
    raise ToolError("quota reached")


def _registry(**procedures) -> ToolRegistry:
    registry = ToolRegistry()
    for name, procedure in procedures.items():
        declaration = ECHO if name == "echo" else ToolDeclaration(name=name, description=name)
        registry.register(name, declaration, procedure)
    registry.freeze()
    return registry


class TestDeclarations:
    def test_schema_shape(self):
        schema = ECHO.to_schema()

        assert schema["name"] == "echo"
        assert schema["parameters"]["type"] == "object"
        assert schema["parameters"]["properties"]["text"] == {"type": "string", "description": "Text to echo."}
        assert schema["parameters"]["required"] == ["text"]
        assert "input_schema" in ECHO.to_api_dict()

    def test_unknown_parameter_type(self):
        with pytest.raises(ValueError):
            ParameterSpec(type="date")


class TestRegistry:
    def test_register_after_freeze(self):
        registry = _registry(echo=_echo)

        with pytest.raises(RegistryFrozen):
            registry.register("silent", ToolDeclaration(name="silent", description=""), _silent)
        assert registry.names() == ["echo"]

    def test_duplicate_and_mismatched_names(self):
        registry = ToolRegistry()
        registry.register("echo", ECHO, _echo)

        with pytest.raises(ValueError):
            registry.register("echo", ECHO, _echo)
        with pytest.raises(ValueError):
            registry.register("other", ECHO, _echo)

    def test_list_declarations(self):
        registry = _registry(echo=_echo, silent=_silent)

        assert [d.name for d in registry.list_declarations()] == ["echo", "silent"]
        assert [d.name for d in registry.list_declarations(["silent"])] == ["silent"]

    def test_build_registry(self, memories):
        registry = build_registry(memories)

        assert registry.frozen
        assert registry.names() == ["save_memory"]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success(self):
        dispatcher = ToolDispatcher(_registry(echo=_echo))

        result = await dispatcher.dispatch("echo", {"text": "hi", "times": 2}, CTX, call_id="c1")

        assert result.ok
        assert result.content == "hihi"
        assert result.to_api_block() == {"type": "tool_result", "tool_use_id": "c1", "content": "hihi"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        dispatcher = ToolDispatcher(_registry(echo=_echo))

        result = await dispatcher.dispatch("nonexistent_tool", {}, CTX)

        assert isinstance(result.error, ToolNotFound)
        assert result.to_api_block()["is_error"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_input", [
        {},
        {"text": "   "},
        {"text": 5},
        {"text": "hi", "times": "two"},
        ["hi"],
    ])
    async def test_invalid_input(self, raw_input):
        dispatcher = ToolDispatcher(_registry(echo=_echo))

        result = await dispatcher.dispatch("echo", raw_input, CTX)

        assert isinstance(result.error, InvalidToolInput)

    @pytest.mark.asyncio
    async def test_exception_is_isolated(self):
        dispatcher = ToolDispatcher(_registry(boom=_boom))

        result = await dispatcher.dispatch("boom", {}, CTX)

        assert isinstance(result.error, ToolExecutionFailed)
        assert "kaboom" in result.content

    @pytest.mark.asyncio
    async def test_tool_error_keeps_tool_name(self):
        dispatcher = ToolDispatcher(_registry(quota=_quota))

        result = await dispatcher.dispatch("quota", {}, CTX, call_id="q1")

        assert result.name == "quota"
        assert result.content == "quota reached"
        assert isinstance(result.error, ToolError)

    @pytest.mark.asyncio
    async def test_timeout(self):
        dispatcher = ToolDispatcher(_registry(slow=_slow), timeout=0.05)

        result = await dispatcher.dispatch("slow", {}, CTX)

        assert isinstance(result.error, ToolExecutionFailed)
        assert "timed out" in result.content

    @pytest.mark.asyncio
    async def test_none_result(self):
        dispatcher = ToolDispatcher(_registry(silent=_silent))

        result = await dispatcher.dispatch("silent", {}, CTX)

        assert result.ok
        assert result.content == "silent executed successfully"

    @pytest.mark.asyncio
    async def test_dispatch_all_keeps_order(self):
        dispatcher = ToolDispatcher(_registry(echo=_echo, boom=_boom))
        calls = [
            ToolCall(id="a", name="echo", input={"text": "one"}),
            ToolCall(id="b", name="boom", input={}),
            ToolCall(id="c", name="echo", input={"text": "three"}),
        ]

        results = await dispatcher.dispatch_all(calls, CTX)

        assert [r.call_id for r in results] == ["a", "b", "c"]
        assert [r.ok for r in results] == [True, False, True]


class TestSaveMemory:
    @pytest.mark.asyncio
    async def test_saves_memory(self, memories):
        dispatcher = ToolDispatcher(build_registry(memories))

        result = await dispatcher.dispatch("save_memory", {"memory": "Prefers metric units"}, CTX)

        assert result.ok
        saved = await memories.recent("alice")
        assert [m.content for m in saved] == ["Prefers metric units"]

    @pytest.mark.asyncio
    async def test_blank_memory_is_not_saved(self, memories):
        dispatcher = ToolDispatcher(build_registry(memories))

        result = await dispatcher.dispatch("save_memory", {"memory": ""}, CTX)

        assert isinstance(result.error, InvalidToolInput)
        assert await memories.count("alice") == 0

    @pytest.mark.asyncio
    async def test_requires_user(self, memories):
        procedure = make_save_memory(memories)
        registry = ToolRegistry()
        registry.register(SAVE_MEMORY.name, SAVE_MEMORY, procedure)
        dispatcher = ToolDispatcher(registry)

        result = await dispatcher.dispatch(
            "save_memory", {"memory": "x"}, ToolContext(user_id="", conversation_id="conv-1")
        )

        assert isinstance(result.error, ToolExecutionFailed)
        assert await memories.count("") == 0
