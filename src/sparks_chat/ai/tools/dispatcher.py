"""Validates and executes single tool calls, converting every failure into a ToolResult."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from pydantic import ValidationError

from sparks_chat.ai.tools.base import ToolCall, ToolContext, ToolResult
from sparks_chat.ai.tools.registry import ToolRegistry
from sparks_chat.core.errors import InvalidToolInput, ToolError, ToolExecutionFailed, ToolNotFound
from sparks_chat.log import get_logger

logger = get_logger(__name__)


class ToolDispatcher:
    """Runs tool procedures against the registry.

    ``dispatch`` never raises for a bad or failing call; the error is carried
    in the returned :class:`ToolResult` so the model can be told about it.
    Each call commits or fails on its own; there is no grouping across calls.
    """

    def __init__(self, registry: ToolRegistry, timeout: float = 30.0):
        self._registry = registry
        self._timeout = timeout

    async def dispatch(
        self,
        name: str,
        raw_input: Any,
        ctx: ToolContext,
        call_id: str = "",
    ) -> ToolResult:
        tool = self._registry.get(name)
        if tool is None:
            return self._failed(ToolNotFound(name), name, call_id)

        if not isinstance(raw_input, dict):
            return self._failed(InvalidToolInput(name, ["input must be an object"]), name, call_id)
        try:
            validated = tool.input_model.model_validate(raw_input)
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
                for err in e.errors()
            ]
            return self._failed(InvalidToolInput(name, problems), name, call_id)

        args = validated.model_dump(exclude_unset=True)
        try:
            result = await asyncio.wait_for(tool.procedure(ctx, args), timeout=self._timeout)
        except asyncio.TimeoutError:
            return self._failed(
                ToolExecutionFailed(name, f"timed out after {self._timeout} seconds"), name, call_id
            )
        except ToolError as e:
            return self._failed(e, name, call_id)
        except Exception as e:
            logger.error("tool_execution_error", tool=name, error=str(e))
            return self._failed(ToolExecutionFailed(name, str(e) or type(e).__name__), name, call_id)

        content = result if result is not None else f"{name} executed successfully"
        logger.info("tool_executed", tool=name, call_id=call_id)
        return ToolResult(name=name, content=content, call_id=call_id)

    async def dispatch_all(self, calls: Sequence[ToolCall], ctx: ToolContext) -> list[ToolResult]:
        """Run one round of calls concurrently; results keep the order of *calls*."""
        return list(
            await asyncio.gather(
                *(self.dispatch(call.name, call.input, ctx, call_id=call.id) for call in calls)
            )
        )

    @staticmethod
    def _failed(error: ToolError, name: str, call_id: str) -> ToolResult:
        logger.warning("tool_call_failed", tool=name, call_id=call_id, error=error.code, detail=error.message)
        return ToolResult(name=name, content=error.message, call_id=call_id, error=error)
