"""save_memory tool: lets the model remember facts about the user."""

from __future__ import annotations

from typing import Any

from sparks_chat.ai.tools.base import ParameterSpec, ToolContext, ToolDeclaration, ToolProcedure
from sparks_chat.storage.memory_repo import MemoryRepository
from sparks_chat.storage.models import Memory

SAVE_MEMORY = ToolDeclaration(
    name="save_memory",
    description=(
        "Saves a memory about the user. This can be used to remember important "
        "details about the user for future interactions."
    ),
    parameters={
        "memory": ParameterSpec(
            type="string",
            description="Memory content to be saved.",
            required=True,
        ),
    },
)


def make_save_memory(repo: MemoryRepository) -> ToolProcedure:
    async def save_memory(ctx: ToolContext, args: dict[str, Any]) -> str:
        if not ctx.user_id:
            raise PermissionError("User must be authenticated to save memories.")
        memory = await repo.save(Memory(user_id=ctx.user_id, content=args["memory"]))
        return f"Memory saved (id={memory.id})."

    return save_memory
