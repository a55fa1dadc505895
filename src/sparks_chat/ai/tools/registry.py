"""Tool registry: name -> (declaration, input model, procedure), sealed after startup."""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING, Annotated, Any, Iterable, NamedTuple, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, StrictBool, StrictFloat, StrictInt, StrictStr, create_model

from sparks_chat.ai.tools.base import ParameterSpec, ToolDeclaration, ToolProcedure
from sparks_chat.core.errors import RegistryFrozen
from sparks_chat.log import get_logger

if TYPE_CHECKING:
    from sparks_chat.storage.memory_repo import MemoryRepository

logger = get_logger(__name__)


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be empty")
    return value


_PY_TYPES: dict[str, Any] = {
    "string": StrictStr,
    "integer": StrictInt,
    "number": Union[StrictInt, StrictFloat],
    "boolean": StrictBool,
    "array": list[Any],
    "object": dict[str, Any],
}


def build_input_model(declaration: ToolDeclaration) -> type[BaseModel]:
    """Pydantic model that validates raw tool input against the declaration."""
    fields: dict[str, Any] = {}
    for name, spec in declaration.parameters.items():
        fields[name] = _field_for(spec)
    return create_model(
        f"{declaration.name}_input",
        __config__=ConfigDict(extra="ignore"),
        **fields,
    )


def _field_for(spec: ParameterSpec) -> tuple[Any, Any]:
    py_type = _PY_TYPES[spec.type]
    if spec.required:
        if spec.type == "string":
            # a blank required string counts as missing
            py_type = Annotated[StrictStr, AfterValidator(_not_blank)]
        return (py_type, ...)
    return (Optional[py_type], None)


class RegisteredTool(NamedTuple):
    declaration: ToolDeclaration
    input_model: type[BaseModel]
    procedure: ToolProcedure


class ToolRegistry:
    """Registry of all available tools.

    Tools are registered while the application starts; :meth:`freeze` seals
    the table and any later :meth:`register` raises :class:`RegistryFrozen`.
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}
        self._frozen = False

    def register(self, name: str, declaration: ToolDeclaration, procedure: ToolProcedure) -> None:
        if self._frozen:
            raise RegistryFrozen(f"Cannot register '{name}': registry is frozen")
        if name != declaration.name:
            raise ValueError(f"Tool name '{name}' does not match declaration '{declaration.name}'")
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = RegisteredTool(declaration, build_input_model(declaration), procedure)
        logger.info("tool_registered", tool_name=name)

    def freeze(self) -> None:
        if not self._frozen:
            self._tools = MappingProxyType(dict(self._tools))  # type: ignore[assignment]
            self._frozen = True
            logger.info("tool_registry_frozen", tool_count=len(self._tools))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_declarations(self, names: Iterable[str] | None = None) -> list[ToolDeclaration]:
        """Declarations in registration order, optionally restricted to *names*."""
        wanted = set(names) if names else None
        return [
            tool.declaration
            for name, tool in self._tools.items()
            if wanted is None or name in wanted
        ]


def build_registry(memory_repo: MemoryRepository) -> ToolRegistry:
    """Register all built-in tools and seal the registry."""
    from sparks_chat.ai.tools.memory import SAVE_MEMORY, make_save_memory

    registry = ToolRegistry()
    registry.register(SAVE_MEMORY.name, SAVE_MEMORY, make_save_memory(memory_repo))
    registry.freeze()
    return registry
