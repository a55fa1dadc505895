"""Tool declarations, procedures and results for model function calling."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional

from sparks_chat.core.errors import ToolError

PARAMETER_TYPES = frozenset({"string", "integer", "number", "boolean", "array", "object"})


@dataclass(frozen=True)
class ParameterSpec:
    type: str
    description: str = ""
    required: bool = False

    def __post_init__(self) -> None:
        if self.type not in PARAMETER_TYPES:
            raise ValueError(f"Unsupported parameter type: {self.type}")


@dataclass(frozen=True)
class ToolDeclaration:
    """Machine-readable description of a callable capability, shown to the model."""

    name: str
    description: str
    parameters: Mapping[str, ParameterSpec] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @property
    def required(self) -> list[str]:
        return [name for name, spec in self.parameters.items() if spec.required]

    def to_schema(self) -> dict[str, Any]:
        """Provider-neutral function declaration."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self._json_schema(),
        }

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self._json_schema(),
        }

    def _json_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                name: {"type": spec.type, "description": spec.description}
                for name, spec in self.parameters.items()
            },
            "required": self.required,
        }


@dataclass(frozen=True)
class ToolContext:
    """Who a tool call runs on behalf of."""

    user_id: str
    conversation_id: str


# A procedure returns a text result for the model, or None for a plain success.
ToolProcedure = Callable[[ToolContext, dict[str, Any]], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class ToolCall:
    """A structured function-call request emitted by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    name: str
    content: str
    call_id: str = ""
    error: Optional[ToolError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_api_block(self) -> dict[str, Any]:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.call_id,
            "content": self.content,
        }
        if self.error is not None:
            block["is_error"] = True
        return block
