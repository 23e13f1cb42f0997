"""Tool specification and implementation types.

Tool implementations (file access, search, ...) live outside the agent core.
The core only needs their catalogue entries, to describe them in the system
prompt, and a way to call them by name.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

__all__ = [
    "ToolSpec",
    "ToolParameter",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
]


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolParameter:
    """One named argument of a tool, as rendered in the catalogue."""

    name: str
    type: str
    description: str = ""
    required: bool = False


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Catalogue entry for a tool.

    Attributes:
        name: Unique identifier the model uses in its action field.
        description: What the tool does, shown to the model.
        parameters: JSON Schema (``type: object``) describing the arguments.
        is_write: Whether the tool modifies the workspace.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    is_write: bool = False

    def iter_parameters(self) -> list[ToolParameter]:
        """Flatten the JSON Schema ``properties`` into parameter records."""
        properties = self.parameters.get("properties") or {}
        required = set(self.parameters.get("required") or ())
        records: list[ToolParameter] = []
        for name, schema in properties.items():
            schema = schema if isinstance(schema, Mapping) else {}
            records.append(
                ToolParameter(
                    name=str(name),
                    type=str(schema.get("type", "any")),
                    description=str(schema.get("description", "")),
                    required=name in required,
                )
            )
        return records

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters) if self.parameters else {},
            "is_write": self.is_write,
        }


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

ToolHandler = Callable[[Mapping[str, Any]], Any]

AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Run the tool.

        Returns:
            Either a :class:`~thimble.ai.orchestration.types.ToolOutcome`, a
            mapping with a boolean ``success`` key, or plain result data.

        Raises:
            Exception: If the tool fails; the invoker turns it into a failed
                outcome.
        """
        ...


@dataclass
class SimpleTool:
    """Tool wrapping a plain sync or async callable.

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="read_file", description="Read a file"),
            handler=lambda args: Path(args["path"]).read_text(),
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = inspect.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        if self._is_async:
            return await self.handler(arguments)  # type: ignore[misc]
        return self.handler(arguments)
