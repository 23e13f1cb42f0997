"""Ordered, name-indexed catalogue of the tools the agent may call."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator

from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolSpec

__all__ = [
    "ToolRegistry",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)


class DuplicateToolError(Exception):
    """A second tool was added under a name that is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"A tool named {name!r} is already registered")


class ToolNotFoundError(Exception):
    """The model named a tool that is not in the catalogue."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class ToolRegistry:
    """Tools keyed by name, iterated in the order they were added.

    Insertion order is what the system prompt lists, so the catalogue text
    stays identical from one round to the next.
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.add(tool)

    def add(self, tool: Tool, *, replace: bool = False) -> Tool:
        """Add *tool* to the catalogue.

        Raises:
            DuplicateToolError: If the name is taken and *replace* is false.
        """
        if tool.name in self._tools and not replace:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        LOGGER.debug("Tool available: %s", tool.name)
        return tool

    def add_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        replace: bool = False,
    ) -> Tool:
        return self.add(SimpleTool(spec=spec, handler=handler), replace=replace)

    def tool(self, spec: ToolSpec) -> Callable[[ToolHandler | AsyncToolHandler], ToolHandler | AsyncToolHandler]:
        """Decorator form of :meth:`add_function`.

        Example:
            @registry.tool(ToolSpec(name="list_files", description="List a directory"))
            async def list_files(args):
                ...
        """

        def decorator(handler: ToolHandler | AsyncToolHandler) -> ToolHandler | AsyncToolHandler:
            self.add_function(spec, handler)
            return handler

        return decorator

    def remove(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def catalogue(self) -> list[ToolSpec]:
        """Specs of every tool, in the order they were added."""
        return [tool.spec for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
