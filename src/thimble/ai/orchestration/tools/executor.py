"""Runs catalogue tools by name under a time limit."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .registry import ToolRegistry

__all__ = [
    "ToolExecutor",
    "ExecutorConfig",
    "ToolExecutionError",
]

LOGGER = logging.getLogger(__name__)


class ToolExecutionError(Exception):
    """A tool raised, or did not finish within its time limit."""

    def __init__(self, message: str, tool_name: str = "", cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.cause = cause


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Executor options.

    Attributes:
        default_timeout: Seconds a call may take; ``None`` or ``0`` means no limit.
        log_arguments: Include arguments and results in debug logs. Off by
            default because they can carry whole file contents.
    """

    default_timeout: float | None = 30.0
    log_arguments: bool = False


class ToolExecutor:
    """Looks tools up in a :class:`ToolRegistry` and awaits them."""

    def __init__(self, registry: ToolRegistry, config: ExecutorConfig | None = None) -> None:
        self.registry = registry
        self.config = config or ExecutorConfig()

    async def execute(self, name: str, arguments: Mapping[str, Any], *, timeout: float | None = None) -> Any:
        """Run tool *name* and return whatever it returned.

        Raises:
            ToolNotFoundError: If no tool has that name.
            ToolExecutionError: If the tool raises or runs past the limit.
        """
        tool = self.registry.require(name)
        limit = self.config.default_timeout if timeout is None else timeout
        if self.config.log_arguments:
            LOGGER.debug("Tool %s <- %r", name, dict(arguments))

        started = time.monotonic()
        try:
            result = await asyncio.wait_for(tool.execute(arguments), timeout=limit or None)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Tool %s exceeded its %gs limit", name, limit)
            raise ToolExecutionError(f"timed out after {limit:g}s", name, exc) from exc
        except Exception as exc:
            LOGGER.warning("Tool %s raised %s: %s", name, type(exc).__name__, exc)
            raise ToolExecutionError(str(exc) or type(exc).__name__, name, exc) from exc

        elapsed_ms = (time.monotonic() - started) * 1000
        if self.config.log_arguments:
            LOGGER.debug("Tool %s -> %r (%.1fms)", name, result, elapsed_ms)
        else:
            LOGGER.debug("Tool %s finished in %.1fms", name, elapsed_ms)
        return result

    def has_tool(self, name: str) -> bool:
        return name in self.registry
