"""The seam through which the agent loop calls tools.

The loop depends only on :class:`ToolInvoker`. Whatever happens behind it
(lookup, validation, sandboxing, timeouts) must come back as a
:class:`~thimble.ai.orchestration.types.ToolOutcome`; a failure is data for
the next round, never an exception that unwinds the loop.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, runtime_checkable

from ..types import ToolOutcome
from .executor import ExecutorConfig, ToolExecutionError, ToolExecutor
from .registry import ToolNotFoundError, ToolRegistry

__all__ = [
    "ToolInvoker",
    "RegistryToolInvoker",
    "normalize_outcome",
]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ToolInvoker(Protocol):
    """Executes one named action with structured arguments."""

    async def invoke(self, name: str, arguments: Mapping[str, Any]) -> ToolOutcome:
        ...


def normalize_outcome(result: Any) -> ToolOutcome:
    """Coerce a raw tool return value into a :class:`ToolOutcome`.

    Tools may return an outcome directly, a ``{"success", "data", "error"}``
    mapping, or plain data (which counts as success).
    """
    if isinstance(result, ToolOutcome):
        return result
    if isinstance(result, Mapping) and isinstance(result.get("success"), bool):
        if result["success"]:
            return ToolOutcome.ok(result.get("data"))
        return ToolOutcome.failed(str(result.get("error") or "tool reported failure"))
    return ToolOutcome.ok(result)


class RegistryToolInvoker:
    """:class:`ToolInvoker` backed by a :class:`ToolRegistry` and a :class:`ToolExecutor`."""

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        *,
        executor: ToolExecutor | None = None,
        config: ExecutorConfig | None = None,
    ) -> None:
        if executor is None:
            executor = ToolExecutor(registry or ToolRegistry(), config)
        self._executor = executor

    @property
    def registry(self) -> ToolRegistry:
        return self._executor.registry

    async def invoke(self, name: str, arguments: Mapping[str, Any]) -> ToolOutcome:
        try:
            result = await self._executor.execute(name, arguments)
        except ToolNotFoundError as exc:
            LOGGER.warning("Model requested unknown tool %s", name)
            return ToolOutcome.failed(str(exc))
        except ToolExecutionError as exc:
            return ToolOutcome.failed(str(exc))
        return normalize_outcome(result)
