"""Shared fakes for the agent core tests.

Import from here instead of redefining model clients and invokers per test module.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

from thimble.ai.orchestration.types import ConversationTurn, ToolOutcome


class ScriptedModelClient:
    """Model client replaying one scripted list of chunks per round."""

    def __init__(self, rounds: Iterable[Sequence[str] | str]) -> None:
        self._rounds = [[item] if isinstance(item, str) else list(item) for item in rounds]
        self.calls: list[tuple[ConversationTurn, tuple[ConversationTurn, ...]]] = []
        self.closed = 0

    async def stream_complete(
        self,
        current_turn: ConversationTurn,
        history: Sequence[ConversationTurn],
    ) -> AsyncIterator[str]:
        index = len(self.calls)
        self.calls.append((current_turn, tuple(history)))
        if index >= len(self._rounds):
            raise AssertionError(f"unexpected model call #{index + 1}")
        for chunk in self._rounds[index]:
            await asyncio.sleep(0)
            yield chunk

    async def aclose(self) -> None:
        self.closed += 1


class BlockingModelClient:
    """Yields *first_chunk* and then waits until cancelled."""

    def __init__(self, first_chunk: str = "THOUGHT: working") -> None:
        self._first_chunk = first_chunk
        self.started = asyncio.Event()
        self.cancelled = False
        self.closed = 0

    async def stream_complete(
        self,
        current_turn: ConversationTurn,
        history: Sequence[ConversationTurn],
    ) -> AsyncIterator[str]:
        yield self._first_chunk
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        yield "never"  # pragma: no cover - unreachable

    async def aclose(self) -> None:
        self.closed += 1


class RecordingInvoker:
    """Tool invoker returning canned outcomes and recording each call."""

    def __init__(self, outcomes: Mapping[str, ToolOutcome] | None = None) -> None:
        self._outcomes = dict(outcomes or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, name: str, arguments: Mapping[str, Any]) -> ToolOutcome:
        self.calls.append((name, dict(arguments)))
        return self._outcomes.get(name, ToolOutcome.failed(f"Tool '{name}' not found"))


