"""Append-only conversation history owned by one agent request."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, Iterator, Mapping

from .types import ConversationTurn, ToolOutcome

__all__ = [
    "ConversationHistory",
    "validate_seed",
    "format_observation",
    "OBSERVATION_PREFIX",
]

LOGGER = logging.getLogger(__name__)

OBSERVATION_PREFIX = "Observation: "
_SEEDABLE_ROLES = ("user", "assistant")


def format_observation(outcome: ToolOutcome) -> str:
    """Summarize a tool outcome as the user-role observation text."""
    if outcome.success:
        data = json.dumps(outcome.data, ensure_ascii=False, default=str)
        return f"{OBSERVATION_PREFIX}Tool succeeded: {data}"
    return f"{OBSERVATION_PREFIX}Tool failed: {outcome.error or 'unknown error'}"


def validate_seed(seed: Iterable[Mapping[str, Any] | ConversationTurn]) -> list[ConversationTurn]:
    """Return the valid turns of a caller-supplied seed.

    Turns without a role or content, or with a role other than ``user`` or
    ``assistant``, are dropped with a warning. System turns are rebuilt every
    round and are never taken from a seed.
    """
    turns: list[ConversationTurn] = []
    for index, entry in enumerate(seed):
        if isinstance(entry, ConversationTurn):
            role, content = entry.role, entry.content
        elif isinstance(entry, Mapping):
            role, content = entry.get("role"), entry.get("content")
        else:
            LOGGER.warning("Dropping seed turn %d: unsupported type %s", index, type(entry).__name__)
            continue
        if not role or not isinstance(content, str) or not content:
            LOGGER.warning("Dropping seed turn %d: missing role or content", index)
            continue
        if role not in _SEEDABLE_ROLES:
            LOGGER.warning("Dropping seed turn %d: role %r cannot be seeded", index, role)
            continue
        turns.append(ConversationTurn(role=role, content=content))
    return turns


class ConversationHistory:
    """Ordered, append-only sequence of user and assistant turns."""

    def __init__(self, turns: Iterable[ConversationTurn] = ()) -> None:
        self._turns: list[ConversationTurn] = list(turns)

    @classmethod
    def from_seed(cls, seed: Iterable[Mapping[str, Any] | ConversationTurn]) -> ConversationHistory:
        return cls(validate_seed(seed))

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))

    def append(self, turn: ConversationTurn) -> None:
        if turn.role == "system":
            raise ValueError("system turns are not stored in conversation history")
        self._turns.append(turn)

    def append_user(self, content: str) -> None:
        self.append(ConversationTurn.user(content))

    def append_assistant(self, content: str) -> None:
        self.append(ConversationTurn.assistant(content))

    def append_observation(self, outcome: ToolOutcome) -> str:
        text = format_observation(outcome)
        self.append_user(text)
        return text

    def window(
        self,
        *,
        max_turns: int | None = None,
        token_budget: int | None = None,
        counter: Callable[[str], int] | None = None,
    ) -> list[ConversationTurn]:
        """Return the trailing turns that fit the configured bounds.

        Args:
            max_turns: Keep at most this many of the newest turns; None keeps all.
            token_budget: Drop the oldest turns until the rest fit this many
                tokens. The newest turn is always kept.
            counter: Token counter used with *token_budget*.
        """
        turns = list(self._turns)
        if max_turns is not None:
            turns = turns[-max_turns:] if max_turns > 0 else []
        if token_budget is None or counter is None or not turns:
            return turns
        costs = [counter(turn.content) for turn in turns]
        total = sum(costs)
        start = 0
        while total > token_budget and start < len(turns) - 1:
            total -= costs[start]
            start += 1
        if start:
            LOGGER.debug("History window trimmed %d turn(s) to fit %d tokens", start, token_budget)
        return turns[start:]

    def to_dicts(self) -> list[dict[str, str]]:
        return [turn.to_chat_param() for turn in self._turns]
