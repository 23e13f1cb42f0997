"""Core type definitions for the ReAct loop.

This module defines the value objects that flow between the chunk parser,
the streaming message emitter, the tool invoker seam and the agent loop.
Everything except :class:`ParserState` is frozen so that events and messages
can be handed to callers without defensive copies.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping

__all__ = [
    # Parser types
    "Section",
    "ParseEventKind",
    "ParseEvent",
    "ParserState",
    # Conversation types
    "TurnRole",
    "ConversationTurn",
    # Tool seam types
    "ToolInvocation",
    "ToolOutcome",
    # Message types
    "MessageStatus",
    "MessageType",
    "StandardMessage",
    # Loop types
    "LoopPhase",
    "AgentRequest",
    "AgentResponse",
    "AgentStatus",
]


# -----------------------------------------------------------------------------
# Parser Types
# -----------------------------------------------------------------------------


class Section(str, Enum):
    """Logical field currently being accumulated by a parser."""

    NONE = "none"
    THOUGHT = "thought"
    ANSWER = "answer"
    ACTION = "action"


class ParseEventKind(str, Enum):
    """Kinds of events produced by a chunk parser."""

    THOUGHT_START = "thought_start"
    THOUGHT_DELTA = "thought_delta"
    THOUGHT_END = "thought_end"
    ANSWER_START = "answer_start"
    ANSWER_DELTA = "answer_delta"
    ANSWER_END = "answer_end"
    ACTION_COMPLETE = "action_complete"
    ERROR = "error"

    @property
    def field_name(self) -> str | None:
        """Return ``"thought"`` or ``"answer"`` for streamed field events."""
        prefix, _, _ = self.value.partition("_")
        if prefix in ("thought", "answer"):
            return prefix
        return None

    @property
    def phase(self) -> str | None:
        """Return ``"start"``, ``"delta"`` or ``"end"`` for streamed field events."""
        if self.field_name is None:
            return None
        return self.value.rpartition("_")[2]


@dataclass(slots=True, frozen=True)
class ParseEvent:
    """Immutable record of one parser transition.

    Attributes:
        kind: What happened.
        content: Delta text, final field text, or error diagnostic.
        data: Structured payload (``{"action", "input"}`` for completed actions).
        timestamp: Wall-clock creation time; excluded from equality.
    """

    kind: ParseEventKind
    content: str | None = None
    data: Mapping[str, Any] | None = None
    timestamp: float = field(default_factory=time.time, compare=False)


@dataclass(slots=True)
class ParserState:
    """Mutable, single-owner state of one parsing session.

    Completion flags only ever move from ``False`` to ``True``.
    """

    current_section: Section = Section.NONE
    thought_content: str = ""
    answer_content: str = ""
    action_name: str = ""
    action_input: Mapping[str, Any] | None = None
    is_thought_complete: bool = False
    is_answer_complete: bool = False
    is_action_complete: bool = False


# -----------------------------------------------------------------------------
# Conversation Types
# -----------------------------------------------------------------------------

TurnRole = Literal["system", "user", "assistant"]


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    """A single role-tagged conversation entry."""

    role: TurnRole
    content: str

    def to_chat_param(self) -> dict[str, str]:
        """Convert to an OpenAI-style chat message mapping."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def system(cls, content: str) -> ConversationTurn:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ConversationTurn:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> ConversationTurn:
        return cls(role="assistant", content=content)


# -----------------------------------------------------------------------------
# Tool Seam Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    """Name and arguments of a single tool call requested by the model."""

    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": dict(self.arguments)}


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    """Result of a single external tool call.

    Attributes:
        success: Whether the tool reported success.
        data: Structured result data on success.
        error: Human-readable error on failure.
    """

    success: bool
    data: Any | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any | None = None) -> ToolOutcome:
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> ToolOutcome:
        return cls(success=False, error=error)


# -----------------------------------------------------------------------------
# Message Types
# -----------------------------------------------------------------------------

MessageStatus = Literal["start", "delta", "end"]


class MessageType(str, Enum):
    """Rendering category of a standard message."""

    THINK = "think"
    TEXT = "text"
    TOOL = "tool"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class StandardMessage:
    """Role-tagged message delivered to the UI boundary.

    The ``id`` ties together the start/delta/end triplet of one streamed field.
    ``delta`` messages carry only appended text; ``end`` messages carry the full
    accumulated text.
    """

    role: str
    type: MessageType
    content: str
    status: MessageStatus
    id: str
    metadata: Mapping[str, Any] | None = None
    timestamp: float = field(default_factory=time.time, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        payload: dict[str, Any] = {
            "role": self.role,
            "type": self.type.value,
            "content": self.content,
            "status": self.status,
            "id": self.id,
            "timestamp": self.timestamp,
        }
        if self.metadata is not None:
            payload["metadata"] = dict(self.metadata)
        return payload


# -----------------------------------------------------------------------------
# Loop Types
# -----------------------------------------------------------------------------


class LoopPhase(str, Enum):
    """States of the agent loop state machine."""

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    ACTION_PENDING = "action_pending"
    ANSWER_READY = "answer_ready"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopPhase.DONE, LoopPhase.FAILED, LoopPhase.STOPPED)


@dataclass(slots=True, frozen=True)
class AgentRequest:
    """A single user request handed to the agent loop.

    Attributes:
        message: The free-form user request.
        session_id: Identifier of the chat session (used for message ids and traces).
        history: Optional prior turns to resume a conversation.
        context: Free-form editor context (workspace root, active file, ...).
    """

    message: str
    session_id: str = "session"
    history: tuple[Mapping[str, Any] | ConversationTurn, ...] = ()
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class AgentResponse:
    """Outcome of one :meth:`ReactAgentLoop.run` call."""

    success: bool
    result: str
    error: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def stopped(self) -> bool:
        return bool(self.metadata.get("stopped", False))


@dataclass(slots=True, frozen=True)
class AgentStatus:
    """Snapshot of the loop's progress for status displays."""

    is_active: bool
    phase: LoopPhase
    round: int = 0
    current_task: str | None = None
