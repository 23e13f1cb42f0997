"""Conversion of parse events into role-tagged streaming messages."""

from __future__ import annotations

import itertools
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .event_log import NULL_TRACE_HOOK, TraceHook
from .types import MessageStatus, MessageType, ParseEvent, ParseEventKind, StandardMessage

__all__ = [
    "IdFactory",
    "counter_id_factory",
    "StreamingMessageEmitter",
    "think_message",
    "text_message",
    "tool_message",
    "error_message",
]

LOGGER = logging.getLogger(__name__)

IdFactory = Callable[[], str]

_FIELD_TYPES: Mapping[str, MessageType] = {
    "thought": MessageType.THINK,
    "answer": MessageType.TEXT,
}


def counter_id_factory(prefix: str) -> IdFactory:
    """Return an id factory yielding ``<prefix>-msg-1``, ``<prefix>-msg-2``, ..."""
    counter = itertools.count(1)
    return lambda: f"{prefix}-msg-{next(counter)}"


# -----------------------------------------------------------------------------
# Message Factories
# -----------------------------------------------------------------------------


def _message_id(message_id: str | None) -> str:
    return message_id or uuid.uuid4().hex


def think_message(
    content: str,
    *,
    status: MessageStatus = "end",
    message_id: str | None = None,
    role: str = "assistant",
) -> StandardMessage:
    return StandardMessage(
        role=role,
        type=MessageType.THINK,
        content=content,
        status=status,
        id=_message_id(message_id),
    )


def text_message(
    content: str,
    *,
    status: MessageStatus = "end",
    message_id: str | None = None,
    role: str = "assistant",
) -> StandardMessage:
    return StandardMessage(
        role=role,
        type=MessageType.TEXT,
        content=content,
        status=status,
        id=_message_id(message_id),
    )


def tool_message(
    content: str,
    *,
    status: MessageStatus,
    tool_name: str,
    success: bool | None = None,
    data: Any | None = None,
    message_id: str | None = None,
    role: str = "assistant",
) -> StandardMessage:
    """Create a tool status message.

    Args:
        content: Human-readable status line ("Reading a.txt", "Failed: ...").
        status: ``start`` before the call, ``end`` after it.
        tool_name: Name of the invoked tool.
        success: Outcome of the call; omitted for ``start`` messages.
        data: Result data of a successful call.
    """
    metadata: dict[str, Any] = {"tool_name": tool_name}
    if success is not None:
        metadata["success"] = success
    if data is not None:
        metadata["data"] = data
    return StandardMessage(
        role=role,
        type=MessageType.TOOL,
        content=content,
        status=status,
        id=_message_id(message_id),
        metadata=metadata,
    )


def error_message(
    content: str,
    *,
    error: str | None = None,
    message_id: str | None = None,
    role: str = "assistant",
) -> StandardMessage:
    return StandardMessage(
        role=role,
        type=MessageType.ERROR,
        content=content,
        status="end",
        id=_message_id(message_id),
        metadata={"error": error if error is not None else content},
    )


# -----------------------------------------------------------------------------
# Emitter
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _OpenStream:
    field: str
    id: str
    content: str = ""


class StreamingMessageEmitter:
    """Turn parse events into start/delta/end message triplets.

    At most one field stream is open at a time. Opening a new field while
    another is open first closes the old one with a synthesized ``end``
    carrying its accumulated text. Deltas and ends for a field that is not
    open are dropped, so a closed stream never receives more content.
    """

    def __init__(
        self,
        *,
        session_id: str = "session",
        role: str = "assistant",
        id_factory: IdFactory | None = None,
        tracer: TraceHook | None = None,
    ) -> None:
        self._role = role
        self._id_factory = id_factory or counter_id_factory(session_id)
        self._tracer = tracer or NULL_TRACE_HOOK
        self._open: _OpenStream | None = None

    @property
    def role(self) -> str:
        return self._role

    @property
    def open_field(self) -> str | None:
        """Name of the field whose stream is open, if any."""
        return self._open.field if self._open is not None else None

    def new_id(self) -> str:
        return self._id_factory()

    def handle(self, event: ParseEvent) -> list[StandardMessage]:
        """Return the messages implied by *event*, in delivery order."""
        if event.kind is ParseEventKind.ACTION_COMPLETE:
            return []
        if event.kind is ParseEventKind.ERROR:
            diagnostic = event.content or "malformed structured output"
            return [self._record(error_message(diagnostic, message_id=self.new_id(), role=self._role))]

        field_name = event.kind.field_name
        phase = event.kind.phase
        if field_name is None or phase is None:  # pragma: no cover - exhaustive enum
            return []

        if phase == "start":
            messages = self.close()
            self._open = _OpenStream(field=field_name, id=self.new_id())
            messages.append(self._record(self._field_message(self._open, "", "start")))
            return messages

        stream = self._open
        if stream is None or stream.field != field_name:
            LOGGER.debug("Dropping %s for %s: stream not open", event.kind.value, field_name)
            return []

        if phase == "delta":
            delta = event.content or ""
            if not delta:
                return []
            stream.content += delta
            return [self._record(self._field_message(stream, delta, "delta"))]

        final = event.content if event.content is not None else stream.content
        self._open = None
        return [self._record(self._field_message(stream, final, "end"))]

    def close(self) -> list[StandardMessage]:
        """Synthesize the ``end`` of a dangling open stream, if any."""
        stream = self._open
        if stream is None:
            return []
        self._open = None
        LOGGER.debug("Implicitly closing %s stream %s", stream.field, stream.id)
        return [self._record(self._field_message(stream, stream.content, "end"))]

    def reset(self) -> None:
        """Forget any open stream without emitting anything."""
        self._open = None

    def tool_started(self, tool_name: str, description: str, *, message_id: str) -> StandardMessage:
        return self._record(
            tool_message(description, status="start", tool_name=tool_name, message_id=message_id, role=self._role)
        )

    def tool_finished(
        self,
        tool_name: str,
        description: str,
        *,
        message_id: str,
        success: bool,
        data: Any | None = None,
    ) -> StandardMessage:
        return self._record(
            tool_message(
                description,
                status="end",
                tool_name=tool_name,
                success=success,
                data=data,
                message_id=message_id,
                role=self._role,
            )
        )

    def error(self, content: str, *, error: str | None = None) -> StandardMessage:
        return self._record(error_message(content, error=error, message_id=self.new_id(), role=self._role))

    def text(self, content: str) -> StandardMessage:
        """A complete, non-streamed text message (synthetic results)."""
        return self._record(text_message(content, message_id=self.new_id(), role=self._role))

    def _field_message(self, stream: _OpenStream, content: str, status: MessageStatus) -> StandardMessage:
        return StandardMessage(
            role=self._role,
            type=_FIELD_TYPES[stream.field],
            content=content,
            status=status,
            id=stream.id,
        )

    def _record(self, message: StandardMessage) -> StandardMessage:
        self._tracer.trace(
            "emitter.message",
            {"id": message.id, "type": message.type.value, "status": message.status, "content": message.content},
        )
        return message
