"""Incremental parsers for the structured ReAct output protocol.

A chunk parser consumes an arbitrarily chunked model response and emits typed
:class:`~thimble.ai.orchestration.types.ParseEvent` objects as soon as the
cumulative buffer implies them. Every call re-derives a candidate state from
the *whole* buffer, so a delimiter split across two chunks is recognized once
the second chunk arrives. The candidate is diffed against the committed
:class:`~thimble.ai.orchestration.types.ParserState`; only new transitions
become events, and completion events are emitted at most once per session.

Two wire formats are supported:

* keyword lines (``THOUGHT:`` / ``ACTION:`` / ``ACTION_INPUT:`` / ``ANSWER:``),
  in two dialects that differ only in the terminal keyword
  (``ANSWER`` for ``single-token``, ``FINAL_ANSWER`` for ``text``);
* nested tags (``<thought>`` / ``<action><name/><input/></action>`` /
  ``<answer>``) for ``xml``.

The orchestrator only ever sees events and states, never format syntax.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import ClassVar, Mapping

from .event_log import NULL_TRACE_HOOK, TraceHook
from .payload import describe_payload_error, try_parse_payload
from .types import ParseEvent, ParseEventKind, ParserState, Section

__all__ = [
    "ChunkParser",
    "KeywordChunkParser",
    "TagChunkParser",
    "SUPPORTED_FORMATS",
    "DEFAULT_FORMAT",
    "create_parser",
    "is_format_supported",
]

LOGGER = logging.getLogger(__name__)

SUPPORTED_FORMATS: tuple[str, ...] = ("text", "xml", "single-token")
DEFAULT_FORMAT = "single-token"

_NO_ACTION = "NONE"


# -----------------------------------------------------------------------------
# Candidate State
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _Candidate:
    """State implied by the current buffer, before diffing."""

    section: Section = Section.NONE
    thought: str | None = None
    thought_complete: bool = False
    answer: str | None = None
    answer_complete: bool = False
    action_name: str = ""
    action_declined: bool = False
    payload_text: str | None = None
    payload_bounded: bool = False


# -----------------------------------------------------------------------------
# Base Parser
# -----------------------------------------------------------------------------


class ChunkParser(ABC):
    """Capability interface shared by every wire format.

    Subclasses implement :meth:`_scan`, which maps a full buffer to a
    candidate state. Event generation, the at-most-once guarantees and the
    never-shrink rule for field content live here.
    """

    format: ClassVar[str] = ""

    def __init__(self, *, tracer: TraceHook | None = None) -> None:
        self._tracer = tracer or NULL_TRACE_HOOK
        self._buffer = ""
        self._state = ParserState()
        self._error_reported = False
        self._finished = False

    @property
    def buffer(self) -> str:
        """The cumulative text seen since the last reset."""
        return self._buffer

    @property
    def finished(self) -> bool:
        return self._finished

    def parse_chunk(self, chunk: str) -> list[ParseEvent]:
        """Append *chunk* to the buffer and return the newly implied events."""
        if self._finished:
            raise RuntimeError("parser already finished; call reset() before reuse")
        if not chunk:
            return []
        self._buffer += chunk
        return self._advance(final=False)

    def finish(self) -> list[ParseEvent]:
        """Signal end of stream and return the events it implies.

        End of stream is a real boundary: the terminal answer completes and a
        still-invalid action payload is reported. Calling twice is a no-op.
        """
        if self._finished:
            return []
        self._finished = True
        return self._advance(final=True)

    def reset(self) -> None:
        """Clear buffer and state so the parser can serve another round."""
        self._buffer = ""
        self._state = ParserState()
        self._error_reported = False
        self._finished = False
        LOGGER.debug("%s parser reset", self.format)

    def get_current_state(self) -> ParserState:
        """Return a copy of the committed state."""
        return replace(self._state)

    def is_complete(self, state: ParserState | None = None) -> bool:
        """Whether *state* holds a complete answer or a complete action."""
        target = state if state is not None else self._state
        has_answer = bool(target.answer_content) and target.is_answer_complete
        has_action = bool(target.action_name) and target.action_input is not None and target.is_action_complete
        return has_answer or has_action

    @abstractmethod
    def _scan(self, buffer: str, *, final: bool) -> _Candidate:
        """Derive the candidate state implied by *buffer*."""

    # ------------------------------------------------------------------
    # Diffing
    # ------------------------------------------------------------------

    def _advance(self, *, final: bool) -> list[ParseEvent]:
        candidate = self._scan(self._buffer, final=final)
        events: list[ParseEvent] = []
        if candidate.section is not Section.NONE:
            self._state.current_section = candidate.section
        self._apply_field("thought", candidate.thought, candidate.thought_complete, events)
        self._apply_action(candidate, events)
        self._apply_field("answer", candidate.answer, candidate.answer_complete, events)
        for event in events:
            self._tracer.trace(
                "parser.event",
                {"format": self.format, "kind": event.kind.value, "content": event.content, "data": event.data},
            )
        return events

    def _apply_field(
        self,
        name: str,
        content: str | None,
        complete: bool,
        events: list[ParseEvent],
    ) -> None:
        if content is None:
            return
        if getattr(self._state, f"is_{name}_complete"):
            return
        previous: str = getattr(self._state, f"{name}_content")
        if not content.startswith(previous):
            # Field text never shrinks; keep what was already emitted.
            LOGGER.debug("%s content diverged from emitted prefix; keeping %d chars", name, len(previous))
            content = previous
        if not previous and content:
            events.append(ParseEvent(kind=ParseEventKind(f"{name}_start")))
            LOGGER.debug("%s started", name)
        if len(content) > len(previous):
            delta = content[len(previous):]
            events.append(ParseEvent(kind=ParseEventKind(f"{name}_delta"), content=delta))
            setattr(self._state, f"{name}_content", content)
        if complete and content:
            setattr(self._state, f"is_{name}_complete", True)
            events.append(ParseEvent(kind=ParseEventKind(f"{name}_end"), content=content))
            LOGGER.debug("%s completed (%d chars)", name, len(content))

    def _apply_action(self, candidate: _Candidate, events: list[ParseEvent]) -> None:
        if self._state.is_action_complete:
            return
        # The name is rescanned from the whole buffer, so a prefix seen in an
        # earlier chunk (``N`` of ``NONE``) must not survive.
        self._state.action_name = candidate.action_name
        if candidate.action_declined or candidate.payload_text is None:
            return
        payload = try_parse_payload(candidate.payload_text)
        if payload is not None and self._state.action_name:
            self._state.action_input = payload
            self._state.is_action_complete = True
            events.append(
                ParseEvent(
                    kind=ParseEventKind.ACTION_COMPLETE,
                    data={"action": self._state.action_name, "input": payload},
                )
            )
            LOGGER.debug("action completed: %s", self._state.action_name)
            return
        if not candidate.payload_bounded or self._error_reported:
            return
        if payload is None:
            message = describe_payload_error(candidate.payload_text)
        else:
            message = "action payload was given without an action name"
        self._error_reported = True
        events.append(
            ParseEvent(
                kind=ParseEventKind.ERROR,
                content=message,
                data={"action": self._state.action_name, "raw_input": candidate.payload_text.strip()},
            )
        )
        LOGGER.debug("structural parse error: %s", message)


# -----------------------------------------------------------------------------
# Keyword Line Format
# -----------------------------------------------------------------------------

_KEYWORD_THOUGHT = "THOUGHT"
_KEYWORD_ACTION = "ACTION"
_KEYWORD_INPUT = "ACTION_INPUT"
_TRAILING_KEYWORD_RE = re.compile(r"(?<![A-Za-z0-9_])[A-Z_]+:?$")


class KeywordChunkParser(ChunkParser):
    """Parser for ``THOUGHT:`` / ``ACTION:`` / ``ACTION_INPUT:`` / answer lines.

    A keyword counts only when directly followed by ``:`` and not preceded by
    a letter, digit or underscore. The answer is terminal: it runs to the end
    of the buffer and any keyword after it is ignored.
    """

    format = "single-token"

    def __init__(
        self,
        *,
        answer_keyword: str = "ANSWER",
        format_name: str | None = None,
        tracer: TraceHook | None = None,
    ) -> None:
        super().__init__(tracer=tracer)
        if format_name:
            self.format = format_name
        self._answer_keyword = answer_keyword
        keywords = (_KEYWORD_THOUGHT, _KEYWORD_ACTION, _KEYWORD_INPUT, answer_keyword)
        alternation = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
        self._marker_re = re.compile(rf"(?<![A-Za-z0-9_])(?P<keyword>{alternation}):")
        self._marker_texts = tuple(f"{keyword}:" for keyword in keywords)

    @property
    def answer_keyword(self) -> str:
        return self._answer_keyword

    def _scan(self, buffer: str, *, final: bool) -> _Candidate:
        markers: list[tuple[str, int, int]] = []
        for match in self._marker_re.finditer(buffer):
            keyword = match.group("keyword")
            markers.append((keyword, match.start(), match.end()))
            if keyword == self._answer_keyword:
                break

        candidate = _Candidate()
        if not markers:
            return candidate

        first: dict[str, int] = {}
        for index, (keyword, _start, _end) in enumerate(markers):
            first.setdefault(keyword, index)

        candidate.section = self._section_for(markers[-1][0])

        if _KEYWORD_THOUGHT in first:
            text, bounded = self._body(buffer, markers, first[_KEYWORD_THOUGHT])
            candidate.thought = text.strip()
            candidate.thought_complete = bounded

        if _KEYWORD_ACTION in first:
            text, _bounded = self._body(buffer, markers, first[_KEYWORD_ACTION])
            name = text.strip()
            if name.upper() == _NO_ACTION:
                candidate.action_declined = True
            else:
                candidate.action_name = name

        if _KEYWORD_INPUT in first:
            text, bounded = self._body(buffer, markers, first[_KEYWORD_INPUT])
            candidate.payload_text = text
            candidate.payload_bounded = bounded or final

        if self._answer_keyword in first:
            _keyword, _start, end = markers[first[self._answer_keyword]]
            answer = buffer[end:].strip()
            candidate.answer = answer
            candidate.answer_complete = final and bool(answer)

        return candidate

    def _body(self, buffer: str, markers: list[tuple[str, int, int]], index: int) -> tuple[str, bool]:
        """Return the text owned by ``markers[index]`` and whether it is bounded."""
        _keyword, _start, end = markers[index]
        if index + 1 < len(markers):
            return buffer[end:markers[index + 1][1]], True
        return self._withhold(buffer[end:]), False

    def _withhold(self, text: str) -> str:
        """Drop a trailing fragment that may be the start of a keyword."""
        match = _TRAILING_KEYWORD_RE.search(text)
        if match is None:
            return text
        fragment = match.group()
        if any(marker.startswith(fragment) for marker in self._marker_texts):
            return text[: match.start()]
        return text

    def _section_for(self, keyword: str) -> Section:
        if keyword == _KEYWORD_THOUGHT:
            return Section.THOUGHT
        if keyword == self._answer_keyword:
            return Section.ANSWER
        return Section.ACTION


# -----------------------------------------------------------------------------
# Nested Tag Format
# -----------------------------------------------------------------------------

_TOP_LEVEL_TAGS: tuple[str, ...] = ("thought", "action", "answer")
_NESTED_TAGS: tuple[str, ...] = ("name", "input")


@dataclass(slots=True, frozen=True)
class _Region:
    text: str
    bounded: bool


class TagChunkParser(ChunkParser):
    """Parser for ``<thought>``, ``<action><name/><input/></action>`` and ``<answer>``.

    A top-level region ends at its closing tag or at the next top-level
    opening tag; either counts as a real boundary. Tags opened after
    ``<answer>`` are ignored, since the answer is terminal.
    """

    format = "xml"

    _ALL_TAG_TEXTS: ClassVar[tuple[str, ...]] = tuple(
        text
        for tag in _TOP_LEVEL_TAGS + _NESTED_TAGS
        for text in (f"<{tag}>", f"</{tag}>")
    )

    def _scan(self, buffer: str, *, final: bool) -> _Candidate:
        candidate = _Candidate()
        answer_open = buffer.find("<answer>")
        if answer_open >= 0:
            zone, zone_bounded = buffer[:answer_open], True
        else:
            zone, zone_bounded = buffer, final

        thought = self._top_level_region(zone, "thought", zone_bounded)
        if thought is not None:
            candidate.thought = thought.text.strip()
            candidate.thought_complete = thought.bounded

        action = self._top_level_region(zone, "action", zone_bounded)
        if action is not None:
            name = self._nested_region(action, "name", ("</name>", "<input>"))
            if name is not None:
                value = name.text.strip()
                if value.upper() == _NO_ACTION:
                    candidate.action_declined = True
                else:
                    candidate.action_name = value
            payload = self._nested_region(action, "input", ("</input>",))
            if payload is not None:
                candidate.payload_text = payload.text
                candidate.payload_bounded = payload.bounded or final

        if answer_open >= 0:
            body_start = answer_open + len("<answer>")
            close = buffer.find("</answer>", body_start)
            if close >= 0:
                candidate.answer = buffer[body_start:close].strip()
                candidate.answer_complete = True
            else:
                text = buffer[body_start:] if final else self._withhold(buffer[body_start:])
                candidate.answer = text.strip()
                candidate.answer_complete = final
            if candidate.answer == "":
                candidate.answer_complete = False

        candidate.section = self._last_opened_section(buffer)
        return candidate

    def _top_level_region(self, zone: str, tag: str, zone_bounded: bool) -> _Region | None:
        open_tag = f"<{tag}>"
        start = zone.find(open_tag)
        if start < 0:
            return None
        body_start = start + len(open_tag)
        ends = [zone.find(f"</{tag}>", body_start)]
        ends.extend(zone.find(f"<{other}>", body_start) for other in _TOP_LEVEL_TAGS if other != tag)
        ends = [index for index in ends if index >= 0]
        if ends:
            return _Region(zone[body_start:min(ends)], True)
        if zone_bounded:
            return _Region(zone[body_start:], True)
        return _Region(self._withhold(zone[body_start:]), False)

    def _nested_region(self, parent: _Region, tag: str, terminators: tuple[str, ...]) -> _Region | None:
        open_tag = f"<{tag}>"
        start = parent.text.find(open_tag)
        if start < 0:
            return None
        body_start = start + len(open_tag)
        ends = [index for index in (parent.text.find(term, body_start) for term in terminators) if index >= 0]
        if ends:
            return _Region(parent.text[body_start:min(ends)], True)
        if parent.bounded:
            return _Region(parent.text[body_start:], True)
        return _Region(parent.text[body_start:], False)

    def _withhold(self, text: str) -> str:
        """Drop a trailing fragment that may be the start of a tag."""
        index = text.rfind("<")
        if index < 0:
            return text
        fragment = text[index:]
        if any(tag != fragment and tag.startswith(fragment) for tag in self._ALL_TAG_TEXTS):
            return text[:index]
        return text

    def _last_opened_section(self, buffer: str) -> Section:
        positions: Mapping[str, int] = {tag: buffer.rfind(f"<{tag}>") for tag in _TOP_LEVEL_TAGS}
        tag, position = max(positions.items(), key=lambda item: item[1])
        if position < 0:
            return Section.NONE
        return Section(tag)


# -----------------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------------


def is_format_supported(format_name: str) -> bool:
    """Check whether *format_name* names a supported wire format."""
    return format_name in SUPPORTED_FORMATS


def create_parser(format_name: str = DEFAULT_FORMAT, *, tracer: TraceHook | None = None) -> ChunkParser:
    """Create the chunk parser for *format_name*.

    Args:
        format_name: One of :data:`SUPPORTED_FORMATS`.
        tracer: Optional trace hook receiving every emitted event.

    Raises:
        ValueError: If the format is not supported.
    """
    LOGGER.debug("Creating chunk parser for format %s", format_name)
    if format_name == "single-token":
        return KeywordChunkParser(answer_keyword="ANSWER", format_name="single-token", tracer=tracer)
    if format_name == "text":
        return KeywordChunkParser(answer_keyword="FINAL_ANSWER", format_name="text", tracer=tracer)
    if format_name == "xml":
        return TagChunkParser(tracer=tracer)
    raise ValueError(f"Unsupported response format: {format_name!r} (expected one of {', '.join(SUPPORTED_FORMATS)})")
