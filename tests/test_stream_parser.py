"""Tests for orchestration/stream_parser.py."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

import pytest

from thimble.ai.orchestration.stream_parser import (
    DEFAULT_FORMAT,
    SUPPORTED_FORMATS,
    ChunkParser,
    KeywordChunkParser,
    TagChunkParser,
    create_parser,
    is_format_supported,
)
from thimble.ai.orchestration.types import ParseEvent, ParseEventKind, ParserState, Section

K = ParseEventKind

ANSWER_TEXT = "THOUGHT: hi\nANSWER: hello"
ACTION_TEXT = 'THOUGHT: I need the file\nACTION: read_file\nACTION_INPUT: {"path": "a.txt"}'
XML_ANSWER_TEXT = "<thought>hi</thought><answer>hello</answer>"
XML_ACTION_TEXT = (
    "<thought>look it up</thought>"
    '<action><name>read_file</name><input>{"path": "a.txt"}</input></action>'
)
DECLINED_TEXT = "THOUGHT: nothing to look up\nACTION: NONE\nANSWER: ok"
XML_DECLINED_TEXT = "<thought>nothing to look up</thought><action><name>NONE</name></action><answer>ok</answer>"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def feed(parser: ChunkParser, chunks: Iterable[str]) -> list[ParseEvent]:
    events: list[ParseEvent] = []
    for chunk in chunks:
        events.extend(parser.parse_chunk(chunk))
    events.extend(parser.finish())
    return events


def kinds(events: Iterable[ParseEvent]) -> list[ParseEventKind]:
    return [event.kind for event in events]


def joined(events: Iterable[ParseEvent], kind: ParseEventKind) -> str:
    return "".join(event.content or "" for event in events if event.kind is kind)


def count(events: Iterable[ParseEvent], kind: ParseEventKind) -> int:
    return sum(1 for event in events if event.kind is kind)


def two_way_splits(text: str) -> Iterable[list[str]]:
    for index in range(1, len(text)):
        yield [text[:index], text[index:]]


def final_state(format_name: str, chunks: Iterable[str]) -> ParserState:
    parser = create_parser(format_name)
    feed(parser, chunks)
    return parser.get_current_state()


class RecordingTracer:
    def __init__(self) -> None:
        self.events: list[tuple[str, Mapping[str, Any]]] = []

    def trace(self, event: str, payload: Mapping[str, Any]) -> None:
        self.events.append((event, dict(payload)))


# -----------------------------------------------------------------------------
# Tests: Factory
# -----------------------------------------------------------------------------


class TestFactory:
    def test_default_format_is_single_token(self) -> None:
        parser = create_parser()
        assert DEFAULT_FORMAT == "single-token"
        assert isinstance(parser, KeywordChunkParser)
        assert parser.answer_keyword == "ANSWER"

    def test_text_format_uses_final_answer_keyword(self) -> None:
        parser = create_parser("text")
        assert isinstance(parser, KeywordChunkParser)
        assert parser.answer_keyword == "FINAL_ANSWER"
        assert parser.format == "text"

    def test_xml_format(self) -> None:
        assert isinstance(create_parser("xml"), TagChunkParser)

    def test_unsupported_format_raises(self) -> None:
        with pytest.raises(ValueError, match="Unsupported response format"):
            create_parser("json")

    def test_is_format_supported(self) -> None:
        assert all(is_format_supported(name) for name in SUPPORTED_FORMATS)
        assert not is_format_supported("yaml")


# -----------------------------------------------------------------------------
# Tests: Keyword format
# -----------------------------------------------------------------------------


class TestKeywordParser:
    def test_thought_then_answer_in_one_chunk(self) -> None:
        parser = create_parser("single-token")

        events = parser.parse_chunk(ANSWER_TEXT)

        assert kinds(events) == [K.THOUGHT_START, K.THOUGHT_DELTA, K.THOUGHT_END, K.ANSWER_START, K.ANSWER_DELTA]
        assert events[2].content == "hi"
        assert events[4].content == "hello"

        final = parser.finish()
        assert kinds(final) == [K.ANSWER_END]
        assert final[0].content == "hello"

        state = parser.get_current_state()
        assert state.thought_content == "hi"
        assert state.answer_content == "hello"
        assert state.is_thought_complete and state.is_answer_complete
        assert not state.is_action_complete
        assert state.current_section is Section.ANSWER

    def test_action_completes_as_soon_as_payload_parses(self) -> None:
        parser = create_parser()

        events = parser.parse_chunk(ACTION_TEXT)

        assert kinds(events) == [K.THOUGHT_START, K.THOUGHT_DELTA, K.THOUGHT_END, K.ACTION_COMPLETE]
        assert events[-1].data == {"action": "read_file", "input": {"path": "a.txt"}}
        state = parser.get_current_state()
        assert state.action_name == "read_file"
        assert state.action_input == {"path": "a.txt"}
        assert parser.is_complete()
        assert parser.finish() == []

    def test_thought_ends_when_next_keyword_arrives(self) -> None:
        parser = create_parser()

        first = parser.parse_chunk("THOUGHT: thinking hard")
        assert kinds(first) == [K.THOUGHT_START, K.THOUGHT_DELTA]

        second = parser.parse_chunk("\nACTION:")
        assert kinds(second) == [K.THOUGHT_END]
        assert second[0].content == "thinking hard"

    @pytest.mark.parametrize("chunks", list(two_way_splits(ANSWER_TEXT)))
    def test_answer_stream_is_invariant_to_chunk_boundaries(self, chunks: list[str]) -> None:
        events = feed(create_parser(), chunks)

        assert joined(events, K.THOUGHT_DELTA) == "hi"
        assert joined(events, K.ANSWER_DELTA) == "hello"
        assert count(events, K.THOUGHT_START) == 1
        assert count(events, K.THOUGHT_END) == 1
        assert count(events, K.ANSWER_END) == 1
        assert count(events, K.ERROR) == 0
        assert final_state(DEFAULT_FORMAT, chunks) == final_state(DEFAULT_FORMAT, [ANSWER_TEXT])

    @pytest.mark.parametrize("chunks", list(two_way_splits(ACTION_TEXT)))
    def test_action_stream_is_invariant_to_chunk_boundaries(self, chunks: list[str]) -> None:
        events = feed(create_parser(), chunks)

        assert joined(events, K.THOUGHT_DELTA) == "I need the file"
        assert count(events, K.THOUGHT_END) == 1
        completions = [event for event in events if event.kind is K.ACTION_COMPLETE]
        assert len(completions) == 1
        assert completions[0].data == {"action": "read_file", "input": {"path": "a.txt"}}
        assert count(events, K.ERROR) == 0
        assert final_state(DEFAULT_FORMAT, chunks) == final_state(DEFAULT_FORMAT, [ACTION_TEXT])

    @pytest.mark.parametrize("chunks", list(two_way_splits(DECLINED_TEXT)))
    def test_declined_action_is_invariant_to_chunk_boundaries(self, chunks: list[str]) -> None:
        state = final_state(DEFAULT_FORMAT, chunks)

        assert state == final_state(DEFAULT_FORMAT, [DECLINED_TEXT])
        assert state.action_name == ""
        assert not state.is_action_complete
        assert state.answer_content == "ok"

    def test_character_by_character_stream(self) -> None:
        events = feed(create_parser(), list(ANSWER_TEXT))

        assert joined(events, K.THOUGHT_DELTA) == "hi"
        assert joined(events, K.ANSWER_DELTA) == "hello"
        assert kinds(events)[-1] is K.ANSWER_END

    def test_split_keyword_is_withheld(self) -> None:
        parser = create_parser()

        first = parser.parse_chunk("THOUGHT: hi\nANS")
        assert joined(first, K.THOUGHT_DELTA) == "hi"

        second = parser.parse_chunk("WER: yo")
        assert kinds(second) == [K.THOUGHT_END, K.ANSWER_START, K.ANSWER_DELTA]
        assert parser.get_current_state().thought_content == "hi"

    def test_keyword_prefix_of_ordinary_word_is_emitted(self) -> None:
        parser = create_parser()

        events = parser.parse_chunk("THOUGHT: call the API")

        assert joined(events, K.THOUGHT_DELTA) == "call the API"

    def test_keyword_glued_to_a_word_is_not_a_marker(self) -> None:
        parser = create_parser()

        events = feed(parser, ["THOUGHT: see MYACTION: x"])

        assert joined(events, K.THOUGHT_DELTA) == "see MYACTION: x"
        assert count(events, K.ACTION_COMPLETE) == 0

    def test_keywords_after_answer_are_ignored(self) -> None:
        parser = create_parser()

        events = feed(parser, ["ANSWER: first\nACTION: read_file\nACTION_INPUT: {}"])

        assert count(events, K.ACTION_COMPLETE) == 0
        assert parser.get_current_state().answer_content == "first\nACTION: read_file\nACTION_INPUT: {}"

    def test_none_action_means_no_action(self) -> None:
        parser = create_parser()

        events = feed(parser, ["THOUGHT: nothing to do\nACTION: NONE\nACTION_INPUT: {}\nANSWER: done"])

        assert count(events, K.ACTION_COMPLETE) == 0
        state = parser.get_current_state()
        assert state.action_name == ""
        assert state.is_answer_complete
        assert state.answer_content == "done"

    def test_multiline_answer_keeps_inner_newlines(self) -> None:
        parser = create_parser()

        feed(parser, ["ANSWER: line one\n", "line two\n"])

        assert parser.get_current_state().answer_content == "line one\nline two"

    def test_text_format_answer(self) -> None:
        parser = create_parser("text")

        events = feed(parser, ["THOUGHT: t\nFINAL_", "ANSWER: 42"])

        assert joined(events, K.ANSWER_DELTA) == "42"
        assert parser.get_current_state().is_answer_complete

    def test_single_token_ignores_final_answer_keyword(self) -> None:
        parser = create_parser("single-token")

        events = feed(parser, ["THOUGHT: t FINAL_ANSWER: 42"])

        assert count(events, K.ANSWER_START) == 0
        assert parser.get_current_state().thought_content == "t FINAL_ANSWER: 42"

    def test_code_fenced_payload(self) -> None:
        parser = create_parser()

        events = feed(parser, ['ACTION: read_file\nACTION_INPUT: ```json\n{"path": "b.txt"}\n```'])

        completions = [event for event in events if event.kind is K.ACTION_COMPLETE]
        assert completions[0].data == {"action": "read_file", "input": {"path": "b.txt"}}


# -----------------------------------------------------------------------------
# Tests: Structural errors
# -----------------------------------------------------------------------------


class TestStructuralErrors:
    def test_invalid_payload_is_reported_at_end_of_stream(self) -> None:
        parser = create_parser()

        events = parser.parse_chunk('THOUGHT: t\nACTION: read_file\nACTION_INPUT: {"path": ')
        assert count(events, K.ERROR) == 0

        final = parser.finish()
        assert kinds(final) == [K.ERROR]
        assert "not valid JSON" in (final[0].content or "")
        assert final[0].data is not None and final[0].data["action"] == "read_file"
        assert not parser.is_complete()

    def test_invalid_payload_is_reported_at_next_keyword(self) -> None:
        parser = create_parser()

        events = parser.parse_chunk("ACTION: read_file\nACTION_INPUT: [1, 2]\nTHOUGHT: oops")

        errors = [event for event in events if event.kind is K.ERROR]
        assert len(errors) == 1
        assert "JSON object" in (errors[0].content or "")

    def test_error_is_reported_once(self) -> None:
        parser = create_parser()

        first = parser.parse_chunk("ACTION: x\nACTION_INPUT: nope\nTHOUGHT: a")
        second = parser.parse_chunk(" b")
        final = parser.finish()

        assert count(first, K.ERROR) == 1
        assert count(second, K.ERROR) == 0
        assert count(final, K.ERROR) == 0

    def test_incomplete_payload_mid_stream_is_not_an_error(self) -> None:
        parser = create_parser()

        events = parser.parse_chunk('ACTION: read_file\nACTION_INPUT: {"pa')

        assert events == []


# -----------------------------------------------------------------------------
# Tests: Lifecycle
# -----------------------------------------------------------------------------


class TestLifecycle:
    def test_finish_is_idempotent(self) -> None:
        parser = create_parser()
        parser.parse_chunk(ANSWER_TEXT)

        assert kinds(parser.finish()) == [K.ANSWER_END]
        assert parser.finish() == []
        assert parser.finished

    def test_parse_after_finish_raises(self) -> None:
        parser = create_parser()
        parser.finish()

        with pytest.raises(RuntimeError):
            parser.parse_chunk("ANSWER: late")

    def test_reset_clears_buffer_and_state(self) -> None:
        parser = create_parser()
        feed(parser, [ANSWER_TEXT])

        parser.reset()

        assert parser.buffer == ""
        assert not parser.finished
        state = parser.get_current_state()
        assert state.thought_content == "" and state.answer_content == ""
        assert not state.is_answer_complete
        events = feed(parser, ["ANSWER: again"])
        assert count(events, K.ANSWER_END) == 1

    def test_empty_chunk_is_ignored(self) -> None:
        parser = create_parser()

        assert parser.parse_chunk("") == []
        assert parser.buffer == ""

    def test_state_is_a_copy(self) -> None:
        parser = create_parser()
        parser.parse_chunk("THOUGHT: x")

        state = parser.get_current_state()
        state.thought_content = "mutated"

        assert parser.get_current_state().thought_content == "x"

    def test_is_complete_requires_non_empty_answer(self) -> None:
        parser = create_parser()
        feed(parser, ["THOUGHT: only thinking"])

        assert not parser.is_complete()

    def test_tracer_receives_every_event(self) -> None:
        tracer = RecordingTracer()
        parser = create_parser(tracer=tracer)

        events = feed(parser, [ANSWER_TEXT])

        traced = [payload["kind"] for name, payload in tracer.events if name == "parser.event"]
        assert traced == [event.kind.value for event in events]


# -----------------------------------------------------------------------------
# Tests: Tag format
# -----------------------------------------------------------------------------


class TestTagParser:
    def test_thought_and_answer(self) -> None:
        parser = create_parser("xml")

        events = parser.parse_chunk(XML_ANSWER_TEXT)

        assert kinds(events) == [
            K.THOUGHT_START,
            K.THOUGHT_DELTA,
            K.THOUGHT_END,
            K.ANSWER_START,
            K.ANSWER_DELTA,
            K.ANSWER_END,
        ]
        assert parser.finish() == []
        assert parser.get_current_state().answer_content == "hello"

    @pytest.mark.parametrize("chunks", list(two_way_splits(XML_ANSWER_TEXT)))
    def test_answer_stream_is_invariant_to_chunk_boundaries(self, chunks: list[str]) -> None:
        events = feed(create_parser("xml"), chunks)

        assert joined(events, K.THOUGHT_DELTA) == "hi"
        assert joined(events, K.ANSWER_DELTA) == "hello"
        assert count(events, K.THOUGHT_END) == 1
        assert count(events, K.ANSWER_END) == 1
        assert final_state("xml", chunks) == final_state("xml", [XML_ANSWER_TEXT])

    @pytest.mark.parametrize("chunks", list(two_way_splits(XML_ACTION_TEXT)))
    def test_action_stream_is_invariant_to_chunk_boundaries(self, chunks: list[str]) -> None:
        events = feed(create_parser("xml"), chunks)

        assert joined(events, K.THOUGHT_DELTA) == "look it up"
        completions = [event for event in events if event.kind is K.ACTION_COMPLETE]
        assert len(completions) == 1
        assert completions[0].data == {"action": "read_file", "input": {"path": "a.txt"}}
        assert final_state("xml", chunks) == final_state("xml", [XML_ACTION_TEXT])

    @pytest.mark.parametrize("chunks", list(two_way_splits(XML_DECLINED_TEXT)))
    def test_declined_action_is_invariant_to_chunk_boundaries(self, chunks: list[str]) -> None:
        state = final_state("xml", chunks)

        assert state == final_state("xml", [XML_DECLINED_TEXT])
        assert state.action_name == ""
        assert not state.is_action_complete
        assert state.answer_content == "ok"

    def test_partial_closing_tag_is_withheld(self) -> None:
        parser = create_parser("xml")

        events = parser.parse_chunk("<thought>abc</tho")

        assert joined(events, K.THOUGHT_DELTA) == "abc"
        assert count(events, K.THOUGHT_END) == 0

    def test_next_top_level_tag_closes_region(self) -> None:
        parser = create_parser("xml")

        events = parser.parse_chunk("<thought>unclosed<answer>ok</answer>")

        assert count(events, K.THOUGHT_END) == 1
        assert parser.get_current_state().thought_content == "unclosed"
        assert parser.get_current_state().answer_content == "ok"

    def test_unclosed_answer_completes_at_end_of_stream(self) -> None:
        parser = create_parser("xml")

        events = feed(parser, ["<answer>partial"])

        assert kinds(events)[-1] is K.ANSWER_END
        assert parser.get_current_state().answer_content == "partial"

    def test_tags_after_answer_are_ignored(self) -> None:
        parser = create_parser("xml")

        events = feed(parser, ['<answer>done</answer><action><name>x</name><input>{"a": 1}</input></action>'])

        assert count(events, K.ACTION_COMPLETE) == 0

    def test_none_action_name(self) -> None:
        parser = create_parser("xml")

        events = feed(parser, ["<action><name>none</name><input>{}</input></action><answer>fine</answer>"])

        assert count(events, K.ACTION_COMPLETE) == 0
        assert parser.get_current_state().answer_content == "fine"

    def test_invalid_input_reported_at_closing_tag(self) -> None:
        parser = create_parser("xml")

        events = parser.parse_chunk("<action><name>read_file</name><input>{oops}</input></action>")

        assert count(events, K.ERROR) == 1
        assert count(events, K.ACTION_COMPLETE) == 0
