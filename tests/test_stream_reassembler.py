"""Tests for incremental reassembly of streamed chat frames."""

from __future__ import annotations

import logging

import pytest

from codebase_chatbot.ai.stream import (
    StreamComplete,
    StreamPhase,
    StreamReassembler,
    TextDelta,
    extract_delta_text,
)
from tests.helpers import delta_line, sse_body

HEL = b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n'
LO_DONE = b'data: {"choices":[{"delta":{"content":"lo"}}]}\ndata: [DONE]\n'


def _feed_all(reassembler: StreamReassembler, chunks: list[bytes]) -> list:
    events: list = []
    for chunk in chunks:
        events.extend(reassembler.feed(chunk))
    events.extend(reassembler.end())
    return events


def test_example_stream_yields_hello_then_completion() -> None:
    reassembler = StreamReassembler(stream_id=7)

    first = reassembler.feed(HEL)
    second = reassembler.feed(LO_DONE)

    assert first == [TextDelta(stream_id=7, text="Hel", accumulated="Hel")]
    assert second == [
        TextDelta(stream_id=7, text="lo", accumulated="Hello"),
        StreamComplete(stream_id=7, text="Hello", explicit=True),
    ]
    assert reassembler.text == "Hello"
    assert reassembler.state.phase is StreamPhase.COMPLETE
    assert reassembler.end() == []


def test_final_text_is_independent_of_chunk_boundaries() -> None:
    body = HEL + LO_DONE
    for split in range(len(body) + 1):
        reassembler = StreamReassembler()
        events = _feed_all(reassembler, [body[:split], body[split:]])

        completions = [event for event in events if isinstance(event, StreamComplete)]
        assert reassembler.text == "Hello", split
        assert len(completions) == 1
        assert completions[0].explicit is True


def test_byte_at_a_time_feeding_preserves_multibyte_characters() -> None:
    body = sse_body("héllo ", "wörld ", "🚀")
    reassembler = StreamReassembler()

    events = _feed_all(reassembler, [body[i : i + 1] for i in range(len(body))])

    deltas = [event.text for event in events if isinstance(event, TextDelta)]
    assert deltas == ["héllo ", "wörld ", "🚀"]
    assert reassembler.text == "héllo wörld 🚀"


def test_accumulated_text_grows_monotonically() -> None:
    reassembler = StreamReassembler()
    events = reassembler.feed(sse_body("a", "bc", "def"))

    lengths = [len(event.accumulated) for event in events if isinstance(event, TextDelta)]
    assert lengths == sorted(lengths)
    assert lengths[-1] == len("abcdef")


def test_pending_buffer_never_contains_line_break() -> None:
    reassembler = StreamReassembler()
    reassembler.feed(b'data: {"choices":[{"delta":{"content":"x"}}]}\ndata: {"cho')

    assert "\n" not in reassembler.state.pending
    assert reassembler.state.pending == 'data: {"cho'


def test_done_marker_stops_processing_later_lines_in_same_feed() -> None:
    reassembler = StreamReassembler()
    body = (delta_line("one") + "data: [DONE]\n" + delta_line("two")).encode()

    events = reassembler.feed(body)

    assert [type(event) for event in events] == [TextDelta, StreamComplete]
    assert reassembler.text == "one"
    assert reassembler.feed(delta_line("three").encode()) == []
    assert reassembler.end() == []


def test_malformed_line_between_good_lines_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    reassembler = StreamReassembler()
    body = (delta_line("first") + "data: {not json\n" + delta_line("second")).encode()

    with caplog.at_level(logging.DEBUG, logger="codebase_chatbot.ai.stream"):
        events = reassembler.feed(body)

    assert [event.text for event in events] == ["first", "second"]
    assert reassembler.state.skipped_frames == 1
    assert any("malformed_frame" in record.getMessage() for record in caplog.records)


def test_non_data_and_role_only_frames_are_ignored() -> None:
    reassembler = StreamReassembler()
    body = (
        ": keep-alive\n"
        "event: message\n"
        "\n"
        + delta_line(None, role="assistant")
        + 'data: {"choices":[]}\n'
        + "data: 42\n"
        + delta_line("text")
    ).encode()

    events = reassembler.feed(body)

    assert events == [TextDelta(stream_id=0, text="text", accumulated="text")]


def test_crlf_line_endings_are_accepted() -> None:
    reassembler = StreamReassembler()
    body = delta_line("win").replace("\n", "\r\n") + "data: [DONE]\r\n"

    events = reassembler.feed(body.encode())

    assert reassembler.text == "win"
    assert isinstance(events[-1], StreamComplete)


def test_end_without_done_marker_completes_exactly_once() -> None:
    reassembler = StreamReassembler(stream_id=3)
    reassembler.feed(delta_line("partial").encode())

    events = reassembler.end()

    assert events == [StreamComplete(stream_id=3, text="partial", explicit=False)]
    assert reassembler.end() == []
    assert reassembler.fail(RuntimeError("late")) == []


def test_end_flushes_unterminated_final_line() -> None:
    reassembler = StreamReassembler()
    reassembler.feed(delta_line("tail").rstrip("\n").encode())

    events = reassembler.end()

    assert [type(event) for event in events] == [TextDelta, StreamComplete]
    assert reassembler.text == "tail"


def test_fail_discards_partial_line_and_marks_completion_failed() -> None:
    reassembler = StreamReassembler(stream_id=9)
    reassembler.feed((delta_line("kept") + 'data: {"choices":[{"delta":{"con').encode())

    events = reassembler.fail(ConnectionError("reset"))

    assert events == [StreamComplete(stream_id=9, text="kept", explicit=False, failed=True)]
    assert reassembler.state.pending == ""


def test_idle_until_first_chunk() -> None:
    reassembler = StreamReassembler()

    assert reassembler.state.phase is StreamPhase.IDLE
    reassembler.feed(b"")
    assert reassembler.state.phase is StreamPhase.STREAMING


@pytest.mark.parametrize(
    "frame, expected",
    [
        ({"choices": [{"delta": {"content": "hi"}}]}, "hi"),
        ({"choices": [{"delta": {"role": "assistant"}}]}, ""),
        ({"choices": [{"delta": {"content": None}}]}, ""),
        ({"choices": [{"message": {"content": "full"}}]}, ""),
        ({"error": {"message": "overloaded"}}, ""),
        (["not", "a", "frame"], ""),
    ],
)
def test_extract_delta_text_tolerates_missing_fields(frame, expected) -> None:
    assert extract_delta_text(frame) == expected
