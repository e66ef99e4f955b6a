"""Incremental reassembly of streamed chat completion frames.

Model servers deliver ``data: {json}`` lines over a chunked HTTP body. Network
reads split those lines at arbitrary byte offsets, so :class:`StreamReassembler`
keeps a pending buffer of the trailing partial line, parses every complete
line in arrival order, and turns content deltas into :class:`TextDelta`
events carrying the full accumulated reply. Every stream ends with exactly one
:class:`StreamComplete`, whether the server sent the ``[DONE]`` sentinel or the
body simply ended.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union

from .errors import MalformedFrameError

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class StreamPhase(Enum):
    """Lifecycle of a single streamed reply."""

    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class TextDelta:
    """Incremental text fragment plus the reply accumulated so far."""

    stream_id: int
    text: str
    accumulated: str


@dataclass(slots=True, frozen=True)
class StreamComplete:
    """Terminal event of a stream.

    ``explicit`` is true when the ``[DONE]`` sentinel was seen, false when the
    stream ended (or failed) without one. ``failed`` marks completions produced
    by a transport error.
    """

    stream_id: int
    text: str
    explicit: bool = True
    failed: bool = False


StreamEvent = Union[TextDelta, StreamComplete]


@dataclass(slots=True)
class StreamState:
    """Transient per-request buffers owned by one reassembler."""

    stream_id: int
    pending: str = ""
    accumulated: str = ""
    phase: StreamPhase = StreamPhase.IDLE
    skipped_frames: int = 0

    @property
    def complete(self) -> bool:
        return self.phase is StreamPhase.COMPLETE


class StreamReassembler:
    """Turns raw byte chunks into :class:`TextDelta` / :class:`StreamComplete` events."""

    def __init__(self, stream_id: int = 0, *, encoding: str = "utf-8") -> None:
        self._state = StreamState(stream_id=stream_id)
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def stream_id(self) -> int:
        return self._state.stream_id

    @property
    def text(self) -> str:
        return self._state.accumulated

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume one chunk and return the events it completes."""

        state = self._state
        if state.complete:
            return []
        state.phase = StreamPhase.STREAMING
        if isinstance(chunk, str):
            text = chunk
        else:
            text = self._decoder.decode(bytes(chunk))
        if not text:
            return []
        lines = (state.pending + text).split("\n")
        state.pending = lines.pop()
        return self._process_lines(lines)

    def end(self) -> list[StreamEvent]:
        """Finalize after the transport reports end-of-body."""

        state = self._state
        if state.complete:
            return []
        tail = state.pending + self._decoder.decode(b"", final=True)
        state.pending = ""
        events = self._process_lines(tail.split("\n")) if tail else []
        if not state.complete:
            events.append(self._complete(explicit=False))
        return events

    def fail(self, error: BaseException | None = None) -> list[StreamEvent]:
        """Finalize after a transport error; the partial trailing line is dropped."""

        state = self._state
        if state.complete:
            return []
        if state.pending:
            LOGGER.debug(
                "Discarding %s buffered character(s) from failed stream %s",
                len(state.pending),
                state.stream_id,
            )
        state.pending = ""
        LOGGER.debug("Stream %s ended by transport error: %s", state.stream_id, error)
        return [self._complete(explicit=False, failed=True)]

    def _process_lines(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for raw_line in lines:
            if self._state.complete:
                break
            event = self._process_line(raw_line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> StreamEvent | None:
        stripped = line.strip()
        if not stripped:
            return None
        if DONE_MARKER in stripped:
            return self._complete(explicit=True)
        if not stripped.startswith(DATA_PREFIX):
            # Comments, heartbeats and ``event:`` fields carry no content.
            return None
        payload = stripped[len(DATA_PREFIX):].strip()
        try:
            frame = json.loads(payload)
        except ValueError as exc:
            self._skip_frame(line, exc)
            return None
        delta = extract_delta_text(frame)
        if not delta:
            return None
        state = self._state
        state.accumulated += delta
        return TextDelta(stream_id=state.stream_id, text=delta, accumulated=state.accumulated)

    def _complete(self, *, explicit: bool, failed: bool = False) -> StreamComplete:
        state = self._state
        state.phase = StreamPhase.COMPLETE
        return StreamComplete(
            stream_id=state.stream_id,
            text=state.accumulated,
            explicit=explicit,
            failed=failed,
        )

    def _skip_frame(self, line: str, exc: Exception) -> None:
        self._state.skipped_frames += 1
        error = MalformedFrameError(line=line, details={"reason": str(exc)})
        LOGGER.debug("%s: %r (%s)", error, line, exc)


def extract_delta_text(frame: Any) -> str:
    """Return ``choices[0].delta.content`` or an empty string when absent."""

    if not isinstance(frame, Mapping):
        return ""
    choices = frame.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, Mapping):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, Mapping):
        return ""
    content = delta.get("content")
    if not isinstance(content, str):
        return ""
    return content
