"""Per-panel chat session driving one request at a time.

The session owns the transcript and the identifier of the stream currently
allowed to update it. Every event produced by the transport carries the
identifier of the stream it belongs to; events whose identifier no longer
matches (because the user started a new turn, cleared the chat, or closed the
panel) are dropped before they can touch the transcript.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, Protocol, Sequence

from ..ai.errors import ChatbotError, ErrorKind
from ..ai.stream import StreamComplete, StreamEvent, TextDelta
from .message_model import ChatTurn

LOGGER = logging.getLogger(__name__)


class TranscriptListener(Protocol):
    """Callback receiving the full transcript after every change."""

    def __call__(self, turns: Sequence[ChatTurn]) -> None:
        ...


class ErrorListener(Protocol):
    """Callback receiving one notification per failed turn."""

    def __call__(self, kind: str, message: str) -> None:
        ...


class ChatSession:
    """Conversation state for a single chat panel."""

    def __init__(
        self,
        client: Any,
        *,
        system_prompt: str = "",
        stream: bool = True,
        include_history: bool = False,
    ) -> None:
        self._client = client
        self.system_prompt = system_prompt
        self.stream = stream
        self.include_history = include_history
        self._turns: List[ChatTurn] = []
        self._transcript_listeners: list[TranscriptListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._busy_listeners: list[Callable[[bool], None]] = []
        self._stream_counter = 0
        self._current_stream_id: Optional[int] = None
        self._active_turn: Optional[ChatTurn] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._busy = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def turns(self) -> List[ChatTurn]:
        """Return a copy of the transcript."""

        return list(self._turns)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def current_stream_id(self) -> Optional[int]:
        return self._current_stream_id

    @property
    def task(self) -> Optional[asyncio.Task[None]]:
        return self._task

    def submit_user_text(self, text: str) -> Optional[asyncio.Task[None]]:
        """Record ``text`` as a user turn and start the assistant reply.

        Must be called while an asyncio loop is running. A reply still in
        flight is abandoned in favor of the new turn.
        """

        prompt = (text or "").strip()
        if not prompt:
            return None
        if self._current_stream_id is not None:
            LOGGER.info("Superseding unresolved stream %s with a new turn", self._current_stream_id)
            self._abandon_active()

        history = self._history_messages() if self.include_history else None
        self._turns.append(ChatTurn(sender="user", text=prompt, complete=True))
        assistant = ChatTurn(sender="assistant")
        self._turns.append(assistant)

        self._stream_counter += 1
        stream_id = self._stream_counter
        self._current_stream_id = stream_id
        self._active_turn = assistant
        self._emit_transcript()
        self._set_busy(True)

        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run_turn(stream_id, assistant, prompt, history))
        self._task = task
        return task

    def clear_history(self) -> None:
        """Drop the transcript and abandon any reply still in flight."""

        self._abandon_active()
        self._turns.clear()
        self._emit_transcript()
        self._set_busy(False)

    def close(self) -> None:
        """Abandon the in-flight reply when the panel goes away."""

        self._abandon_active()
        self._set_busy(False)

    def apply_event(self, event: StreamEvent) -> bool:
        """Apply a stream event if it belongs to the current stream."""

        if event.stream_id != self._current_stream_id or self._active_turn is None:
            LOGGER.debug(
                "Dropping %s from stale stream %s (current=%s)",
                type(event).__name__,
                event.stream_id,
                self._current_stream_id,
            )
            return False
        turn = self._active_turn
        if isinstance(event, TextDelta):
            if len(event.accumulated) < len(turn.text):
                LOGGER.debug("Ignoring out-of-order delta on stream %s", event.stream_id)
                return False
            turn.text = event.accumulated
            self._emit_transcript()
            return True
        if isinstance(event, StreamComplete):
            if event.failed:
                # The transport error that caused this arrives right after.
                return True
            turn.text = event.text or turn.text
            turn.complete = True
            self._finish_active()
            self._emit_transcript()
            self._set_busy(False)
            return True
        return False

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------
    def add_transcript_listener(self, listener: TranscriptListener) -> None:
        self._transcript_listeners.append(listener)

    def remove_transcript_listener(self, listener: TranscriptListener) -> None:
        try:
            self._transcript_listeners.remove(listener)
        except ValueError:  # pragma: no cover - defensive guard
            pass

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        try:
            self._error_listeners.remove(listener)
        except ValueError:  # pragma: no cover - defensive guard
            pass

    def add_busy_listener(self, listener: Callable[[bool], None]) -> None:
        self._busy_listeners.append(listener)

    def remove_busy_listener(self, listener: Callable[[bool], None]) -> None:
        try:
            self._busy_listeners.remove(listener)
        except ValueError:  # pragma: no cover - defensive guard
            pass

    # ------------------------------------------------------------------
    # Turn execution
    # ------------------------------------------------------------------
    async def _run_turn(
        self,
        stream_id: int,
        turn: ChatTurn,
        prompt: str,
        history: Sequence[dict[str, str]] | None,
    ) -> None:
        try:
            if self.stream:
                async for event in self._client.stream_chat(
                    prompt,
                    self.system_prompt,
                    history=history,
                    stream_id=stream_id,
                ):
                    self.apply_event(event)
            else:
                reply = await self._client.complete(prompt, self.system_prompt, history=history)
                self.apply_event(TextDelta(stream_id=stream_id, text=reply, accumulated=reply))
                self.apply_event(StreamComplete(stream_id=stream_id, text=reply))
        except asyncio.CancelledError:
            LOGGER.debug("Turn for stream %s cancelled", stream_id)
            raise
        except ChatbotError as exc:
            LOGGER.warning("Chat turn failed: %s", exc)
            self._fail_turn(stream_id, turn, exc)
        except Exception as exc:
            LOGGER.exception("Unexpected failure while running chat turn")
            error = ChatbotError(kind=ErrorKind.INTERNAL, message=str(exc) or type(exc).__name__)
            self._fail_turn(stream_id, turn, error)
        else:
            if stream_id == self._current_stream_id:
                # The event stream ended without producing a completion event.
                self.apply_event(StreamComplete(stream_id=stream_id, text=turn.text, explicit=False))

    def _fail_turn(self, stream_id: int, turn: ChatTurn, error: ChatbotError) -> None:
        if stream_id != self._current_stream_id:
            LOGGER.debug("Ignoring failure from stale stream %s", stream_id)
            return
        self._finalize_interrupted(turn)
        self._finish_active()
        self._emit_transcript()
        self._set_busy(False)
        self._emit_error(error.kind, error.user_message())

    def _abandon_active(self) -> None:
        turn = self._active_turn
        task = self._task
        self._finish_active()
        if task is not None and not task.done():
            task.cancel()
        if turn is not None:
            self._finalize_interrupted(turn)
            self._emit_transcript()

    def _finalize_interrupted(self, turn: ChatTurn) -> None:
        if turn.complete:
            return
        if turn.text:
            turn.failed = True
            return
        try:
            self._turns.remove(turn)
        except ValueError:
            pass

    def _finish_active(self) -> None:
        self._current_stream_id = None
        self._active_turn = None
        self._task = None

    def _history_messages(self) -> list[dict[str, str]]:
        return [turn.to_message() for turn in self._turns if turn.complete and not turn.failed and turn.text]

    # ------------------------------------------------------------------
    # Listener fan-out
    # ------------------------------------------------------------------
    def _emit_transcript(self) -> None:
        snapshot = self.turns()
        for listener in list(self._transcript_listeners):
            listener(snapshot)

    def _emit_error(self, kind: str, message: str) -> None:
        for listener in list(self._error_listeners):
            listener(kind, message)

    def _set_busy(self, busy: bool) -> None:
        if busy == self._busy:
            return
        self._busy = busy
        for listener in list(self._busy_listeners):
            listener(busy)
