"""Shared test helpers and stub classes."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Iterable, Sequence

from codebase_chatbot.ai.stream import StreamEvent, StreamReassembler


def delta_line(content: str | None, *, role: str | None = None) -> str:
    """Return one ``data:`` line carrying a chat completion delta."""

    delta: dict[str, str] = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    frame = {"object": "chat.completion.chunk", "choices": [{"index": 0, "delta": delta}]}
    return f"data: {json.dumps(frame, ensure_ascii=False)}\n"


def sse_body(*contents: str, done: bool = True) -> bytes:
    """Return a complete streamed body for the given deltas."""

    lines = [delta_line(None, role="assistant")]
    lines.extend(delta_line(content) for content in contents)
    if done:
        lines.append("data: [DONE]\n")
    return "".join(lines).encode("utf-8")


async def aiter_chunks(chunks: Iterable[bytes], *, error: Exception | None = None) -> AsyncIterator[bytes]:
    """Yield ``chunks`` as an async body, optionally failing afterwards."""

    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


class FakeChatClient:
    """Client stub replaying canned bodies through a real reassembler.

    ``bodies`` is consumed one entry per turn. An entry may be a list of byte
    chunks, an exception to raise before streaming starts, or an
    ``asyncio.Event`` that blocks the turn until set.
    """

    def __init__(self, bodies: Sequence[Any] = (), *, replies: Sequence[Any] = ()) -> None:
        self._bodies = list(bodies)
        self._replies = list(replies)
        self.stream_calls: list[dict[str, Any]] = []
        self.complete_calls: list[dict[str, Any]] = []

    async def stream_chat(
        self,
        prompt: str,
        system_context: str | None = None,
        *,
        history: Sequence[dict[str, str]] | None = None,
        stream_id: int = 0,
    ) -> AsyncIterator[StreamEvent]:
        self.stream_calls.append(
            {"prompt": prompt, "system_context": system_context, "history": history, "stream_id": stream_id}
        )
        body = self._bodies.pop(0)
        if isinstance(body, asyncio.Event):
            await body.wait()
            body = [sse_body("late")]
        if isinstance(body, BaseException):
            raise body
        reassembler = StreamReassembler(stream_id)
        for chunk in body:
            if isinstance(chunk, BaseException):
                for event in reassembler.fail(chunk):
                    yield event
                raise chunk
            for event in reassembler.feed(chunk):
                yield event
            await asyncio.sleep(0)
        for event in reassembler.end():
            yield event

    async def complete(
        self,
        prompt: str,
        system_context: str | None = None,
        *,
        history: Sequence[dict[str, str]] | None = None,
    ) -> str:
        self.complete_calls.append({"prompt": prompt, "system_context": system_context, "history": history})
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply
