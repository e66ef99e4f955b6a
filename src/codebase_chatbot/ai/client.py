"""Async HTTP client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence

import httpx
from openai.types.chat import ChatCompletionMessageParam

from .errors import (
    ChatbotError,
    ConfigurationError,
    ConnectivityError,
    MalformedResponseError,
    RequestTimeoutError,
    ServerError,
)
from .stream import StreamEvent, StreamReassembler

LOGGER = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://host.docker.internal:1234/v1/chat/completions"
DEFAULT_MODEL = "codeqwen1.5-7b-chat"
DEFAULT_TIMEOUT_SECONDS = 60.0
_ERROR_BODY_LIMIT = 2_000


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the chat client."""

    endpoint: str
    model: str
    request_timeout: float | None = DEFAULT_TIMEOUT_SECONDS
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


def normalize_endpoint(endpoint: str | None) -> str:
    """Validate ``endpoint`` and prepend ``http://`` when no scheme is given."""

    value = (endpoint or "").strip()
    if not value:
        raise ConfigurationError(message="No chat endpoint is configured", setting="endpoint")
    if "://" not in value:
        value = f"http://{value}"
    return value


def normalize_model(model: str | None) -> str:
    value = (model or "").strip()
    if not value:
        raise ConfigurationError(message="No model name is configured", setting="model")
    return value


def build_messages(
    prompt: str,
    system_context: str | None = None,
    history: Sequence[Mapping[str, str]] | None = None,
) -> List[ChatCompletionMessageParam]:
    """Assemble the ``messages`` array sent with every request."""

    messages: List[ChatCompletionMessageParam] = []
    if system_context:
        messages.append({"role": "system", "content": system_context})
    for entry in history or ():
        role = entry.get("role")
        content = entry.get("content")
        if role not in {"user", "assistant"} or not isinstance(content, str):
            continue
        messages.append({"role": role, "content": content})  # type: ignore[misc]
    messages.append({"role": "user", "content": prompt})
    return messages


def extract_message_content(payload: Any) -> str:
    """Return ``choices[0].message.content`` from a complete response body."""

    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise MalformedResponseError(details={"reason": f"missing field: {exc}"}) from exc
    if not isinstance(content, str):
        raise MalformedResponseError(details={"reason": "message content is not a string"})
    return content


class ChatStream:
    """Handle over an open streamed response body."""

    def __init__(self, response: httpx.Response, *, endpoint: str, timeout: float | None) -> None:
        self._response = response
        self._endpoint = endpoint
        self._timeout = timeout

    @property
    def status_code(self) -> int:
        return self._response.status_code

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.aiter_bytes()

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Yield raw body chunks, translating transport failures."""

        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.RequestError as exc:
            raise _translate_transport_error(exc, self._endpoint, self._timeout) from exc

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.aclose()
        return False


class ChatClient:
    """Issues one POST per user turn against the configured endpoint."""

    def __init__(self, settings: ClientSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def send(
        self,
        prompt: str,
        system_context: str | None = None,
        *,
        stream: bool,
        history: Sequence[Mapping[str, str]] | None = None,
    ) -> str | ChatStream:
        """Send one turn; returns the reply text, or an open :class:`ChatStream`.

        The caller owns a returned stream and must close it.
        """

        payload = self._build_payload(prompt, system_context, history=history, stream=stream)
        if stream:
            return await self._start_stream(payload)
        return await self._complete(payload)

    async def complete(
        self,
        prompt: str,
        system_context: str | None = None,
        *,
        history: Sequence[Mapping[str, str]] | None = None,
    ) -> str:
        """Request a single non-streamed reply."""

        payload = self._build_payload(prompt, system_context, history=history, stream=False)
        return await self._complete(payload)

    @contextlib.asynccontextmanager
    async def open_stream(
        self,
        prompt: str,
        system_context: str | None = None,
        *,
        history: Sequence[Mapping[str, str]] | None = None,
    ) -> AsyncIterator[ChatStream]:
        """Open a streamed reply and close it when the block exits."""

        payload = self._build_payload(prompt, system_context, history=history, stream=True)
        body = await self._start_stream(payload)
        try:
            yield body
        finally:
            await body.aclose()

    async def stream_chat(
        self,
        prompt: str,
        system_context: str | None = None,
        *,
        history: Sequence[Mapping[str, str]] | None = None,
        stream_id: int = 0,
    ) -> AsyncIterator[StreamEvent]:
        """Stream reply events tagged with ``stream_id``.

        Any failure while reading the body still yields the terminal
        completion event before the error propagates.
        """

        reassembler = StreamReassembler(stream_id)
        async with self.open_stream(prompt, system_context, history=history) as body:
            try:
                async for chunk in body:
                    for event in reassembler.feed(chunk):
                        yield event
                    if reassembler.state.complete:
                        break
            except ChatbotError as exc:
                for event in reassembler.fail(exc):
                    yield event
                raise
        for event in reassembler.end():
            yield event
        if reassembler.state.skipped_frames:
            LOGGER.info(
                "Stream %s skipped %s malformed frame(s)",
                stream_id,
                reassembler.state.skipped_frames,
            )

    async def check_connection(self, prompt: str = "Hello") -> str:
        """Send a minimal non-streamed request and return the reply."""

        LOGGER.info("Testing connection to %s", self._settings.endpoint)
        return await self.complete(prompt)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""

        if self._owns_client:
            await self._client.aclose()

    def _build_client(self, settings: ClientSettings) -> httpx.AsyncClient:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return httpx.AsyncClient(timeout=settings.request_timeout, headers=headers)

    def _build_payload(
        self,
        prompt: str,
        system_context: str | None,
        *,
        history: Sequence[Mapping[str, str]] | None,
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": normalize_model(self._settings.model),
            "messages": build_messages(prompt, system_context, history),
            "stream": stream,
        }
        LOGGER.debug(
            "Prepared %s chat request for %s with %s message(s)",
            "streamed" if stream else "complete",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        return payload

    async def _complete(self, payload: Mapping[str, Any]) -> str:
        endpoint = normalize_endpoint(self._settings.endpoint)
        timeout = self._settings.request_timeout
        # httpx limits each phase separately; the ceiling covers the whole reply.
        try:
            response = await asyncio.wait_for(
                self._client.post(endpoint, json=payload, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise _timeout_error(endpoint, timeout, reason="deadline") from exc
        except httpx.RequestError as exc:
            raise _translate_transport_error(exc, endpoint, timeout) from exc
        if not response.is_success:
            raise _server_error(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(details={"reason": "response body is not JSON"}) from exc
        return extract_message_content(data)

    async def _start_stream(self, payload: Mapping[str, Any]) -> ChatStream:
        endpoint = normalize_endpoint(self._settings.endpoint)
        timeout = self._settings.request_timeout
        request = self._client.build_request("POST", endpoint, json=payload, timeout=timeout)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise _translate_transport_error(exc, endpoint, timeout) from exc
        if not response.is_success:
            try:
                raw = await response.aread()
            except httpx.RequestError:
                raw = b""
            finally:
                await response.aclose()
            raise _server_error(response.status_code, raw.decode("utf-8", errors="replace"))
        LOGGER.debug("Stream opened against %s (status=%s)", endpoint, response.status_code)
        return ChatStream(response, endpoint=endpoint, timeout=timeout)

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Chat request payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Chat request payload:\n%s", serialized)


def _server_error(status_code: int, body: str) -> ServerError:
    text = (body or "").strip()
    if len(text) > _ERROR_BODY_LIMIT:
        text = text[:_ERROR_BODY_LIMIT] + "…"
    return ServerError(status_code=status_code, body=text)


def _timeout_error(endpoint: str, timeout: float | None, *, reason: str) -> RequestTimeoutError:
    return RequestTimeoutError(
        message=f"No response from {endpoint} within {timeout} seconds" if timeout else "Request timed out",
        timeout=timeout,
        details={"reason": reason},
    )


def _translate_transport_error(
    exc: httpx.RequestError,
    endpoint: str,
    timeout: float | None,
) -> ChatbotError:
    if isinstance(exc, httpx.TimeoutException):
        return _timeout_error(endpoint, timeout, reason=type(exc).__name__)
    if isinstance(exc, httpx.DecodingError):
        return MalformedResponseError(
            message=f"The response from {endpoint} could not be decoded",
            details={"reason": type(exc).__name__, "error": str(exc)},
        )
    return ConnectivityError(
        message=f"Could not connect to {endpoint}: {exc}" if str(exc) else f"Could not connect to {endpoint}",
        endpoint=endpoint,
        details={"reason": type(exc).__name__},
    )
