"""Transport and stream handling for OpenAI-compatible chat endpoints."""

from .client import ChatClient, ChatStream, ClientSettings, normalize_endpoint
from .errors import (
    ChatbotError,
    ConfigurationError,
    ConnectivityError,
    ErrorKind,
    MalformedFrameError,
    MalformedResponseError,
    RequestTimeoutError,
    ServerError,
)
from .stream import StreamComplete, StreamReassembler, StreamState, TextDelta

__all__ = [
    "ChatClient",
    "ChatStream",
    "ClientSettings",
    "normalize_endpoint",
    "ChatbotError",
    "ConfigurationError",
    "ConnectivityError",
    "ErrorKind",
    "MalformedFrameError",
    "MalformedResponseError",
    "RequestTimeoutError",
    "ServerError",
    "StreamComplete",
    "StreamReassembler",
    "StreamState",
    "TextDelta",
]
