"""Error types raised while talking to the language-model endpoint.

Every error carries a machine-readable ``kind`` so the chat session can report
failures to the panel without inspecting exception classes, plus an optional
``suggestion`` with remediation text for the user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorKind:
    """Constants for the ``kind`` reported alongside each error."""

    CONFIGURATION = "configuration"
    CONNECTIVITY = "connectivity"
    SERVER = "server"
    TIMEOUT = "timeout"
    MALFORMED_FRAME = "malformed_frame"
    MALFORMED_RESPONSE = "malformed_response"
    INTERNAL = "internal"


@dataclass
class ChatbotError(Exception):
    """Base exception for chat transport and parsing failures.

    Attributes:
        kind: Machine-readable error identifier (see :class:`ErrorKind`).
        message: Human-readable error description.
        details: Additional structured information.
        suggestion: Actionable guidance shown to the user.
    """

    kind: str = ErrorKind.INTERNAL
    message: str = "Unexpected chat failure"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    # Fatal errors abort the current turn; recoverable ones are handled in place.
    fatal: ClassVar[bool] = True

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly mapping."""
        result: dict[str, Any] = {
            "error": self.kind,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def user_message(self) -> str:
        """Return the notification text shown in the chat panel."""
        if self.suggestion:
            return f"{self.message}\n{self.suggestion}"
        return self.message

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


@dataclass
class ConfigurationError(ChatbotError):
    """Raised when the endpoint or model name is missing."""

    kind: str = field(default=ErrorKind.CONFIGURATION)
    message: str = field(default="The chat endpoint is not configured")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Set both 'endpoint' and 'model' in the chatbot settings")

    setting: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.setting is not None:
            result["setting"] = self.setting
        return result


@dataclass
class ConnectivityError(ChatbotError):
    """Raised when the model server refuses or cannot be reached."""

    kind: str = field(default=ErrorKind.CONNECTIVITY)
    message: str = field(default="Could not connect to the language model server")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(
        default=(
            "Make sure the local model server is running and listening on the configured port. "
            "From inside a container use host.docker.internal instead of 127.0.0.1, or run the "
            "container with host networking."
        )
    )

    endpoint: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.endpoint is not None:
            result["endpoint"] = self.endpoint
        return result


@dataclass
class ServerError(ChatbotError):
    """Raised when the server answers with a non-success status."""

    kind: str = field(default=ErrorKind.SERVER)
    message: str = field(default="The language model server returned an error")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    status_code: int = field(default=0)
    body: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["status_code"] = self.status_code
        if self.body:
            result["body"] = self.body
        return result

    def user_message(self) -> str:
        text = f"{self.message} (HTTP {self.status_code})"
        if self.body:
            text = f"{text}: {self.body}"
        return text


@dataclass
class RequestTimeoutError(ChatbotError):
    """Raised when the request exceeds the configured timeout ceiling."""

    kind: str = field(default=ErrorKind.TIMEOUT)
    message: str = field(default="The language model server did not answer in time")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Large models can be slow to load; try again once the model is ready")

    timeout: float | None = field(default=None)


@dataclass
class MalformedFrameError(ChatbotError):
    """Raised for a single unparsable streamed line; never aborts the stream."""

    kind: str = field(default=ErrorKind.MALFORMED_FRAME)
    message: str = field(default="Skipped an unparsable stream frame")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    line: str = field(default="")

    fatal: ClassVar[bool] = False


@dataclass
class MalformedResponseError(ChatbotError):
    """Raised when a complete response lacks ``choices[0].message.content``."""

    kind: str = field(default=ErrorKind.MALFORMED_RESPONSE)
    message: str = field(default="The language model response did not contain a reply")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check that the endpoint speaks the OpenAI chat completions format")
