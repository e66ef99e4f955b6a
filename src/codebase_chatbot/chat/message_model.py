"""Chat transcript data models."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Literal

_TURN_IDS = itertools.count(1)


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)

ChatSender = Literal["user", "assistant"]


@dataclass(slots=True)
class ChatTurn:
    """One user message or one assistant reply in the transcript.

    ``complete`` flips to true once the reply's terminal signal arrives. A
    reply interrupted by a transport failure keeps whatever text streamed in
    and is flagged ``failed``.
    """

    sender: ChatSender
    text: str = ""
    timestamp: datetime = field(default_factory=_utcnow)
    complete: bool = False
    failed: bool = False
    turn_id: int = field(default_factory=lambda: next(_TURN_IDS))

    @property
    def is_user(self) -> bool:
        return self.sender == "user"

    @property
    def pending(self) -> bool:
        """Return whether the turn is still waiting for its terminal signal."""

        return not self.complete and not self.failed

    def to_message(self) -> Dict[str, str]:
        """Render the turn as an OpenAI chat message."""

        return {"role": self.sender, "content": self.text}

    def to_dict(self) -> Dict[str, object]:
        """Serialize the turn for logging and exports."""

        return {
            "turn_id": self.turn_id,
            "sender": self.sender,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "complete": self.complete,
            "failed": self.failed,
        }
