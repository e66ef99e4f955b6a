"""Qt chat panel rendering the transcript of a :class:`ChatSession`.

The panel is a plain UI collaborator: it never talks to the network. It
renders the transcript it is handed, forwards composer submissions to request
listeners, and disables input while a reply is in flight. :meth:`bind_session`
wires those hooks to a session.
"""

from __future__ import annotations

import html
import logging
from typing import Any, Callable, List, Optional, Protocol, Sequence

from PySide6.QtCore import QEvent, QObject, Qt
from PySide6.QtWidgets import (
    QHBoxLayout,
    QLabel,
    QPushButton,
    QTextBrowser,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from .message_model import ChatTurn

LOGGER = logging.getLogger(__name__)

_PANEL_STYLE = """
QWidget#cc-chat-panel { background-color: #1e1e1e; color: #e0e0e0; }
QTextBrowser#cc-chat-history { background-color: #1e1e1e; border: none; }
QTextEdit#cc-chat-composer {
    background-color: #363636; color: #e0e0e0;
    border: 1px solid #404040; border-radius: 8px; padding: 6px;
}
QTextEdit#cc-chat-composer:focus { border-color: #0078d4; }
QPushButton { background-color: #0078d4; color: white; border: none; border-radius: 6px; padding: 8px 16px; }
QPushButton:hover { background-color: #0086ef; }
QPushButton:disabled { background-color: #3a3a3a; color: #888888; }
QLabel#cc-chat-error { background-color: #5a1d1d; color: #f8d7da; border-radius: 6px; padding: 8px; }
"""

_USER_BUBBLE = "background-color: #0078d4; color: white;"
_ASSISTANT_BUBBLE = "background-color: #2d2d2d; color: #e0e0e0;"
_PENDING_PLACEHOLDER = "…"
_INTERRUPTED_NOTE = "(response interrupted)"


class RequestListener(Protocol):
    """Callback fired when the user submits composer text."""

    def __call__(self, prompt: str) -> Any:
        ...


class ChatPanel(QWidget):
    """Transcript view, composer, and error banner for one chat session."""

    MAX_HISTORY = 200

    def __init__(self, parent: Optional[QWidget] = None, *, history_limit: Optional[int] = None) -> None:
        super().__init__(parent)
        self._history_limit = max(1, history_limit or self.MAX_HISTORY)
        self._turns: List[ChatTurn] = []
        self._busy = False
        self._error: tuple[str, str] | None = None
        self._request_listeners: list[RequestListener] = []
        self._session_reset_listeners: list[Callable[[], None]] = []
        self._close_listeners: list[Callable[[], None]] = []
        self._build_ui()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def history(self) -> List[ChatTurn]:
        """Return the turns currently rendered."""

        return list(self._turns)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def error_state(self) -> tuple[str, str] | None:
        """Return ``(kind, message)`` of the visible error, if any."""

        return self._error

    @property
    def composer_text(self) -> str:
        return self._composer_widget.toPlainText()

    def set_composer_text(self, text: str) -> None:
        self._composer_widget.setPlainText(text)

    def clear_composer(self) -> None:
        self._composer_widget.clear()

    def render_transcript(self, turns: Sequence[ChatTurn]) -> None:
        """Replace the rendered transcript with ``turns``."""

        overflow = len(turns) - self._history_limit
        self._turns = list(turns[overflow:]) if overflow > 0 else list(turns)
        self._history_widget.setHtml(self.transcript_html())
        scrollbar = self._history_widget.verticalScrollBar()
        scrollbar.setValue(scrollbar.maximum())

    def transcript_html(self) -> str:
        """Render the transcript as HTML bubbles."""

        blocks = [self._render_turn(turn) for turn in self._turns]
        return "<html><body>" + "".join(blocks) + "</body></html>"

    def show_error(self, kind: str, message: str) -> None:
        """Display a failure notification above the composer."""

        self._error = (kind, message)
        self._error_label.setText(message)
        self._error_label.setToolTip(kind)
        self._error_label.setVisible(True)

    def clear_error(self) -> None:
        self._error = None
        self._error_label.clear()
        self._error_label.setVisible(False)

    def set_busy(self, busy: bool) -> None:
        """Disable input while a reply is in flight."""

        state = bool(busy)
        if state == self._busy:
            return
        self._busy = state
        self._composer_widget.setReadOnly(state)
        self._send_button.setEnabled(not state)
        self._send_button.setText("Waiting…" if state else "Send")
        if not state:
            self._composer_widget.setFocus()

    def send_prompt(self) -> Optional[str]:
        """Submit the composer text to request listeners.

        Returns the submitted text, or ``None`` while a reply is in flight.
        Raises ``ValueError`` when the composer is empty.
        """

        if self._busy:
            return None
        text = self.composer_text.strip()
        if not text:
            raise ValueError("Prompt cannot be empty")
        self.clear_error()
        self.clear_composer()
        for listener in list(self._request_listeners):
            listener(text)
        return text

    def start_new_chat(self) -> None:
        """Reset the composer and ask listeners to drop the conversation."""

        self.clear_composer()
        self.clear_error()
        for listener in list(self._session_reset_listeners):
            listener()

    def bind_session(self, session: Any) -> None:
        """Connect this panel to a :class:`~codebase_chatbot.chat.session.ChatSession`."""

        self.add_request_listener(session.submit_user_text)
        self.add_session_reset_listener(session.clear_history)
        self.add_close_listener(session.close)
        session.add_transcript_listener(self.render_transcript)
        session.add_error_listener(self.show_error)
        session.add_busy_listener(self.set_busy)
        self.render_transcript(session.turns())
        self.set_busy(session.busy)

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------
    def add_request_listener(self, listener: RequestListener) -> None:
        self._request_listeners.append(listener)

    def remove_request_listener(self, listener: RequestListener) -> None:
        try:
            self._request_listeners.remove(listener)
        except ValueError:  # pragma: no cover - defensive guard
            pass

    def add_session_reset_listener(self, listener: Callable[[], None]) -> None:
        self._session_reset_listeners.append(listener)

    def add_close_listener(self, listener: Callable[[], None]) -> None:
        self._close_listeners.append(listener)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        self.setObjectName("cc-chat-panel")
        self.setStyleSheet(_PANEL_STYLE)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(8)

        self._history_widget = QTextBrowser(self)
        self._history_widget.setObjectName("cc-chat-history")
        self._history_widget.setOpenExternalLinks(True)
        layout.addWidget(self._history_widget, 1)

        self._error_label = QLabel(self)
        self._error_label.setObjectName("cc-chat-error")
        self._error_label.setWordWrap(True)
        self._error_label.setVisible(False)
        layout.addWidget(self._error_label)

        input_row = QHBoxLayout()
        input_row.setContentsMargins(0, 0, 0, 0)
        input_row.setSpacing(12)

        self._composer_widget = QTextEdit(self)
        self._composer_widget.setObjectName("cc-chat-composer")
        self._composer_widget.setAcceptRichText(False)
        self._composer_widget.setPlaceholderText("Type your message...")
        self._composer_widget.setFixedHeight(72)
        self._composer_widget.installEventFilter(self)
        input_row.addWidget(self._composer_widget, 1)

        button_stack = QVBoxLayout()
        button_stack.setSpacing(6)
        self._send_button = QPushButton("Send", self)
        self._send_button.setToolTip("Send message (Enter)")
        self._send_button.clicked.connect(self._handle_send_clicked)
        button_stack.addWidget(self._send_button)
        self._new_chat_button = QPushButton("New chat", self)
        self._new_chat_button.setToolTip("Clear the conversation")
        self._new_chat_button.clicked.connect(self.start_new_chat)
        button_stack.addWidget(self._new_chat_button)
        input_row.addLayout(button_stack, 0)

        layout.addLayout(input_row)
        self._composer_widget.setFocus()

    def _render_turn(self, turn: ChatTurn) -> str:
        body = html.escape(turn.text).replace("\n", "<br>")
        if not body and turn.pending:
            body = _PENDING_PLACEHOLDER
        if turn.failed:
            body = f"{body}<br><i>{_INTERRUPTED_NOTE}</i>"
        if turn.is_user:
            align, style = "right", _USER_BUBBLE
        else:
            align, style = "left", _ASSISTANT_BUBBLE
        return (
            f'<table width="100%" cellspacing="0" cellpadding="0" style="margin-bottom: 12px;">'
            f'<tr><td align="{align}">'
            f'<table cellpadding="10" style="{style}"><tr><td>{body}</td></tr></table>'
            f"</td></tr></table>"
        )

    def eventFilter(self, obj: QObject, event: QEvent) -> bool:  # type: ignore[override]
        if obj is self._composer_widget and event.type() == QEvent.Type.KeyPress:
            key = event.key()  # type: ignore[attr-defined]
            modifiers = event.modifiers()  # type: ignore[attr-defined]
            if key in (Qt.Key.Key_Return, Qt.Key.Key_Enter) and not (
                modifiers & Qt.KeyboardModifier.ShiftModifier
            ):
                self._handle_send_clicked()
                return True
        return super().eventFilter(obj, event)

    def closeEvent(self, event: Any) -> None:  # type: ignore[override]
        for listener in list(self._close_listeners):
            listener()
        super().closeEvent(event)

    def _handle_send_clicked(self) -> None:
        try:
            self.send_prompt()
        except ValueError:
            LOGGER.debug("Ignoring empty prompt submission")
