"""Logging helpers for the Codebase Chatbot application."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "get_log_path", "install_qt_message_handler"]

LOG_FILENAME = "codebase_chatbot.log"
_DEFAULT_LOG_DIR = Path.home() / ".codebase_chatbot" / "logs"
_ROTATE_BYTES = 1_000_000
_ROTATE_BACKUPS = 3
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# "HTTP Request: POST ... 200" lines from httpx are kept in debug runs so
# connection problems with the model server show up in the log.
_REQUEST_LOGGERS: tuple[str, ...] = ("httpx",)
_SILENT_LOGGERS: tuple[str, ...] = ("httpcore", "asyncio", "qasync")

_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    force: bool = False,
) -> Path:
    """Send application logs to a rotating file and, optionally, the console.

    Repeated calls are no-ops unless ``force`` is set, which lets the app
    raise the level once the persisted ``debug_logging`` flag is known.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    log_path = _resolve_log_dir(log_dir) / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(level=level, handlers=_build_handlers(log_path, level, console), force=True)
    logging.captureWarnings(True)
    _quiet_dependencies(level)

    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the log file chosen by :func:`setup_logging`, if any."""

    return _LOG_PATH


def install_qt_message_handler() -> None:
    """Route Qt's own diagnostics through the ``codebase_chatbot.qt`` logger."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    qt_logger = logging.getLogger("codebase_chatbot.qt")
    level_map = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }

    def _handler(mode, context, message):  # type: ignore[no-untyped-def]
        del context
        qt_logger.log(level_map.get(mode, logging.INFO), message)

    qInstallMessageHandler(_handler)


def _build_handlers(log_path: Path, level: int, console: bool) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_BACKUPS, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("CODEBASE_CHATBOT_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _quiet_dependencies(root_level: int) -> None:
    request_level = logging.INFO if root_level <= logging.DEBUG else logging.WARNING
    for name in _REQUEST_LOGGERS:
        logging.getLogger(name).setLevel(max(request_level, root_level))
    for name in _SILENT_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_level))
