"""Logging setup with an in-memory ring buffer of recent records.

Handlers always write to stderr: a helper speaks the MCP stdio protocol on
stdout, so nothing else may be printed there.
"""

from __future__ import annotations

import logging
import sys
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import TextIO

MAX_LOG_LINES = 2000
MAX_LOG_MESSAGE_LENGTH = 4000
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


@dataclass(slots=True)
class LogEntry:
    """A captured log record."""

    level: str
    logger_name: str
    message: str
    timestamp: float


# Global log buffer (ring buffer)
log_buffer: deque[LogEntry] = deque(maxlen=MAX_LOG_LINES)


class DebugLogHandler(logging.Handler):
    """Logging handler that captures records into :data:`log_buffer`."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
            if len(message) > MAX_LOG_MESSAGE_LENGTH:
                message = message[:MAX_LOG_MESSAGE_LENGTH] + "... [truncated]"
            log_buffer.append(
                LogEntry(
                    level=record.levelname,
                    logger_name=record.name,
                    message=message,
                    timestamp=record.created,
                )
            )
        except Exception:
            self.handleError(record)


_installed_handlers: list[logging.Handler] = []


def setup_logging(
    level: str | int = "INFO",
    log_file: Path | str | None = None,
    *,
    stream: TextIO | None = None,
) -> None:
    """Configure the ``pipemcp`` logger tree.

    Calling it again replaces the handlers installed by the previous call, so
    the CLI can apply ``--log-level`` after the config file has been read.
    """
    reset_logging()
    package_logger = logging.getLogger("pipemcp")
    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    stream_handler.setFormatter(formatter)
    _installed_handlers.append(stream_handler)

    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        _installed_handlers.append(file_handler)

    _installed_handlers.append(DebugLogHandler())

    for handler in _installed_handlers:
        package_logger.addHandler(handler)
    package_logger.setLevel(level.upper() if isinstance(level, str) else level)
    package_logger.propagate = False


def reset_logging() -> None:
    """Remove the handlers installed by :func:`setup_logging`."""
    package_logger = logging.getLogger("pipemcp")
    for handler in _installed_handlers:
        package_logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


def get_recent_entries(limit: int | None = None, *, min_level: str | None = None) -> list[LogEntry]:
    """Return buffered entries, oldest first.

    Args:
        limit: Keep only the newest ``limit`` entries.
        min_level: Drop entries below this level name (e.g. ``"WARNING"``).
    """
    entries = list(log_buffer)
    if min_level is not None:
        threshold = logging.getLevelName(min_level.upper())
        if isinstance(threshold, int):
            entries = [
                entry
                for entry in entries
                if logging.getLevelName(entry.level) >= threshold
            ]
    if limit is not None:
        entries = entries[-limit:] if limit > 0 else []
    return entries


def clear_log_buffer() -> None:
    """Clear the log buffer."""
    log_buffer.clear()


__all__ = [
    "DebugLogHandler",
    "LogEntry",
    "clear_log_buffer",
    "get_recent_entries",
    "log_buffer",
    "reset_logging",
    "setup_logging",
]
