"""Shared IPC framing constants."""

from __future__ import annotations

import select

MAX_LINE_BYTES = 4 * 1024 * 1024  # 4 MiB per JSON line (without framing overhead)
READ_CHUNK_BYTES = 64 * 1024
ATOMIC_WRITE_BYTES = getattr(select, "PIPE_BUF", 512)  # POSIX guarantees at least 512

DEFAULT_FIFO_MODE = 0o666
DEFAULT_CALL_TIMEOUT_SECONDS = 10.0
DEFAULT_IDLE_POLL_INTERVAL_SECONDS = 0.1

__all__ = [
    "ATOMIC_WRITE_BYTES",
    "DEFAULT_CALL_TIMEOUT_SECONDS",
    "DEFAULT_FIFO_MODE",
    "DEFAULT_IDLE_POLL_INTERVAL_SECONDS",
    "MAX_LINE_BYTES",
    "READ_CHUNK_BYTES",
]
