"""Error taxonomy for pipe transports, envelopes, correlation and routing."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class PipeMCPError(Exception):
    """Base for all pipemcp errors with a machine-readable code."""

    code: str = "PIPEMCP_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


# ── Transport setup ────────────────────────────────────────────────────


class TransportError(PipeMCPError):
    """Base for errors tied to one FIFO path."""

    def __init__(self, message: str, *, path: Path | str, errno: int | None = None) -> None:
        super().__init__(message)
        self.path = str(path)
        self.errno = errno


def _describe_errno(errno: int | None) -> str:
    return os.strerror(errno) if errno is not None else "unknown error"


class FifoCreationError(TransportError):
    """Raised when a FIFO cannot be created (or a stale file cannot be removed)."""

    code = "FIFO_CREATION_FAILED"

    def __init__(self, path: Path | str, errno: int | None = None) -> None:
        super().__init__(
            f"Failed to create pipe at {path}: {_describe_errno(errno)}",
            path=path,
            errno=errno,
        )


class NotAPipeError(TransportError):
    """Raised when a path exists but is not a FIFO."""

    code = "NOT_A_PIPE"

    def __init__(self, path: Path | str) -> None:
        super().__init__(f"{path} is not a named pipe", path=path)


class PipeMissingError(TransportError):
    """Raised when opening a FIFO path that does not exist."""

    code = "PIPE_MISSING"

    def __init__(self, path: Path | str) -> None:
        super().__init__(f"Pipe does not exist: {path}", path=path)


class PipeOpenError(TransportError):
    """Raised when ``open(2)`` on a FIFO fails.

    A writer opened before any reader fails with ``ENXIO``.
    """

    code = "OPEN_FAILED"

    def __init__(self, path: Path | str, errno: int | None = None, *, mode: str) -> None:
        super().__init__(
            f"Failed to open pipe {path} for {mode}: {_describe_errno(errno)}",
            path=path,
            errno=errno,
        )
        self.mode = mode


class PipeFlagsError(TransportError):
    """Raised when the descriptor flags cannot be read or updated."""

    code = "FLAGS_FAILED"

    def __init__(self, path: Path | str, errno: int | None = None) -> None:
        super().__init__(
            f"Failed to update descriptor flags for {path}: {_describe_errno(errno)}",
            path=path,
            errno=errno,
        )


# ── Transport I/O ──────────────────────────────────────────────────────


class PipeNotOpenError(TransportError):
    """Raised when reading or writing a transport that was never opened."""

    code = "NOT_OPEN"

    def __init__(self, path: Path | str) -> None:
        super().__init__(f"Pipe {path} is not open", path=path)


class PipeClosedError(TransportError):
    """Raised when a transport is closed while a read is in progress."""

    code = "CLOSED"

    def __init__(self, path: Path | str) -> None:
        super().__init__(f"Pipe {path} was closed", path=path)


class PipeReadError(TransportError):
    """Raised when reading from a FIFO fails mid-stream."""

    code = "READ_ERROR"

    def __init__(self, path: Path | str, detail: str, errno: int | None = None) -> None:
        super().__init__(f"Error reading from pipe {path}: {detail}", path=path, errno=errno)


class MalformedRecordError(TransportError):
    """Raised for one unusable record; the transport stays readable.

    Covers records longer than the line limit (the rest of the record is
    skipped up to its newline) and records that are not valid UTF-8.
    """

    code = "MALFORMED_RECORD"

    def __init__(self, path: Path | str, detail: str, record: bytes = b"") -> None:
        super().__init__(f"Malformed record on pipe {path}: {detail}", path=path)
        self.detail = detail
        self.preview = record[:200].decode("utf-8", errors="backslashreplace")


class PipeWriteError(TransportError):
    """Raised when writing to a FIFO fails mid-stream."""

    code = "WRITE_ERROR"

    def __init__(self, path: Path | str, detail: str, errno: int | None = None) -> None:
        super().__init__(f"Error writing to pipe {path}: {detail}", path=path, errno=errno)


# ── Protocol ───────────────────────────────────────────────────────────


class EnvelopeDecodeError(PipeMCPError):
    """Raised when a wire line is not a valid envelope."""

    code = "DECODE_ERROR"

    def __init__(self, line: str, detail: str) -> None:
        super().__init__(f"Invalid envelope: {detail}")
        self.line = line
        self.detail = detail


# ── Correlation ────────────────────────────────────────────────────────


class CorrelationError(PipeMCPError):
    """Base for errors local to one in-flight call."""

    def __init__(
        self,
        message: str,
        *,
        client_id: str,
        message_id: str,
        label: str | None = None,
    ) -> None:
        super().__init__(message)
        self.client_id = client_id
        self.message_id = message_id
        self.label = label


def _call_name(message_id: str, label: str | None) -> str:
    return f"'{label}' (message {message_id})" if label else f"message {message_id}"


class CallTimeoutError(CorrelationError):
    """Raised when no response arrives before the call deadline."""

    code = "TIMEOUT"

    def __init__(
        self,
        *,
        client_id: str,
        message_id: str,
        timeout: float,
        label: str | None = None,
    ) -> None:
        super().__init__(
            f"Call {_call_name(message_id, label)} timed out after {timeout:g}s",
            client_id=client_id,
            message_id=message_id,
            label=label,
        )
        self.timeout = timeout


class CallCancelledError(CorrelationError):
    """Raised when a pending call is cancelled before its response arrives."""

    code = "CANCELLED"

    def __init__(self, *, client_id: str, message_id: str, label: str | None = None) -> None:
        super().__init__(
            f"Call {_call_name(message_id, label)} was cancelled",
            client_id=client_id,
            message_id=message_id,
            label=label,
        )


class DuplicatePendingCallError(CorrelationError):
    """Raised when a correlation key is registered twice."""

    code = "DUPLICATE_PENDING_CALL"

    def __init__(self, *, client_id: str, message_id: str) -> None:
        super().__init__(
            f"A call for {client_id}:{message_id} is already pending",
            client_id=client_id,
            message_id=message_id,
        )


class RemoteCallError(CorrelationError):
    """Raised when the matched response is an error envelope."""

    code = "REMOTE_ERROR"

    def __init__(
        self,
        remote_message: str,
        *,
        client_id: str,
        message_id: str,
        label: str | None = None,
    ) -> None:
        super().__init__(
            remote_message,
            client_id=client_id,
            message_id=message_id,
            label=label,
        )
        self.remote_message = remote_message


# ── Routing ────────────────────────────────────────────────────────────


class NoChannelForClientError(PipeMCPError):
    """Raised when sending to a client with no registered response channel."""

    code = "NO_CHANNEL_FOR_CLIENT"

    def __init__(self, client_id: str) -> None:
        super().__init__(f"No response channel for client {client_id}")
        self.client_id = client_id


# ── Application ────────────────────────────────────────────────────────


class ToolCallError(PipeMCPError):
    """Raised when a tool call completes with an application-level error."""

    code = "TOOL_ERROR"

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name
        self.remote_message = message


class UnknownToolError(PipeMCPError):
    """Raised when a tool name is not registered."""

    code = "UNKNOWN_TOOL"

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


__all__ = [
    "CallCancelledError",
    "CallTimeoutError",
    "CorrelationError",
    "DuplicatePendingCallError",
    "EnvelopeDecodeError",
    "FifoCreationError",
    "MalformedRecordError",
    "NoChannelForClientError",
    "NotAPipeError",
    "PipeClosedError",
    "PipeFlagsError",
    "PipeMCPError",
    "PipeMissingError",
    "PipeNotOpenError",
    "PipeOpenError",
    "PipeReadError",
    "PipeWriteError",
    "RemoteCallError",
    "ToolCallError",
    "TransportError",
    "UnknownToolError",
]
