"""Named-pipe (FIFO) transport.

Opening one end of a FIFO blocks until a peer opens the other end, which can
deadlock a process whose peer has not started yet.  ``FifoTransport`` therefore
opens every descriptor with ``O_NONBLOCK`` and switches it back to blocking
mode afterwards, so ``open`` returns immediately while reads and writes block
normally.

A reader blocked in :meth:`FifoTransport.read_line` can be released from
another thread by :meth:`FifoTransport.close`; the blocked call raises
``PipeClosedError`` and releases the descriptors as it unwinds.
"""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import platform
import selectors
import shutil
import stat
import threading
from pathlib import Path
from typing import Literal

from pipemcp.ipc.constants import DEFAULT_FIFO_MODE, MAX_LINE_BYTES, READ_CHUNK_BYTES
from pipemcp.ipc.errors import (
    FifoCreationError,
    MalformedRecordError,
    NotAPipeError,
    PipeClosedError,
    PipeFlagsError,
    PipeMissingError,
    PipeNotOpenError,
    PipeOpenError,
    PipeReadError,
    PipeWriteError,
)

logger = logging.getLogger(__name__)

type PipeRole = Literal["reader", "writer"]


def is_fifo(path: Path | str) -> bool:
    """Return whether *path* exists and is a named pipe."""
    try:
        return stat.S_ISFIFO(os.stat(path).st_mode)
    except OSError:
        return False


def ensure_fifo(path: Path | str, mode: int = DEFAULT_FIFO_MODE) -> Path:
    """Make sure a FIFO exists at *path*.

    An existing FIFO is accepted as-is.  Anything else at *path* is removed and
    replaced.  The mode is applied explicitly so the process umask cannot
    narrow it.
    """
    fifo_path = Path(path)
    try:
        existing = os.stat(fifo_path)
    except FileNotFoundError:
        existing = None
    except OSError as exc:
        raise FifoCreationError(fifo_path, exc.errno) from exc

    if existing is not None:
        if stat.S_ISFIFO(existing.st_mode):
            return fifo_path
        logger.warning("Replacing non-pipe file at %s", fifo_path)
        try:
            if stat.S_ISDIR(existing.st_mode):
                shutil.rmtree(fifo_path)
            else:
                fifo_path.unlink()
        except OSError as exc:
            raise FifoCreationError(fifo_path, exc.errno) from exc

    try:
        fifo_path.parent.mkdir(parents=True, exist_ok=True)
        os.mkfifo(fifo_path, mode)
    except FileExistsError:
        logger.debug("Pipe at %s was created concurrently", fifo_path)
    except OSError as exc:
        raise FifoCreationError(fifo_path, exc.errno) from exc
    else:
        try:
            os.chmod(fifo_path, mode)
        except OSError as exc:
            raise FifoCreationError(fifo_path, exc.errno) from exc
        logger.debug("Created pipe at %s (mode %o)", fifo_path, mode)

    if not is_fifo(fifo_path):
        raise NotAPipeError(fifo_path)
    return fifo_path


def remove_fifo(path: Path | str) -> bool:
    """Delete the FIFO at *path*; other file types are left alone."""
    if not is_fifo(path):
        return False
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    logger.debug("Removed pipe at %s", path)
    return True


def has_reader(path: Path | str) -> bool | None:
    """Whether some process holds the read end of the FIFO at *path*.

    Opening the write end without blocking fails with ``ENXIO`` when nobody is
    reading.  The probe descriptor is closed straight away.  Returns ``None``
    when the answer is unknown (missing path, permission denied).
    """
    try:
        fd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
    except OSError as exc:
        if exc.errno == errno.ENXIO:
            return False
        return None
    os.close(fd)
    return True


class FifoTransport:
    """One named pipe, opened either for reading or for writing.

    The transport owns at most one data descriptor.  A reader opened with
    ``hold_open=True`` additionally keeps a writer descriptor on its own FIFO
    so that it never observes end-of-stream while peers come and go.

    Usage::

        reader = FifoTransport(path)
        reader.open_for_reading(hold_open=True)
        line = reader.read_line()  # blocks
        reader.close()
    """

    def __init__(
        self,
        path: Path | str,
        *,
        mode: int = DEFAULT_FIFO_MODE,
        create: bool = True,
    ) -> None:
        if platform.system() == "Windows":
            msg = "Named pipes (FIFOs) are not supported on Windows"
            raise NotImplementedError(msg)
        self._path = Path(path)
        self._mode = mode
        self._role: PipeRole | None = None
        self._fd: int | None = None
        self._hold_fd: int | None = None
        self._wake_r: int | None = None
        self._wake_w: int | None = None
        self._selector: selectors.BaseSelector | None = None
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._closed = False
        self._reader_active = False
        self._discarding = False
        if create:
            ensure_fifo(self._path, mode)

    def __enter__(self) -> FifoTransport:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FifoTransport(path={str(self._path)!r}, role={self._role!r})"

    @property
    def path(self) -> Path:
        """Filesystem path of the FIFO."""
        return self._path

    @property
    def role(self) -> PipeRole | None:
        """``reader`` or ``writer`` once opened, else ``None``."""
        return self._role

    @property
    def is_open(self) -> bool:
        """Whether the transport currently holds an open descriptor."""
        return self._fd is not None and not self._closed

    def ensure(self) -> Path:
        """Create the FIFO if needed (see :func:`ensure_fifo`)."""
        return ensure_fifo(self._path, self._mode)

    def open_for_reading(self, *, hold_open: bool = False) -> None:
        """Open the read end without blocking on a missing writer."""
        fd = self._open_descriptor(os.O_RDONLY, "reading")
        hold_fd: int | None = None
        if hold_open:
            try:
                hold_fd = os.open(self._path, os.O_WRONLY | os.O_NONBLOCK)
            except OSError as exc:
                os.close(fd)
                raise PipeOpenError(self._path, exc.errno, mode="writing") from exc
        wake_r, wake_w = os.pipe()
        selector = selectors.DefaultSelector()
        selector.register(fd, selectors.EVENT_READ)
        selector.register(wake_r, selectors.EVENT_READ)
        self._install("reader", fd, hold_fd=hold_fd, wake=(wake_r, wake_w), selector=selector)
        logger.debug("Opened pipe %s for reading (hold_open=%s)", self._path, hold_open)

    def open_for_writing(self) -> None:
        """Open the write end; fails with ``ENXIO`` when no reader is present."""
        fd = self._open_descriptor(os.O_WRONLY, "writing")
        self._install("writer", fd)
        logger.debug("Opened pipe %s for writing", self._path)

    def read_line(self) -> str | None:
        """Block until one newline-delimited record is available.

        Returns the record without its delimiter, or ``None`` once every writer
        has closed the pipe.  A record that is too long or not valid UTF-8
        raises ``MalformedRecordError``; the next call resumes with the
        following record.
        """
        with self._lock:
            if self._closed:
                raise PipeClosedError(self._path)
            if self._fd is None or self._role != "reader" or self._selector is None:
                raise PipeNotOpenError(self._path)
            fd, wake_r, selector = self._fd, self._wake_r, self._selector
            self._reader_active = True
        try:
            return self._read_line(fd, wake_r, selector)
        finally:
            with self._lock:
                self._reader_active = False
                if self._closed:
                    self._release()

    def write(self, data: bytes | str) -> None:
        """Write one record, appending a newline delimiter when missing."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload.endswith(b"\n"):
            payload += b"\n"
        with self._lock:
            if self._closed or self._fd is None or self._role != "writer":
                raise PipeNotOpenError(self._path)
            fd = self._fd
        view = memoryview(payload)
        try:
            while view:
                written = os.write(fd, view)
                view = view[written:]
        except OSError as exc:
            raise PipeWriteError(self._path, exc.strerror or str(exc), exc.errno) from exc

    def close(self) -> None:
        """Release the descriptors.  Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._wake_w is not None:
                with contextlib.suppress(OSError):
                    os.write(self._wake_w, b"\0")
            if not self._reader_active:
                self._release()
        logger.debug("Closed pipe %s", self._path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_descriptor(self, flags: int, mode_name: str) -> int:
        if not os.path.lexists(self._path):
            raise PipeMissingError(self._path)
        if not is_fifo(self._path):
            raise NotAPipeError(self._path)
        try:
            fd = os.open(self._path, flags | os.O_NONBLOCK)
        except OSError as exc:
            logger.error("Error opening pipe %s for %s: %s", self._path, mode_name, exc)
            raise PipeOpenError(self._path, exc.errno, mode=mode_name) from exc
        try:
            os.set_blocking(fd, True)
        except OSError as exc:
            logger.error("Error clearing O_NONBLOCK on %s: %s", self._path, exc)
            os.close(fd)
            raise PipeFlagsError(self._path, exc.errno) from exc
        return fd

    def _install(
        self,
        role: PipeRole,
        fd: int,
        *,
        hold_fd: int | None = None,
        wake: tuple[int, int] | None = None,
        selector: selectors.BaseSelector | None = None,
    ) -> None:
        with self._lock:
            if self._fd is not None and not self._closed:
                for extra in (fd, hold_fd, *(wake or ())):
                    if extra is not None:
                        os.close(extra)
                if selector is not None:
                    selector.close()
                msg = f"Pipe {self._path} is already open"
                raise RuntimeError(msg)
            self._release()
            self._closed = False
            self._role = role
            self._fd = fd
            self._hold_fd = hold_fd
            self._wake_r, self._wake_w = wake if wake is not None else (None, None)
            self._selector = selector
            self._buffer.clear()
            self._discarding = False

    def _read_line(
        self,
        fd: int,
        wake_r: int | None,
        selector: selectors.BaseSelector,
    ) -> str | None:
        while True:
            newline = self._buffer.find(b"\n")
            if newline >= 0:
                raw = bytes(self._buffer[:newline])
                del self._buffer[: newline + 1]
                if self._discarding:
                    # Tail of an oversized record.
                    self._discarding = False
                    continue
                if len(raw) > MAX_LINE_BYTES:
                    raise MalformedRecordError(
                        self._path, f"record exceeds {MAX_LINE_BYTES} bytes", raw[:200]
                    )
                return self._decode_record(raw)
            if self._discarding:
                self._buffer.clear()
            elif len(self._buffer) > MAX_LINE_BYTES:
                head = bytes(self._buffer[:200])
                self._buffer.clear()
                self._discarding = True
                raise MalformedRecordError(
                    self._path, f"record exceeds {MAX_LINE_BYTES} bytes", head
                )

            try:
                events = selector.select()
            except OSError as exc:
                raise PipeReadError(self._path, str(exc), exc.errno) from exc
            if any(key.fd == wake_r for key, _ in events):
                raise PipeClosedError(self._path)

            try:
                chunk = os.read(fd, READ_CHUNK_BYTES)
            except OSError as exc:
                raise PipeReadError(self._path, exc.strerror or str(exc), exc.errno) from exc
            if not chunk:
                self._discarding = False
                if self._buffer:
                    raw = bytes(self._buffer)
                    self._buffer.clear()
                    return self._decode_record(raw)
                return None
            self._buffer.extend(chunk)

    def _decode_record(self, raw: bytes) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedRecordError(
                self._path, f"invalid UTF-8 at byte {exc.start}", raw
            ) from exc

    def _release(self) -> None:
        """Close every descriptor.  Caller holds ``self._lock``."""
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        for attr in ("_fd", "_hold_fd", "_wake_r", "_wake_w"):
            fd = getattr(self, attr)
            if fd is not None:
                with contextlib.suppress(OSError):
                    os.close(fd)
                setattr(self, attr, None)
        self._buffer.clear()
        self._discarding = False


__all__ = [
    "FifoTransport",
    "PipeRole",
    "ensure_fifo",
    "has_reader",
    "is_fifo",
    "remove_fifo",
]
