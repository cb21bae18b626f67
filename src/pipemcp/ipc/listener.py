"""Background read loops that turn FIFO lines into envelopes.

A listener owns one reader :class:`~pipemcp.ipc.fifo.FifoTransport`.  The
blocking ``read_line`` calls run on a dedicated single-thread executor so a
quiet pipe never ties up the event loop or the default thread pool.  Decoded
envelopes are handed to an async handler one at a time, in arrival order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor
from enum import StrEnum
from typing import TYPE_CHECKING

from pipemcp.ipc.constants import DEFAULT_FIFO_MODE, DEFAULT_IDLE_POLL_INTERVAL_SECONDS
from pipemcp.ipc.contracts import decode_request, decode_response
from pipemcp.ipc.errors import (
    EnvelopeDecodeError,
    MalformedRecordError,
    PipeClosedError,
    PipeNotOpenError,
    PipeReadError,
)
from pipemcp.ipc.fifo import FifoTransport

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from pipemcp.ipc.contracts import RequestEnvelope, ResponseEnvelope

logger = logging.getLogger(__name__)


class ListenerState(StrEnum):
    IDLE = "idle"
    OPEN = "open"
    READING = "reading"
    STOPPED = "stopped"


class EnvelopeListener[EnvelopeT]:
    """Reads newline-delimited envelopes from a FIFO and dispatches them.

    Usage::

        listener = RequestListener(path)
        await listener.open()
        await listener.start_reading(handle)
        ...
        await listener.close()
    """

    def __init__(
        self,
        transport: FifoTransport,
        decode: Callable[[str], EnvelopeT],
        *,
        name: str = "listener",
        hold_open: bool = True,
        idle_poll_interval: float = DEFAULT_IDLE_POLL_INTERVAL_SECONDS,
        on_decode_error: Callable[[EnvelopeDecodeError], None] | None = None,
    ) -> None:
        self._transport = transport
        self._decode = decode
        self._name = name
        self._hold_open = hold_open
        self._idle_poll_interval = idle_poll_interval
        self._on_decode_error = on_decode_error
        self._state = ListenerState.IDLE
        self._executor: ThreadPoolExecutor | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopped = asyncio.Event()

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def path(self) -> Path:
        """Path of the FIFO this listener reads."""
        return self._transport.path

    @property
    def is_reading(self) -> bool:
        return self._state is ListenerState.READING

    async def open(self) -> None:
        """Create (if needed) and open the reader end of the FIFO."""
        if self._state is not ListenerState.IDLE:
            if self._state is ListenerState.STOPPED:
                msg = f"{self._name} on {self.path} is stopped"
                raise RuntimeError(msg)
            return
        self._transport.ensure()
        self._transport.open_for_reading(hold_open=self._hold_open)
        self._state = ListenerState.OPEN
        logger.info("%s listening on %s", self._name, self.path)

    async def start_reading(self, handler: Callable[[EnvelopeT], Awaitable[None]]) -> None:
        """Start the background read loop; a no-op when already reading."""
        if self._state is ListenerState.READING:
            return
        if self._state is ListenerState.IDLE:
            await self.open()
        if self._state is ListenerState.STOPPED:
            msg = f"{self._name} on {self.path} is stopped"
            raise RuntimeError(msg)

        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"pipemcp-{self._name}",
        )
        self._stopped.clear()
        self._state = ListenerState.READING
        self._task = asyncio.create_task(
            self._read_loop(handler),
            name=f"pipemcp-{self._name}",
        )

    async def stop_reading(self) -> None:
        """Stop the read loop and close the transport.  Idempotent."""
        if self._state is ListenerState.STOPPED and self._task is None:
            return
        self._state = ListenerState.STOPPED
        # Closing the transport wakes a read blocked in the worker thread.
        self._transport.close()

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._shutdown_executor()
        self._stopped.set()

    async def close(self) -> None:
        await self.stop_reading()

    async def wait_stopped(self) -> None:
        """Block until the read loop has ended."""
        if self._state is ListenerState.STOPPED and self._task is None:
            return
        await self._stopped.wait()

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------

    async def _read_loop(self, handler: Callable[[EnvelopeT], Awaitable[None]]) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self._state is ListenerState.READING:
                try:
                    line = await loop.run_in_executor(self._executor, self._transport.read_line)
                except MalformedRecordError as exc:
                    self._report_decode_error(EnvelopeDecodeError(exc.preview, exc.detail))
                    continue
                except (PipeClosedError, PipeNotOpenError):
                    if self._state is ListenerState.READING:
                        logger.warning("%s: pipe %s closed under the reader", self._name, self.path)
                    break
                except PipeReadError as exc:
                    logger.error("%s: %s", self._name, exc)
                    break

                if line is None:
                    await asyncio.sleep(self._idle_poll_interval)
                    continue
                if not line.strip():
                    continue

                try:
                    envelope = self._decode(line)
                except EnvelopeDecodeError as exc:
                    self._report_decode_error(exc)
                    continue

                try:
                    await handler(envelope)
                except Exception:
                    logger.exception("%s: handler failed", self._name)
        finally:
            if self._state is not ListenerState.STOPPED:
                logger.info("%s on %s stopped", self._name, self.path)
            self._state = ListenerState.STOPPED
            self._transport.close()
            self._shutdown_executor()
            self._stopped.set()

    def _report_decode_error(self, exc: EnvelopeDecodeError) -> None:
        logger.warning(
            "%s: dropping undecodable line (%s): %.200r", self._name, exc.detail, exc.line
        )
        if self._on_decode_error is None:
            return
        try:
            self._on_decode_error(exc)
        except Exception:
            logger.exception("%s: decode error callback failed", self._name)

    def _shutdown_executor(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)


class RequestListener(EnvelopeListener["RequestEnvelope"]):
    """Host side: the single inbound request pipe shared by every helper."""

    def __init__(
        self,
        path: Path | str,
        *,
        mode: int = DEFAULT_FIFO_MODE,
        hold_open: bool = True,
        idle_poll_interval: float = DEFAULT_IDLE_POLL_INTERVAL_SECONDS,
        on_decode_error: Callable[[EnvelopeDecodeError], None] | None = None,
    ) -> None:
        super().__init__(
            FifoTransport(path, mode=mode),
            decode_request,
            name="request-listener",
            hold_open=hold_open,
            idle_poll_interval=idle_poll_interval,
            on_decode_error=on_decode_error,
        )


class ResponseReader(EnvelopeListener["ResponseEnvelope"]):
    """Helper side: this helper's private response pipe."""

    def __init__(
        self,
        path: Path | str,
        *,
        mode: int = DEFAULT_FIFO_MODE,
        hold_open: bool = True,
        idle_poll_interval: float = DEFAULT_IDLE_POLL_INTERVAL_SECONDS,
        on_decode_error: Callable[[EnvelopeDecodeError], None] | None = None,
    ) -> None:
        super().__init__(
            FifoTransport(path, mode=mode),
            decode_response,
            name="response-reader",
            hold_open=hold_open,
            idle_poll_interval=idle_poll_interval,
            on_decode_error=on_decode_error,
        )


__all__ = ["EnvelopeListener", "ListenerState", "RequestListener", "ResponseReader"]
