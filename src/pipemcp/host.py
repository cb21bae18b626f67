"""Host process: owns the request listener and the per-helper response channels."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import os
from typing import TYPE_CHECKING

from pipemcp.config import PipeMCPConfig
from pipemcp.ipc.channels import ResponseChannelRegistry
from pipemcp.ipc.contracts import DeinitializeRequest, ErrorResponse, InitializeRequest
from pipemcp.ipc.errors import (
    NoChannelForClientError,
    PipeMCPError,
    PipeNotOpenError,
    PipeWriteError,
)
from pipemcp.ipc.fifo import remove_fifo
from pipemcp.ipc.listener import RequestListener
from pipemcp.paths import get_pipe_dir, get_request_pipe_path, get_response_pipe_path
from pipemcp.tools import build_greeting_tools

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from pipemcp.ipc.contracts import CorrelatedRequest, RequestEnvelope, ResponseEnvelope
    from pipemcp.ipc.errors import EnvelopeDecodeError

    type RequestHandler = Callable[[CorrelatedRequest], Awaitable[ResponseEnvelope | None]]

logger = logging.getLogger(__name__)


class HostStatus(enum.Enum):
    """State machine for the host lifecycle."""

    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class PipeHost:
    """Serves tool requests from any number of helpers over named pipes.

    Owns:
    - ``RequestListener`` on the shared inbound pipe
    - ``ResponseChannelRegistry`` with one outbound pipe per helper
    - the request handler (the greeting tools by default)

    Usage::

        host = PipeHost()
        await host.start()
        await host.wait_until_stopped()
    """

    def __init__(
        self,
        *,
        config: PipeMCPConfig | None = None,
        handler: RequestHandler | None = None,
        remove_request_pipe: bool = True,
    ) -> None:
        self._config = config or PipeMCPConfig()
        self._handler = handler or build_greeting_tools().handle_request
        self._remove_request_pipe = remove_request_pipe
        self._status = HostStatus.STOPPED
        self._listener: RequestListener | None = None
        self._channels: ResponseChannelRegistry | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._decode_errors = 0

    @property
    def status(self) -> HostStatus:
        """Current host lifecycle state."""
        return self._status

    @property
    def config(self) -> PipeMCPConfig:
        return self._config

    @property
    def request_path(self) -> Path:
        """Path of the shared inbound request pipe."""
        return get_request_pipe_path(self._config)

    @property
    def channels(self) -> ResponseChannelRegistry | None:
        """The response channel registry, available after start."""
        return self._channels

    @property
    def decode_error_count(self) -> int:
        """Number of inbound lines that were not valid request envelopes."""
        return self._decode_errors

    def response_path_for(self, client_id: str) -> Path:
        return get_response_pipe_path(self._config, client_id)

    async def start(self) -> None:
        """Create the pipe directory, open the request pipe and start reading."""
        if self._status != HostStatus.STOPPED:
            msg = f"Cannot start host in state {self._status.value}"
            raise RuntimeError(msg)

        self._set_status(HostStatus.STARTING)
        try:
            get_pipe_dir(self._config).mkdir(parents=True, exist_ok=True)
            idle_timeout = self._config.timeouts.channel_idle_timeout_seconds
            self._channels = ResponseChannelRegistry(
                self.response_path_for,
                idle_timeout=idle_timeout if idle_timeout > 0 else None,
                fifo_mode=self._config.pipes.fifo_mode,
            )
            self._listener = RequestListener(
                self.request_path,
                mode=self._config.pipes.fifo_mode,
                idle_poll_interval=self._config.timeouts.idle_poll_interval_seconds,
                on_decode_error=self._on_decode_error,
            )
            await self._listener.open()
            await self._listener.start_reading(self.handle_request)
            self._stop_event.clear()
            self._watch_task = asyncio.create_task(
                self._watch_listener(self._listener),
                name="pipemcp-host-watch",
            )
            self._set_status(HostStatus.RUNNING)
            logger.info("Host running: requests=%s pid=%d", self.request_path, os.getpid())
        except Exception:
            if self._listener is not None:
                await self._listener.close()
                self._listener = None
            self._channels = None
            self._set_status(HostStatus.STOPPED)
            raise

    async def stop(self, *, reason: str = "shutdown requested") -> None:
        """Stop reading, close every helper channel and remove the request pipe."""
        if self._status in (HostStatus.DRAINING, HostStatus.STOPPED):
            return

        self._set_status(HostStatus.DRAINING)
        watch_task, self._watch_task = self._watch_task, None
        if watch_task is not None and watch_task is not asyncio.current_task():
            watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watch_task

        if self._listener is not None:
            await self._listener.close()
            self._listener = None

        if self._channels is not None:
            await self._channels.close_all()
            self._channels = None

        if self._remove_request_pipe:
            remove_fifo(self.request_path)

        self._set_status(HostStatus.STOPPED)
        self._stop_event.set()
        logger.info("Host stopped: %s", reason)

    async def wait_until_stopped(self) -> None:
        """Block until the host has fully stopped."""
        await self._stop_event.wait()

    async def handle_request(self, request: RequestEnvelope) -> None:
        """Route one inbound envelope.

        Lifecycle signals open or close the sender's channel; every other
        request goes to the handler and its response back to the sender.  A
        sender whose channel expired while its pipe is still being read gets
        the channel reopened first.
        """
        channels = self._channels
        if channels is None:
            logger.warning("Dropping %s request: host is not running", request.type)
            return
        channels.touch(request.client_id)

        match request:
            case InitializeRequest(client_id=client_id):
                try:
                    await channels.route_initialize(client_id)
                except PipeMCPError as exc:
                    logger.error("Could not open response channel for %s: %s", client_id, exc)
            case DeinitializeRequest(client_id=client_id):
                await channels.route_deinitialize(client_id)
            case _:
                if not channels.has_channel(request.client_id):
                    await self._reopen_channel(channels, request.client_id)
                await self._dispatch(channels, request)

    async def _dispatch(
        self,
        channels: ResponseChannelRegistry,
        request: CorrelatedRequest,
    ) -> None:
        try:
            response = await self._handler(request)
        except Exception as exc:
            logger.exception("Handler failed for %s %s", request.type, request.message_id)
            response = ErrorResponse.failure(request, f"Internal error: {exc}")
        if response is None:
            return

        client_id = response.client_id
        try:
            await channels.send(client_id, response)
        except NoChannelForClientError:
            logger.warning(
                "Dropping %s response %s: no channel for client %s",
                response.type,
                response.message_id,
                client_id,
            )
        except (PipeWriteError, PipeNotOpenError) as exc:
            logger.error("Response channel for %s failed: %s", client_id, exc)
            await channels.route_deinitialize(client_id)

    async def _reopen_channel(self, channels: ResponseChannelRegistry, client_id: str) -> None:
        try:
            await channels.route_initialize(client_id, create=False)
        except PipeMCPError as exc:
            logger.debug("No response channel to reopen for %s: %s", client_id, exc)
        else:
            logger.info("Reopened response channel for client %s", client_id)

    def _on_decode_error(self, exc: EnvelopeDecodeError) -> None:
        self._decode_errors += 1

    async def _watch_listener(self, listener: RequestListener) -> None:
        await listener.wait_stopped()
        if self._status is HostStatus.RUNNING:
            await self.stop(reason="request pipe closed")

    def _set_status(self, new_status: HostStatus) -> None:
        old = self._status
        self._status = new_status
        logger.debug("Host status: %s -> %s", old.value, new_status.value)


__all__ = ["HostStatus", "PipeHost"]
