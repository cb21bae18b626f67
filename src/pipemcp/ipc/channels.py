"""Per-client outbound response channels on the host side.

Each helper owns a private response FIFO.  The host opens the writer end when
the helper sends ``initialize`` and closes it on ``deinitialize`` or after a
period without inbound traffic from that helper.  The channel map is only
touched from the event-loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pipemcp.ipc.constants import DEFAULT_FIFO_MODE
from pipemcp.ipc.contracts import encode_envelope
from pipemcp.ipc.errors import NoChannelForClientError
from pipemcp.ipc.fifo import FifoTransport, has_reader, remove_fifo

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from pipemcp.ipc.contracts import ResponseEnvelope

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Channel:
    client_id: str
    transport: FifoTransport
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    idle_timer: asyncio.TimerHandle | None = None

    def cancel_timer(self) -> None:
        if self.idle_timer is not None:
            self.idle_timer.cancel()
            self.idle_timer = None


class ResponseChannelRegistry:
    """Maps client ids to the writer end of their response pipe.

    Args:
        path_for_client: Returns the well-known response pipe path of a client.
        idle_timeout: Seconds without inbound traffic before a channel is torn
            down.  ``None`` or ``0`` disables the supervision.
        fifo_mode: Permission bits for pipes the registry has to create.
        remove_expired_pipes: Delete the pipe file of an expired channel once
            no helper is reading it.  A pipe with a live reader is kept so the
            channel can be reopened on the helper's next request.
    """

    def __init__(
        self,
        path_for_client: Callable[[str], Path],
        *,
        idle_timeout: float | None = None,
        fifo_mode: int = DEFAULT_FIFO_MODE,
        remove_expired_pipes: bool = True,
    ) -> None:
        self._path_for_client = path_for_client
        self._idle_timeout = idle_timeout or None
        self._fifo_mode = fifo_mode
        self._remove_expired_pipes = remove_expired_pipes
        self._channels: dict[str, _Channel] = {}
        self._closing: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._channels)

    def has_channel(self, client_id: str) -> bool:
        return client_id in self._channels

    def client_ids(self) -> list[str]:
        """Ids of every client with an open channel."""
        return list(self._channels)

    def path_for(self, client_id: str) -> Path:
        return self._path_for_client(client_id)

    async def route_initialize(self, client_id: str, *, create: bool = True) -> bool:
        """Open the response channel of *client_id*.

        Returns False when the client already has a channel.  Open failures
        (for example ``ENXIO`` when the helper is not reading yet) propagate
        and leave nothing registered.  With ``create=False`` a missing pipe
        raises ``PipeMissingError`` instead of being created.
        """
        if client_id in self._channels:
            logger.debug("Client %s already has a response channel", client_id)
            self.touch(client_id)
            return False

        transport = FifoTransport(
            self._path_for_client(client_id),
            mode=self._fifo_mode,
            create=create,
        )
        transport.open_for_writing()
        channel = _Channel(client_id=client_id, transport=transport)
        self._channels[client_id] = channel
        self._arm_timer(channel)
        logger.info("Opened response channel for client %s at %s", client_id, transport.path)
        return True

    async def route_deinitialize(self, client_id: str) -> bool:
        """Close and forget the channel of *client_id*; False when absent."""
        channel = self._channels.pop(client_id, None)
        if channel is None:
            logger.debug("No response channel to close for client %s", client_id)
            return False
        await self._close_channel(channel)
        logger.info("Closed response channel for client %s", client_id)
        return True

    async def send(self, client_id: str, response: ResponseEnvelope) -> None:
        """Write *response* to the channel of *client_id*.

        Raises:
            NoChannelForClientError: The client has no open channel.
            PipeWriteError: The write failed (usually the helper went away).
        """
        channel = self._channels.get(client_id)
        if channel is None:
            raise NoChannelForClientError(client_id)
        line = encode_envelope(response)
        async with channel.lock:
            await asyncio.to_thread(channel.transport.write, line)
        logger.debug("Sent %s for %s:%s", response.type, client_id, response.message_id)

    def touch(self, client_id: str) -> bool:
        """Restart the inactivity timer of *client_id*; False when absent."""
        channel = self._channels.get(client_id)
        if channel is None:
            return False
        self._arm_timer(channel)
        return True

    async def close_all(self) -> int:
        """Close every channel and return how many were open."""
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            await self._close_channel(channel)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        if channels:
            logger.info("Closed %d response channel(s)", len(channels))
        return len(channels)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _arm_timer(self, channel: _Channel) -> None:
        channel.cancel_timer()
        if self._idle_timeout is None:
            return
        loop = asyncio.get_running_loop()
        channel.idle_timer = loop.call_later(self._idle_timeout, self._expire, channel)

    def _expire(self, channel: _Channel) -> None:
        if self._channels.get(channel.client_id) is not channel:
            return
        del self._channels[channel.client_id]
        logger.info(
            "Response channel for client %s idle for %gs; closing",
            channel.client_id,
            self._idle_timeout,
        )
        task = asyncio.get_running_loop().create_task(
            self._close_channel(channel, remove_pipe=self._remove_expired_pipes),
        )
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_channel(self, channel: _Channel, *, remove_pipe: bool = False) -> None:
        channel.cancel_timer()
        # Wait for an in-flight write before releasing the descriptor.
        async with channel.lock:
            channel.transport.close()
        if not remove_pipe:
            return
        path = channel.transport.path
        if has_reader(path):
            logger.debug("Keeping pipe %s: client %s is still reading", path, channel.client_id)
            return
        try:
            remove_fifo(path)
        except OSError as exc:
            logger.warning("Could not remove stale pipe %s: %s", path, exc)


__all__ = ["ResponseChannelRegistry"]
