"""Helper-side facade: call host tools over the pipe pair."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pipemcp.ipc.constants import (
    ATOMIC_WRITE_BYTES,
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_FIFO_MODE,
    DEFAULT_IDLE_POLL_INTERVAL_SECONDS,
)
from pipemcp.ipc.contracts import (
    CallToolRequest,
    DeinitializeRequest,
    InitializeRequest,
    ListToolsRequest,
    ToolMetadata,
    encode_envelope,
    new_client_id,
    new_message_id,
    validate_client_id,
)
from pipemcp.ipc.correlator import ResponseCorrelator
from pipemcp.ipc.errors import PipeMCPError, PipeNotOpenError, RemoteCallError, ToolCallError
from pipemcp.ipc.fifo import FifoTransport, remove_fifo
from pipemcp.ipc.listener import ResponseReader

if TYPE_CHECKING:
    from pydantic import JsonValue

    from pipemcp.config import PipeMCPConfig
    from pipemcp.ipc.contracts import (
        CorrelatedRequest,
        RequestEnvelope,
        ResponseEnvelope,
        ResultResponse,
    )

logger = logging.getLogger(__name__)


class PipeClient:
    """Async client for one helper process.

    The client reads responses from its private pipe, writes requests to the
    host's shared request pipe, and matches the two through a
    :class:`~pipemcp.ipc.correlator.ResponseCorrelator`.

    Usage::

        async with PipeClient(request_path, response_path) as client:
            greeting = await client.call("helloPerson", {"name": "Ada"})
    """

    def __init__(
        self,
        request_path: Path | str,
        response_path: Path | str,
        *,
        client_id: str | None = None,
        timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        list_tools_timeout: float | None = None,
        fifo_mode: int = DEFAULT_FIFO_MODE,
        idle_poll_interval: float = DEFAULT_IDLE_POLL_INTERVAL_SECONDS,
        remove_response_pipe: bool = True,
    ) -> None:
        self._client_id = validate_client_id(client_id or new_client_id())
        self._request_path = Path(request_path)
        self._response_path = Path(response_path)
        self._timeout = timeout
        self._list_tools_timeout = timeout if list_tools_timeout is None else list_tools_timeout
        self._fifo_mode = fifo_mode
        self._idle_poll_interval = idle_poll_interval
        self._remove_response_pipe = remove_response_pipe
        self._correlator = ResponseCorrelator(default_timeout=timeout)
        self._reader: ResponseReader | None = None
        self._writer: FifoTransport | None = None
        self._write_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, config: PipeMCPConfig, *, client_id: str | None = None) -> PipeClient:
        """Build a client for the pipe layout described by *config*."""
        from pipemcp.paths import get_request_pipe_path, get_response_pipe_path

        resolved_id = client_id or new_client_id()
        return cls(
            get_request_pipe_path(config),
            get_response_pipe_path(config, resolved_id),
            client_id=resolved_id,
            timeout=config.timeouts.call_timeout_seconds,
            list_tools_timeout=config.timeouts.list_tools_timeout_seconds,
            fifo_mode=config.pipes.fifo_mode,
            idle_poll_interval=config.timeouts.idle_poll_interval_seconds,
        )

    async def __aenter__(self) -> PipeClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def response_path(self) -> Path:
        return self._response_path

    @property
    def request_path(self) -> Path:
        return self._request_path

    @property
    def is_connected(self) -> bool:
        """Whether both pipes are open and the client has not been closed."""
        return (
            not self._closed
            and self._writer is not None
            and self._writer.is_open
            and self._reader is not None
            and self._reader.is_reading
        )

    @property
    def pending_count(self) -> int:
        return self._correlator.pending_count

    async def connect(self) -> None:
        """Open both pipes and announce this helper to the host.

        The response pipe is opened first so the host can open its writer end
        when the ``initialize`` signal arrives.
        """
        if self._closed:
            msg = "Client is closed"
            raise RuntimeError(msg)
        if self.is_connected:
            return

        reader = ResponseReader(
            self._response_path,
            mode=self._fifo_mode,
            idle_poll_interval=self._idle_poll_interval,
        )
        await reader.open()
        await reader.start_reading(self._on_response)

        writer = FifoTransport(self._request_path, mode=self._fifo_mode, create=False)
        try:
            writer.open_for_writing()
        except PipeMCPError:
            await reader.close()
            raise
        self._reader, self._writer = reader, writer
        logger.debug(
            "Client %s connected: requests=%s responses=%s",
            self._client_id,
            self._request_path,
            self._response_path,
        )
        await self.initialize()

    async def initialize(self) -> None:
        """Ask the host to open this helper's response channel."""
        await self._send(InitializeRequest(client_id=self._client_id))

    async def deinitialize(self) -> None:
        """Ask the host to close this helper's response channel."""
        await self._send(DeinitializeRequest(client_id=self._client_id))

    async def call(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
        *,
        message_id: str | None = None,
    ) -> JsonValue:
        """Invoke *tool_name* on the host and return its result payload.

        Raises:
            ToolCallError: The host answered with an error envelope.
            CallTimeoutError: No response within the timeout.
            CallCancelledError: The call was cancelled locally.
        """
        request = CallToolRequest(
            client_id=self._client_id,
            message_id=message_id or new_message_id(),
            tool_name=tool_name,
            arguments=arguments or {},
        )
        try:
            response = await self._request(request, timeout, label=tool_name)
        except RemoteCallError as exc:
            raise ToolCallError(tool_name, exc.remote_message) from exc
        return response.payload

    async def list_tools(self, timeout: float | None = None) -> list[ToolMetadata]:
        """Fetch the metadata of every tool the host serves."""
        request = ListToolsRequest(client_id=self._client_id)
        effective_timeout = self._list_tools_timeout if timeout is None else timeout
        response = await self._request(request, effective_timeout, label="list_tools")
        payload = response.payload if isinstance(response.payload, list) else []
        return [ToolMetadata.model_validate(item) for item in payload]

    def cancel(self, message_id: str) -> bool:
        """Cancel an in-flight call started with ``message_id``."""
        return self._correlator.cancel(self._client_id, message_id)

    async def close(self) -> None:
        """Leave the host, stop reading and release both pipes.  Idempotent.

        Calls still waiting for a response fail with ``CallCancelledError``.
        """
        if self._closed:
            return
        if self._writer is not None and self._writer.is_open:
            try:
                await self.deinitialize()
            except PipeMCPError as exc:
                logger.debug("Client %s could not deinitialize: %s", self._client_id, exc)
        self._closed = True

        cancelled = self._correlator.cancel_all()
        if cancelled:
            logger.info("Client %s cancelled %d pending call(s)", self._client_id, cancelled)
        if self._reader is not None:
            await self._reader.close()
            self._reader = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        if self._remove_response_pipe:
            remove_fifo(self._response_path)
        logger.debug("Client %s closed", self._client_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(
        self,
        request: CorrelatedRequest,
        timeout: float | None,
        *,
        label: str,
    ) -> ResultResponse:
        # Register before sending so a fast response cannot arrive unmatched.
        pending = self._correlator.register(
            self._client_id,
            request.message_id,
            self._timeout if timeout is None else timeout,
            label=label,
        )
        try:
            await self._send(request)
        except BaseException:
            self._correlator.discard(pending)
            raise
        return await self._correlator.wait(pending)

    async def _send(self, request: RequestEnvelope) -> None:
        writer = self._writer
        if self._closed or writer is None:
            raise PipeNotOpenError(self._request_path)
        line = encode_envelope(request)
        size = len(line.encode("utf-8")) + 1
        if size > ATOMIC_WRITE_BYTES:
            logger.warning(
                "Request %s is %d bytes; writes above %d bytes may interleave with other helpers",
                request.type,
                size,
                ATOMIC_WRITE_BYTES,
            )
        async with self._write_lock:
            await asyncio.to_thread(writer.write, line)

    async def _on_response(self, response: ResponseEnvelope) -> None:
        self._correlator.resolve(response)


__all__ = ["PipeClient"]
