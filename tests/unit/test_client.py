"""Tests for the helper-side pipe client against a scripted host."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pytest

from pipemcp.ipc.client import PipeClient
from pipemcp.ipc.contracts import (
    CallToolRequest,
    DeinitializeRequest,
    ErrorResponse,
    InitializeRequest,
    ListToolsRequest,
    ResultResponse,
)
from pipemcp.ipc.errors import (
    CallCancelledError,
    CallTimeoutError,
    PipeMissingError,
    PipeNotOpenError,
    ToolCallError,
)
from pipemcp.ipc.listener import RequestListener
from pipemcp.paths import get_request_pipe_path, get_response_pipe_path
from tests.helpers import open_writer, wait_until

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from pipemcp.ipc.contracts import CorrelatedRequest, RequestEnvelope, ResponseEnvelope
    from pipemcp.ipc.fifo import FifoTransport

pytestmark = pytest.mark.unit


def _echo(request: CorrelatedRequest) -> ResponseEnvelope | None:
    if isinstance(request, CallToolRequest):
        return ResultResponse.success(request, {"tool": request.tool_name, **request.arguments})
    return ResultResponse.success(request, [{"name": "echo", "description": "Echo"}])


class ScriptedHost:
    """Minimal host: opens response pipes on initialize and answers via ``reply``."""

    def __init__(self, request_path: Path, response_path_for: Callable[[str], Path]) -> None:
        self.listener = RequestListener(request_path, idle_poll_interval=0.01)
        self.response_path_for = response_path_for
        self.reply: Callable[[CorrelatedRequest], ResponseEnvelope | None] = _echo
        self.received: list[RequestEnvelope] = []
        self._writers: dict[str, FifoTransport] = {}

    async def start(self) -> None:
        await self.listener.start_reading(self._handle)

    async def stop(self) -> None:
        await self.listener.close()
        for writer in self._writers.values():
            writer.close()
        self._writers.clear()

    async def _handle(self, request: RequestEnvelope) -> None:
        self.received.append(request)
        match request:
            case InitializeRequest(client_id=client_id):
                self._writers[client_id] = open_writer(self.response_path_for(client_id))
            case DeinitializeRequest(client_id=client_id):
                writer = self._writers.pop(client_id, None)
                if writer is not None:
                    writer.close()
            case _:
                response = self.reply(request)
                if response is not None:
                    self._writers[request.client_id].write(response.to_wire())


@pytest.fixture
async def host(config):
    scripted = ScriptedHost(
        get_request_pipe_path(config),
        lambda client_id: get_response_pipe_path(config, client_id),
    )
    await scripted.start()
    yield scripted
    await scripted.stop()


@pytest.fixture
async def client(config, host):
    instance = PipeClient.from_config(config, client_id="helper-1")
    await instance.connect()
    yield instance
    await instance.close()


class TestConnect:
    async def test_connect_announces_helper(self, client, host):
        await wait_until(lambda: len(host.received) == 1, description="initialize")

        assert host.received == [InitializeRequest(client_id="helper-1")]
        assert client.is_connected

    async def test_connect_without_host(self, config):
        client = PipeClient.from_config(config, client_id="orphan")

        with pytest.raises(PipeMissingError):
            await client.connect()

        assert not client.is_connected
        await client.close()

    async def test_from_config_uses_configured_paths(self, config):
        client = PipeClient.from_config(config, client_id="helper-9")

        assert client.request_path == get_request_pipe_path(config)
        assert client.response_path == get_response_pipe_path(config, "helper-9")
        assert client.response_path.name == "host_to_helper_helper-9.pipe"

    def test_rejects_client_id_unusable_as_file_name(self, pipe_dir):
        with pytest.raises(ValueError, match="file-name component"):
            PipeClient(pipe_dir / "req.pipe", pipe_dir / "resp.pipe", client_id="../escape")

    def test_generates_client_id(self, pipe_dir):
        client = PipeClient(pipe_dir / "req.pipe", pipe_dir / "resp.pipe")

        assert client.client_id


class TestCall:
    async def test_call_returns_payload(self, client):
        result = await client.call("echo", {"name": "Ada"})

        assert result == {"tool": "echo", "name": "Ada"}
        assert client.pending_count == 0

    async def test_concurrent_calls_get_their_own_results(self, client):
        results = await asyncio.gather(*(client.call("echo", {"n": i}) for i in range(20)))

        assert [result["n"] for result in results] == list(range(20))

    async def test_error_response_raises_tool_call_error(self, client, host):
        host.reply = lambda request: ErrorResponse.failure(request, "name is required")

        with pytest.raises(ToolCallError) as exc_info:
            await client.call("helloPerson", {})

        assert exc_info.value.tool_name == "helloPerson"
        assert exc_info.value.remote_message == "name is required"
        assert exc_info.value.code == "TOOL_ERROR"

    async def test_call_times_out(self, client, host):
        host.reply = lambda request: None

        with pytest.raises(CallTimeoutError) as exc_info:
            await client.call("echo", timeout=0.1)

        assert exc_info.value.label == "echo"
        assert client.pending_count == 0

    async def test_cancel_in_flight_call(self, client, host):
        host.reply = lambda request: None
        call = asyncio.create_task(client.call("echo", message_id="m-cancel"))
        await wait_until(lambda: client.pending_count == 1, description="pending call")

        assert client.cancel("m-cancel") is True

        with pytest.raises(CallCancelledError):
            await call

    async def test_large_request_warns(self, client, caplog):
        with caplog.at_level(logging.WARNING, logger="pipemcp.ipc.client"):
            result = await client.call("echo", {"blob": "x" * 8192})

        assert result["blob"] == "x" * 8192
        assert "may interleave" in caplog.text

    async def test_call_before_connect(self, config):
        client = PipeClient.from_config(config, client_id="early")

        with pytest.raises(PipeNotOpenError):
            await client.call("echo")

        assert client.pending_count == 0


class TestListTools:
    async def test_list_tools(self, client, host):
        tools = await client.list_tools()

        assert [tool.name for tool in tools] == ["echo"]
        assert tools[0].input_schema == {"type": "object", "properties": {}}
        assert isinstance(host.received[-1], ListToolsRequest)

    async def test_unexpected_payload_yields_no_tools(self, client, host):
        host.reply = lambda request: ResultResponse.success(request, "not a list")

        assert await client.list_tools() == []


class TestClose:
    async def test_close_sends_deinitialize_and_removes_pipe(self, config, host):
        client = PipeClient.from_config(config, client_id="helper-2")
        await client.connect()
        response_path = client.response_path
        assert response_path.exists()

        await client.close()

        await wait_until(
            lambda: DeinitializeRequest(client_id="helper-2") in host.received,
            description="deinitialize",
        )
        assert not response_path.exists()
        assert not client.is_connected

    async def test_close_cancels_pending_calls(self, config, host):
        host.reply = lambda request: None
        client = PipeClient.from_config(config, client_id="helper-3")
        await client.connect()
        call = asyncio.create_task(client.call("echo"))
        await wait_until(lambda: client.pending_count == 1, description="pending call")

        await client.close()

        with pytest.raises(CallCancelledError):
            await call

    async def test_close_is_idempotent_and_final(self, config, host):
        client = PipeClient.from_config(config, client_id="helper-4")
        async with client:
            pass

        await client.close()

        with pytest.raises(RuntimeError, match="closed"):
            await client.connect()
