"""Tests for the background envelope read loops."""

from __future__ import annotations

import asyncio

import pytest

from pipemcp.ipc import fifo as fifo_module
from pipemcp.ipc.contracts import (
    CallToolRequest,
    InitializeRequest,
    ListToolsRequest,
    ResultResponse,
)
from pipemcp.ipc.errors import EnvelopeDecodeError
from pipemcp.ipc.listener import ListenerState, RequestListener, ResponseReader
from tests.helpers import open_writer, wait_until

pytestmark = pytest.mark.unit


@pytest.fixture
async def listener(pipe_dir):
    instance = RequestListener(pipe_dir / "requests.pipe", idle_poll_interval=0.01)
    yield instance
    await instance.close()


def _collector():
    received: list[object] = []

    async def handler(envelope: object) -> None:
        received.append(envelope)

    return received, handler


class TestDispatch:
    async def test_envelopes_reach_handler_in_order(self, listener):
        received, handler = _collector()
        await listener.start_reading(handler)
        requests = [
            InitializeRequest(client_id="h1"),
            ListToolsRequest(client_id="h1", message_id="m1"),
            CallToolRequest(client_id="h1", message_id="m2", tool_name="helloWorld"),
        ]

        with open_writer(listener.path) as writer:
            for request in requests:
                writer.write(request.to_wire())
            await wait_until(lambda: len(received) == 3, description="three requests")

        assert received == requests

    async def test_invalid_line_is_reported_and_skipped(self, pipe_dir):
        errors = []
        listener = RequestListener(
            pipe_dir / "requests.pipe",
            idle_poll_interval=0.01,
            on_decode_error=errors.append,
        )
        received, handler = _collector()
        try:
            await listener.start_reading(handler)
            with open_writer(listener.path) as writer:
                writer.write("not json")
                writer.write(InitializeRequest(client_id="h1").to_wire())
                await wait_until(lambda: len(received) == 1, description="valid request")
        finally:
            await listener.close()

        assert len(errors) == 1
        assert errors[0].line == "not json"
        assert received == [InitializeRequest(client_id="h1")]

    async def test_malformed_records_are_reported_and_skipped(self, pipe_dir, monkeypatch):
        monkeypatch.setattr(fifo_module, "MAX_LINE_BYTES", 256)
        errors = []
        listener = RequestListener(
            pipe_dir / "requests.pipe",
            idle_poll_interval=0.01,
            on_decode_error=errors.append,
        )
        received, handler = _collector()
        try:
            await listener.start_reading(handler)
            with open_writer(listener.path) as writer:
                writer.write("z" * 1024)
                writer.write(b"\xff\xfe{}")
                writer.write(InitializeRequest(client_id="h1").to_wire())
                await wait_until(lambda: len(received) == 1, description="valid request")
        finally:
            await listener.close()

        assert [type(exc) for exc in errors] == [EnvelopeDecodeError, EnvelopeDecodeError]
        assert "exceeds 256 bytes" in errors[0].detail
        assert "invalid UTF-8" in errors[1].detail
        assert received == [InitializeRequest(client_id="h1")]

    async def test_failing_decode_callback_does_not_stop_reading(self, pipe_dir):
        def explode(exc):
            raise RuntimeError("callback broke")

        listener = RequestListener(
            pipe_dir / "requests.pipe",
            idle_poll_interval=0.01,
            on_decode_error=explode,
        )
        received, handler = _collector()
        try:
            await listener.start_reading(handler)
            with open_writer(listener.path) as writer:
                writer.write("{}")
                writer.write(InitializeRequest(client_id="h1").to_wire())
                await wait_until(lambda: len(received) == 1, description="valid request")
        finally:
            await listener.close()

    async def test_blank_lines_are_skipped(self, listener):
        received, handler = _collector()
        await listener.start_reading(handler)

        with open_writer(listener.path) as writer:
            writer.write("")
            writer.write("   ")
            writer.write(InitializeRequest(client_id="h1").to_wire())
            await wait_until(lambda: len(received) == 1, description="request")

        assert listener.is_reading

    async def test_handler_exception_does_not_stop_reading(self, listener):
        received: list[object] = []

        async def handler(envelope: object) -> None:
            received.append(envelope)
            if len(received) == 1:
                raise RuntimeError("handler broke")

        await listener.start_reading(handler)
        with open_writer(listener.path) as writer:
            writer.write(InitializeRequest(client_id="h1").to_wire())
            writer.write(InitializeRequest(client_id="h2").to_wire())
            await wait_until(lambda: len(received) == 2, description="both requests")

        assert listener.is_reading

    async def test_keeps_reading_across_writers(self, pipe_dir):
        listener = RequestListener(
            pipe_dir / "requests.pipe",
            hold_open=False,
            idle_poll_interval=0.01,
        )
        received, handler = _collector()
        try:
            await listener.start_reading(handler)
            with open_writer(listener.path) as writer:
                writer.write(InitializeRequest(client_id="h1").to_wire())
            await wait_until(lambda: len(received) == 1, description="first writer")
            # The first writer is gone; the loop sees end-of-stream and polls.
            await asyncio.sleep(0.05)

            with open_writer(listener.path) as writer:
                writer.write(InitializeRequest(client_id="h2").to_wire())
            await wait_until(lambda: len(received) == 2, description="second writer")
        finally:
            await listener.close()

        assert [envelope.client_id for envelope in received] == ["h1", "h2"]

    async def test_response_reader_decodes_responses(self, pipe_dir):
        reader = ResponseReader(pipe_dir / "responses.pipe", idle_poll_interval=0.01)
        received, handler = _collector()
        try:
            await reader.start_reading(handler)
            with open_writer(reader.path) as writer:
                writer.write(ResultResponse(client_id="h1", message_id="m1", payload=3).to_wire())
                await wait_until(lambda: len(received) == 1, description="response")
        finally:
            await reader.close()

        assert received == [ResultResponse(client_id="h1", message_id="m1", payload=3)]


class TestLifecycle:
    async def test_state_transitions(self, listener):
        _, handler = _collector()
        assert listener.state is ListenerState.IDLE

        await listener.open()
        assert listener.state is ListenerState.OPEN
        assert listener.path.exists()

        await listener.start_reading(handler)
        assert listener.state is ListenerState.READING

        await listener.stop_reading()
        assert listener.state is ListenerState.STOPPED

    async def test_start_reading_twice_is_a_noop(self, listener):
        _, handler = _collector()
        await listener.start_reading(handler)
        task = listener._task

        await listener.start_reading(handler)

        assert listener._task is task

    async def test_stop_is_idempotent_and_releases_waiters(self, listener):
        _, handler = _collector()
        await listener.start_reading(handler)

        await listener.stop_reading()
        await listener.stop_reading()

        await asyncio.wait_for(listener.wait_stopped(), 1.0)
        assert not listener.is_reading

    async def test_cannot_restart_after_stop(self, listener):
        _, handler = _collector()
        await listener.start_reading(handler)
        await listener.stop_reading()

        with pytest.raises(RuntimeError, match="stopped"):
            await listener.start_reading(handler)
        with pytest.raises(RuntimeError, match="stopped"):
            await listener.open()
