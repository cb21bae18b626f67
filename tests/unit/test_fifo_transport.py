"""Tests for the named-pipe transport."""

from __future__ import annotations

import asyncio
import errno
import os
import stat

import pytest

from pipemcp.ipc import fifo as fifo_module
from pipemcp.ipc.errors import (
    MalformedRecordError,
    NotAPipeError,
    PipeClosedError,
    PipeMissingError,
    PipeNotOpenError,
    PipeOpenError,
)
from pipemcp.ipc.fifo import FifoTransport, ensure_fifo, is_fifo, remove_fifo

pytestmark = pytest.mark.unit


class TestEnsureFifo:
    def test_creates_fifo_with_requested_mode_despite_umask(self, pipe_dir):
        path = pipe_dir / "requests.pipe"
        previous = os.umask(0o077)
        try:
            ensure_fifo(path, 0o666)
        finally:
            os.umask(previous)

        info = os.stat(path)
        assert stat.S_ISFIFO(info.st_mode)
        assert stat.S_IMODE(info.st_mode) == 0o666

    def test_existing_fifo_is_kept(self, pipe_dir):
        path = pipe_dir / "requests.pipe"
        ensure_fifo(path)
        inode = os.stat(path).st_ino

        ensure_fifo(path)

        assert os.stat(path).st_ino == inode

    def test_regular_file_is_replaced(self, pipe_dir):
        path = pipe_dir / "requests.pipe"
        path.write_text("stale")

        ensure_fifo(path)

        assert is_fifo(path)

    def test_directory_is_replaced(self, pipe_dir):
        path = pipe_dir / "requests.pipe"
        (path / "nested").mkdir(parents=True)

        ensure_fifo(path)

        assert is_fifo(path)

    def test_creates_missing_parent_directory(self, pipe_dir):
        path = pipe_dir / "sub" / "requests.pipe"

        ensure_fifo(path)

        assert is_fifo(path)


class TestRemoveFifo:
    def test_removes_fifo(self, pipe_dir):
        path = ensure_fifo(pipe_dir / "gone.pipe")

        assert remove_fifo(path) is True
        assert not path.exists()

    def test_leaves_other_files_alone(self, pipe_dir):
        path = pipe_dir / "notes.txt"
        path.write_text("keep me")

        assert remove_fifo(path) is False
        assert path.read_text() == "keep me"

    def test_missing_path(self, pipe_dir):
        assert remove_fifo(pipe_dir / "never.pipe") is False


class TestOpen:
    def test_writer_without_reader_fails_with_enxio(self, pipe_dir):
        transport = FifoTransport(pipe_dir / "lonely.pipe")

        with pytest.raises(PipeOpenError) as exc_info:
            transport.open_for_writing()

        assert exc_info.value.errno == errno.ENXIO
        assert exc_info.value.code == "OPEN_FAILED"
        assert not transport.is_open

    def test_reader_opens_without_writer(self, pipe_dir):
        with FifoTransport(pipe_dir / "quiet.pipe") as reader:
            reader.open_for_reading()
            assert reader.is_open
            assert reader.role == "reader"

    def test_missing_path_without_create(self, pipe_dir):
        transport = FifoTransport(pipe_dir / "missing.pipe", create=False)

        with pytest.raises(PipeMissingError):
            transport.open_for_writing()

    def test_regular_file_without_create(self, pipe_dir):
        path = pipe_dir / "plain.pipe"
        path.write_text("")
        transport = FifoTransport(path, create=False)

        with pytest.raises(NotAPipeError):
            transport.open_for_reading()

    def test_open_twice_raises(self, pipe_dir):
        with FifoTransport(pipe_dir / "twice.pipe") as reader:
            reader.open_for_reading()
            with pytest.raises(RuntimeError, match="already open"):
                reader.open_for_reading()


class TestReadWrite:
    def test_lines_arrive_in_order_without_delimiters(self, pipe_dir):
        path = pipe_dir / "lines.pipe"
        with FifoTransport(path) as reader:
            reader.open_for_reading(hold_open=True)
            with FifoTransport(path, create=False) as writer:
                writer.open_for_writing()
                writer.write("hello")
                writer.write("world\n")
                writer.write(b"bytes too")

            assert reader.read_line() == "hello"
            assert reader.read_line() == "world"
            assert reader.read_line() == "bytes too"

    def test_end_of_stream_flushes_trailing_fragment(self, pipe_dir):
        path = pipe_dir / "fragment.pipe"
        with FifoTransport(path) as reader:
            reader.open_for_reading(hold_open=False)
            fd = os.open(path, os.O_WRONLY)
            os.write(fd, b"first\npartial")
            os.close(fd)

            assert reader.read_line() == "first"
            assert reader.read_line() == "partial"
            assert reader.read_line() is None

    def test_invalid_utf8_record_is_rejected_and_reading_continues(self, pipe_dir):
        path = pipe_dir / "binary.pipe"
        with FifoTransport(path) as reader:
            reader.open_for_reading(hold_open=True)
            fd = os.open(path, os.O_WRONLY)
            os.write(fd, b"\xff\xfeabc\nnext\n")
            os.close(fd)

            with pytest.raises(MalformedRecordError, match="invalid UTF-8") as exc_info:
                reader.read_line()
            assert exc_info.value.code == "MALFORMED_RECORD"
            assert "abc" in exc_info.value.preview
            assert reader.read_line() == "next"

    def test_oversized_record_is_skipped_in_one_chunk(self, pipe_dir, monkeypatch):
        monkeypatch.setattr(fifo_module, "MAX_LINE_BYTES", 16)
        path = pipe_dir / "huge.pipe"
        with FifoTransport(path) as reader:
            reader.open_for_reading(hold_open=True)
            fd = os.open(path, os.O_WRONLY)
            os.write(fd, b"x" * 64 + b"\nafter\n")
            os.close(fd)

            with pytest.raises(MalformedRecordError, match="exceeds 16 bytes"):
                reader.read_line()
            assert reader.read_line() == "after"

    async def test_oversized_record_is_skipped_across_chunks(self, pipe_dir, monkeypatch):
        monkeypatch.setattr(fifo_module, "MAX_LINE_BYTES", 16)
        path = pipe_dir / "huge-stream.pipe"
        with FifoTransport(path) as reader:
            reader.open_for_reading(hold_open=True)
            fd = os.open(path, os.O_WRONLY)
            try:
                os.write(fd, b"y" * 64)

                with pytest.raises(MalformedRecordError, match="exceeds 16 bytes"):
                    await asyncio.to_thread(reader.read_line)

                # The rest of the record is still in flight when the error is raised.
                next_line = asyncio.create_task(asyncio.to_thread(reader.read_line))
                os.write(fd, b"y" * 64)
                await asyncio.sleep(0.05)
                os.write(fd, b"y" * 8 + b"\nafter\n")
                assert await asyncio.wait_for(next_line, timeout=5) == "after"
            finally:
                os.close(fd)

    def test_read_before_open(self, pipe_dir):
        transport = FifoTransport(pipe_dir / "unopened.pipe")

        with pytest.raises(PipeNotOpenError):
            transport.read_line()

    def test_write_on_reader_end(self, pipe_dir):
        with FifoTransport(pipe_dir / "wrong-end.pipe") as reader:
            reader.open_for_reading()
            with pytest.raises(PipeNotOpenError):
                reader.write("nope")

    def test_read_after_close(self, pipe_dir):
        reader = FifoTransport(pipe_dir / "closed.pipe")
        reader.open_for_reading()
        reader.close()

        with pytest.raises(PipeClosedError):
            reader.read_line()


class TestClose:
    async def test_close_wakes_blocked_reader(self, pipe_dir):
        reader = FifoTransport(pipe_dir / "blocked.pipe")
        reader.open_for_reading(hold_open=True)
        pending = asyncio.create_task(asyncio.to_thread(reader.read_line))
        await asyncio.sleep(0.1)
        assert not pending.done()

        reader.close()

        with pytest.raises(PipeClosedError):
            await asyncio.wait_for(pending, 5.0)
        assert not reader.is_open

    def test_close_is_idempotent(self, pipe_dir):
        reader = FifoTransport(pipe_dir / "idem.pipe")
        reader.open_for_reading()

        reader.close()
        reader.close()

        assert not reader.is_open

    def test_close_never_opened(self, pipe_dir):
        FifoTransport(pipe_dir / "never-opened.pipe").close()

    def test_reopen_after_close(self, pipe_dir):
        path = pipe_dir / "again.pipe"
        reader = FifoTransport(path)
        reader.open_for_reading()
        reader.close()

        reader.open_for_reading(hold_open=True)
        try:
            assert reader.is_open
        finally:
            reader.close()
