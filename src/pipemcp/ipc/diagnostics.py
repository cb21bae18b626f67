"""Pipe file diagnostics for troubleshooting a host/helper pair."""

from __future__ import annotations

import grp
import os
import pwd
import stat
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel

from pipemcp.ipc.errors import PipeMCPError
from pipemcp.ipc.fifo import FifoTransport, has_reader


class PipeStatus(BaseModel):
    """Snapshot of one pipe path and its parent directory."""

    path: str
    exists: bool
    is_pipe: bool = False
    file_type: str | None = None
    permissions: str | None = None
    owner: str | None = None
    group: str | None = None
    inode: int | None = None
    links: int | None = None
    size: int | None = None
    modified_at: datetime | None = None
    stat_error: str | None = None
    has_reader: bool | None = None
    directory: str
    directory_permissions: str | None = None
    directory_owner: str | None = None
    directory_error: str | None = None


def _file_type(mode: int) -> str:
    checks = (
        (stat.S_ISFIFO, "fifo"),
        (stat.S_ISREG, "regular"),
        (stat.S_ISDIR, "directory"),
        (stat.S_ISLNK, "symlink"),
        (stat.S_ISSOCK, "socket"),
        (stat.S_ISCHR, "character-device"),
        (stat.S_ISBLK, "block-device"),
    )
    for check, name in checks:
        if check(mode):
            return name
    return "unknown"


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def describe_pipe(path: Path | str, *, probe_reader: bool = False) -> PipeStatus:
    """Collect diagnostic information about the pipe at *path*.

    With ``probe_reader=True`` a FIFO is additionally probed for a live
    reader.  A reader that does not hold its own writer open observes the
    probe as a brief end-of-stream.
    """
    pipe_path = Path(path)
    directory = pipe_path.parent
    status: dict[str, object] = {
        "path": str(pipe_path),
        "exists": os.path.lexists(pipe_path),
        "directory": str(directory),
    }

    if status["exists"]:
        try:
            info = os.lstat(pipe_path)
        except OSError as exc:
            status["stat_error"] = exc.strerror or str(exc)
        else:
            status.update(
                is_pipe=stat.S_ISFIFO(info.st_mode),
                file_type=_file_type(info.st_mode),
                permissions=f"{stat.S_IMODE(info.st_mode):o}",
                owner=_user_name(info.st_uid),
                group=_group_name(info.st_gid),
                inode=info.st_ino,
                links=info.st_nlink,
                size=info.st_size,
                modified_at=datetime.fromtimestamp(info.st_mtime, tz=UTC),
            )
            if probe_reader and status["is_pipe"]:
                status["has_reader"] = has_reader(pipe_path)

    try:
        dir_info = os.stat(directory)
    except OSError as exc:
        status["directory_error"] = exc.strerror or str(exc)
    else:
        status["directory_permissions"] = f"{stat.S_IMODE(dir_info.st_mode):o}"
        status["directory_owner"] = _user_name(dir_info.st_uid)

    return PipeStatus.model_validate(status)


def probe_write(path: Path | str, message: str) -> bool:
    """Try to write one line to the FIFO at *path*; True on success."""
    transport: FifoTransport | None = None
    try:
        transport = FifoTransport(path, create=False)
        transport.open_for_writing()
        transport.write(message)
    except PipeMCPError:
        return False
    finally:
        if transport is not None:
            transport.close()
    return True


__all__ = ["PipeStatus", "describe_pipe", "probe_write"]
