"""Configuration loader for pipemcp."""

from __future__ import annotations

import asyncio
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Literal

import tomlkit
from pydantic import BaseModel, Field, field_validator

from pipemcp.ipc.constants import (
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_FIFO_MODE,
    DEFAULT_IDLE_POLL_INTERVAL_SECONDS,
)
from pipemcp.paths import get_config_path


def atomic_write(path: Path, content: str) -> None:
    """Write file atomically to avoid partial/corrupt writes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        Path(tmp_path).replace(path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


type LogLevelLiteral = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

LOG_LEVEL_VALUES = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _require_file_name(value: str) -> str:
    if not value or "/" in value or "\0" in value or value in {".", ".."}:
        msg = f"{value!r} is not a valid file name"
        raise ValueError(msg)
    return value


class PipesConfig(BaseModel):
    """Where the host and its helpers find the pipe files."""

    directory: str | None = Field(
        default=None,
        description="Directory shared by host and helpers (None = per-user runtime dir)",
    )
    request_pipe_name: str = Field(
        default="helper_to_host.pipe",
        description="File name of the inbound request pipe",
    )
    response_pipe_prefix: str = Field(
        default="host_to_helper_",
        description="Prefix of per-helper response pipes (<prefix><client_id>.pipe)",
    )
    fifo_mode: int = Field(default=DEFAULT_FIFO_MODE, description="Permission bits of new pipes")

    @field_validator("request_pipe_name")
    @classmethod
    def validate_request_pipe_name(cls, value: str) -> str:
        return _require_file_name(value)

    @field_validator("response_pipe_prefix")
    @classmethod
    def validate_response_pipe_prefix(cls, value: str) -> str:
        if "/" in value or "\0" in value:
            msg = f"{value!r} is not a valid file name prefix"
            raise ValueError(msg)
        return value

    @field_validator("fifo_mode", mode="before")
    @classmethod
    def validate_fifo_mode(cls, value: object) -> int:
        """Accept octal strings such as ``"0666"`` or ``"0o600"``."""
        match value:
            case bool():
                return DEFAULT_FIFO_MODE
            case int() as mode if 0 <= mode <= 0o777:
                return mode
            case str() as text:
                try:
                    mode = int(text.removeprefix("0o"), 8)
                except ValueError:
                    return DEFAULT_FIFO_MODE
                if 0 <= mode <= 0o777:
                    return mode
            case _:
                pass
        return DEFAULT_FIFO_MODE


class TimeoutsConfig(BaseModel):
    """Call deadlines and channel supervision."""

    call_timeout_seconds: float = Field(
        default=DEFAULT_CALL_TIMEOUT_SECONDS,
        gt=0,
        description="Default deadline for one tool call",
    )
    list_tools_timeout_seconds: float = Field(
        default=DEFAULT_CALL_TIMEOUT_SECONDS,
        gt=0,
        description="Deadline for fetching the tool list",
    )
    channel_idle_timeout_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Seconds without traffic before the host drops a helper channel (0 = never)",
    )
    idle_poll_interval_seconds: float = Field(
        default=DEFAULT_IDLE_POLL_INTERVAL_SECONDS,
        gt=0,
        description="Back-off before re-reading a pipe that reported end-of-stream",
    )


class LoggingConfig(BaseModel):
    """Log level and optional log file."""

    level: LogLevelLiteral = Field(default="INFO")
    file: str | None = Field(default=None, description="Also append log records to this file")

    @field_validator("level", mode="before")
    @classmethod
    def validate_level(cls, value: object) -> str:
        """Gracefully coerce unknown levels to INFO."""
        match value:
            case str() as level if level.upper() in LOG_LEVEL_VALUES:
                return level.upper()
            case _:
                pass
        return "INFO"


class PipeMCPConfig(BaseModel):
    """Root configuration model."""

    pipes: PipesConfig = Field(default_factory=PipesConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> PipeMCPConfig:
        """Load configuration from TOML file or use defaults."""
        if config_path is None:
            config_path = get_config_path()

        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls.model_validate(data)

        return cls()

    async def save(self, path: Path) -> None:
        """Serialize current config to TOML file.

        Args:
            path: Path to write config file (created if missing)
        """
        doc = tomlkit.document()
        for section_name in ("pipes", "timeouts", "logging"):
            section: BaseModel = getattr(self, section_name)
            table = tomlkit.table()
            for key, value in section.model_dump().items():
                if value is not None:
                    table[key] = value
            doc[section_name] = table

        content = tomlkit.dumps(doc)
        await asyncio.to_thread(atomic_write, path, content)


__all__ = [
    "LoggingConfig",
    "PipeMCPConfig",
    "PipesConfig",
    "TimeoutsConfig",
    "atomic_write",
]
