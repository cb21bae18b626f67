"""XDG-compliant path helpers for pipemcp configuration, logs and pipes."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from platformdirs import user_config_dir, user_data_dir, user_runtime_dir

if TYPE_CHECKING:
    from pipemcp.config import PipeMCPConfig

APP_NAME = "pipemcp"


def get_config_dir() -> Path:
    """Get the config directory (config.toml)."""
    override = os.environ.get("PIPEMCP_CONFIG_DIR")
    if override:
        return Path(override)
    return Path(user_config_dir(APP_NAME))


def get_data_dir() -> Path:
    """Get the data directory (exported debug logs)."""
    override = os.environ.get("PIPEMCP_DATA_DIR")
    if override:
        return Path(override)
    return Path(user_data_dir(APP_NAME))


def get_config_path() -> Path:
    """Get the path to the main config file."""
    return get_config_dir() / "config.toml"


def get_debug_log_path() -> Path:
    """Get the path to the debug log export file."""
    return get_data_dir() / "debug.log"


def get_pipe_dir(config: PipeMCPConfig | None = None) -> Path:
    """Get the directory shared by the host and its helpers for pipe files.

    Resolution order: ``pipes.directory`` from *config*, ``PIPEMCP_PIPE_DIR``,
    then the per-user runtime directory.
    """
    if config is not None and config.pipes.directory:
        return Path(config.pipes.directory).expanduser()
    override = os.environ.get("PIPEMCP_PIPE_DIR")
    if override:
        return Path(override)
    return Path(user_runtime_dir(APP_NAME))


def get_request_pipe_path(config: PipeMCPConfig) -> Path:
    """Path of the inbound pipe every helper writes requests to."""
    return get_pipe_dir(config) / config.pipes.request_pipe_name


def get_response_pipe_path(config: PipeMCPConfig, client_id: str) -> Path:
    """Path of the private pipe the host writes *client_id*'s responses to."""
    return get_pipe_dir(config) / f"{config.pipes.response_pipe_prefix}{client_id}.pipe"


def ensure_directories(config: PipeMCPConfig | None = None) -> None:
    """Create all necessary directories if they don't exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
    get_pipe_dir(config).mkdir(parents=True, exist_ok=True)


__all__ = [
    "APP_NAME",
    "ensure_directories",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "get_debug_log_path",
    "get_pipe_dir",
    "get_request_pipe_path",
    "get_response_pipe_path",
]
