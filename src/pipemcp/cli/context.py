"""State shared by every CLI command."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from pathlib import Path

    from pipemcp.config import PipeMCPConfig


@dataclass(slots=True)
class CLIState:
    """Loaded configuration plus the path it came from."""

    config: PipeMCPConfig
    config_path: Path


pass_state = click.make_pass_decorator(CLIState)


__all__ = ["CLIState", "pass_state"]
