"""Root CLI command registration."""

from __future__ import annotations

import tomllib
from pathlib import Path

import click
from pydantic import ValidationError

from pipemcp.cli.context import CLIState
from pipemcp.config import PipeMCPConfig
from pipemcp.debug_log import setup_logging
from pipemcp.paths import get_config_path
from pipemcp.version import get_pipemcp_version

from .call import call, tools
from .helper import helper
from .host import host
from .pipes import pipes

LOG_LEVEL_CHOICES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to config.toml (defaults to the per-user config directory)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVEL_CHOICES, case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx: click.Context, version: bool, config_path: Path | None, log_level: str | None) -> None:
    """Call tools between a host and its helpers over named pipes."""
    if version:
        click.echo(f"pipemcp {get_pipemcp_version()}")
        ctx.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)

    path = config_path or get_config_path()
    try:
        config = PipeMCPConfig.load(path)
    except (OSError, tomllib.TOMLDecodeError, ValidationError) as exc:
        raise click.ClickException(f"Could not load config {path}: {exc}") from exc

    setup_logging(log_level or config.logging.level, config.logging.file)
    ctx.obj = CLIState(config=config, config_path=path)


cli.add_command(host)
cli.add_command(helper)
cli.add_command(call)
cli.add_command(tools)
cli.add_command(pipes)
