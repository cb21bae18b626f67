"""One-shot commands that talk to a running host."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import click

from pipemcp.cli.context import CLIState, pass_state
from pipemcp.ipc.client import PipeClient
from pipemcp.ipc.errors import PipeMCPError

if TYPE_CHECKING:
    from pydantic import JsonValue

    from pipemcp.config import PipeMCPConfig
    from pipemcp.ipc.contracts import ToolMetadata


def parse_arguments(pairs: tuple[str, ...], json_args: str | None = None) -> dict[str, Any]:
    """Build a tool argument mapping from ``--json-args`` and ``key=value`` pairs.

    Values that parse as JSON keep their type (``count=3`` is an int), anything
    else is passed as a string.  Pairs override keys from ``--json-args``.
    """
    arguments: dict[str, Any] = {}
    if json_args is not None:
        try:
            decoded = json.loads(json_args)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--json-args") from exc
        if not isinstance(decoded, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--json-args")
        arguments.update(decoded)

    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--arg")
        try:
            arguments[key] = json.loads(raw)
        except json.JSONDecodeError:
            arguments[key] = raw
    return arguments


async def _call_tool(
    config: PipeMCPConfig,
    tool_name: str,
    arguments: dict[str, Any],
    timeout: float | None,
) -> JsonValue:
    async with PipeClient.from_config(config) as client:
        return await client.call(tool_name, arguments, timeout)


async def _list_tools(config: PipeMCPConfig, timeout: float | None) -> list[ToolMetadata]:
    async with PipeClient.from_config(config) as client:
        return await client.list_tools(timeout)


@click.command()
@click.argument("tool_name")
@click.option("-a", "--arg", "pairs", multiple=True, metavar="KEY=VALUE", help="Tool argument")
@click.option("--json-args", default=None, metavar="JSON", help="Tool arguments as a JSON object")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None)
@pass_state
def call(
    state: CLIState,
    tool_name: str,
    pairs: tuple[str, ...],
    json_args: str | None,
    timeout: float | None,
) -> None:
    """Call TOOL_NAME on the running host and print the JSON result."""
    arguments = parse_arguments(pairs, json_args)
    try:
        result = asyncio.run(_call_tool(state.config, tool_name, arguments, timeout))
    except PipeMCPError as exc:
        raise click.ClickException(f"[{exc.code}] {exc}") from exc
    click.echo(json.dumps(result))


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw tool metadata as JSON")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None)
@pass_state
def tools(state: CLIState, as_json: bool, timeout: float | None) -> None:
    """List the tools served by the running host."""
    try:
        metadata = asyncio.run(_list_tools(state.config, timeout))
    except PipeMCPError as exc:
        raise click.ClickException(f"[{exc.code}] {exc}") from exc

    if as_json:
        click.echo(json.dumps([meta.model_dump(mode="json") for meta in metadata], indent=2))
        return
    if not metadata:
        click.secho("The host serves no tools.", fg="yellow")
        return
    width = max(len(meta.name) for meta in metadata)
    for meta in metadata:
        click.echo(f"  {meta.name.ljust(width)}  {meta.description}".rstrip())
