"""Pipe file diagnostics."""

from __future__ import annotations

import json

import click

from pipemcp.cli.context import CLIState, pass_state
from pipemcp.ipc.contracts import validate_client_id
from pipemcp.ipc.diagnostics import PipeStatus, describe_pipe
from pipemcp.paths import get_pipe_dir, get_request_pipe_path, get_response_pipe_path


@click.group()
def pipes() -> None:
    """Inspect the pipe files shared by host and helpers."""


def _print_status(title: str, status: PipeStatus) -> None:
    click.secho(title, bold=True)
    click.echo(f"  Path:      {status.path}")
    if not status.exists:
        click.secho("  Exists:    no", fg="yellow")
    else:
        color = "green" if status.is_pipe else "red"
        click.secho(f"  Type:      {status.file_type}", fg=color)
        click.echo(f"  Mode:      {status.permissions}")
        click.echo(f"  Owner:     {status.owner}:{status.group}")
        if status.stat_error:
            click.secho(f"  Error:     {status.stat_error}", fg="red")
        if status.has_reader is not None:
            click.echo(f"  Reader:    {'yes' if status.has_reader else 'no'}")
    if status.directory_error:
        click.secho(f"  Directory: {status.directory} ({status.directory_error})", fg="red")
    else:
        click.echo(
            f"  Directory: {status.directory} "
            f"(mode {status.directory_permissions}, owner {status.directory_owner})"
        )


@pipes.command()
@click.option("--client-id", default=None, help="Also describe this helper's response pipe")
@click.option("--probe", is_flag=True, help="Check whether each pipe has a live reader")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@pass_state
def status(state: CLIState, client_id: str | None, probe: bool, as_json: bool) -> None:
    """Describe the request pipe and, optionally, one response pipe."""
    config = state.config
    reports: dict[str, PipeStatus] = {
        "request": describe_pipe(get_request_pipe_path(config), probe_reader=probe),
    }
    if client_id is not None:
        try:
            validate_client_id(client_id)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--client-id") from exc
        reports["response"] = describe_pipe(
            get_response_pipe_path(config, client_id),
            probe_reader=probe,
        )

    if as_json:
        payload = {name: report.model_dump(mode="json") for name, report in reports.items()}
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo(f"Pipe directory: {get_pipe_dir(config)}")
    _print_status("Request pipe", reports["request"])
    if "response" in reports:
        _print_status(f"Response pipe ({client_id})", reports["response"])
