"""Run a helper: an MCP stdio server backed by the host."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import click

from pipemcp.cli.context import CLIState, pass_state
from pipemcp.cli.signals import stop_on_signals
from pipemcp.ipc.client import PipeClient
from pipemcp.ipc.contracts import validate_client_id
from pipemcp.ipc.errors import PipeMCPError
from pipemcp.mcp.bridge import DEFAULT_SERVER_NAME, HelperBridge, serve_stdio

if TYPE_CHECKING:
    import signal

    from pipemcp.config import PipeMCPConfig

logger = logging.getLogger(__name__)


async def _run_helper(config: PipeMCPConfig, client_id: str | None, server_name: str) -> None:
    client = PipeClient.from_config(config, client_id=client_id)
    try:
        await client.connect()
        serve_task = asyncio.create_task(
            serve_stdio(HelperBridge(client), name=server_name),
            name="pipemcp-helper-stdio",
        )

        def request_stop(sig: signal.Signals) -> None:
            serve_task.cancel()

        with stop_on_signals(request_stop):
            await asyncio.wait({serve_task})
        if serve_task.cancelled():
            logger.info("Helper %s stopped by signal", client.client_id)
        else:
            serve_task.result()
    finally:
        # Sends deinitialize so the host drops this helper's channel.
        await client.close()


@click.command()
@click.option("--client-id", default=None, help="Helper id (random when omitted)")
@click.option("--name", "server_name", default=DEFAULT_SERVER_NAME, help="MCP server name")
@pass_state
def helper(state: CLIState, client_id: str | None, server_name: str) -> None:
    """Serve MCP on stdio, forwarding tool calls to the host.

    Typically launched by an MCP client (an editor or agent) as a subprocess.
    """
    if client_id is not None:
        try:
            validate_client_id(client_id)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--client-id") from exc

    try:
        asyncio.run(_run_helper(state.config, client_id, server_name))
    except PipeMCPError as exc:
        raise click.ClickException(f"[{exc.code}] {exc}") from exc
    except KeyboardInterrupt:
        logger.info("Helper interrupted")
