"""Run the host process."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import click

from pipemcp.cli.context import CLIState, pass_state
from pipemcp.cli.signals import stop_on_signals
from pipemcp.host import PipeHost
from pipemcp.ipc.errors import PipeMCPError
from pipemcp.tools import build_greeting_tools

if TYPE_CHECKING:
    import signal

    from pipemcp.config import PipeMCPConfig

logger = logging.getLogger(__name__)


async def _run_host(config: PipeMCPConfig) -> None:
    pipe_host = PipeHost(config=config, handler=build_greeting_tools().handle_request)
    await pipe_host.start()
    click.echo(f"Host listening on {pipe_host.request_path}", err=True)

    stopping: set[asyncio.Task[None]] = set()

    def request_stop(sig: signal.Signals) -> None:
        task = asyncio.create_task(pipe_host.stop(reason=f"received {sig.name}"))
        stopping.add(task)
        task.add_done_callback(stopping.discard)

    with stop_on_signals(request_stop):
        await pipe_host.wait_until_stopped()


@click.command()
@click.option(
    "--idle-timeout",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds before an inactive helper channel is closed (0 disables)",
)
@pass_state
def host(state: CLIState, idle_timeout: float | None) -> None:
    """Run the host and serve the greeting tools until interrupted."""
    config = state.config
    if idle_timeout is not None:
        timeouts = config.timeouts.model_copy(
            update={"channel_idle_timeout_seconds": idle_timeout},
        )
        config = config.model_copy(update={"timeouts": timeouts})

    try:
        asyncio.run(_run_host(config))
    except PipeMCPError as exc:
        raise click.ClickException(f"[{exc.code}] {exc}") from exc
    except KeyboardInterrupt:
        logger.info("Host interrupted")
