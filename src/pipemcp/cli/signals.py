"""Graceful shutdown on SIGINT/SIGTERM for the long-running commands."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextlib.contextmanager
def stop_on_signals(on_signal: Callable[[signal.Signals], None]) -> Iterator[None]:
    """Call ``on_signal`` on the event loop when SIGINT or SIGTERM arrives.

    Handlers are removed again on exit.  Platforms without
    ``loop.add_signal_handler`` fall back to the default behaviour.
    """
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, _dispatch, sig, on_signal)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cannot install handler for %s on this platform", sig.name)
            continue
        installed.append(sig)
    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _dispatch(sig: signal.Signals, on_signal: Callable[[signal.Signals], None]) -> None:
    logger.info("Received %s, shutting down", sig.name)
    on_signal(sig)


__all__ = ["STOP_SIGNALS", "stop_on_signals"]
