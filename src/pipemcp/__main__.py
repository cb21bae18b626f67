"""CLI entry point for pipemcp."""

from __future__ import annotations

# Python version check - must be before any imports that use 3.12+ syntax.
import sys

if sys.version_info < (3, 12):  # noqa: UP036
    print("Error: pipemcp requires Python 3.12 or higher.", file=sys.stderr)
    print(
        f"You are running Python {sys.version_info.major}.{sys.version_info.minor}",
        file=sys.stderr,
    )
    sys.exit(1)

_original_unraisablehook = sys.unraisablehook


def _suppress_event_loop_closed(unraisable: sys.UnraisableHookArgs) -> None:
    """Suppress 'Event loop is closed' errors from asyncio cleanup."""
    if isinstance(unraisable.exc_value, RuntimeError) and "Event loop is closed" in str(
        unraisable.exc_value
    ):
        return
    _original_unraisablehook(unraisable)


# Workaround for Py3.12 asyncio cleanup errors (fixed in 3.13.1+).
sys.unraisablehook = _suppress_event_loop_closed

from pipemcp.cli.commands.root import cli  # noqa: E402

if __name__ == "__main__":
    cli()
