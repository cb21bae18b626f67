"""Pytest fixtures for pipemcp tests."""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from hypothesis import Phase, Verbosity, settings

_TEST_BASE_DIR = Path(tempfile.mkdtemp(prefix="pipemcp-tests-"))
os.environ["PIPEMCP_CONFIG_DIR"] = str(_TEST_BASE_DIR / "config")
os.environ["PIPEMCP_DATA_DIR"] = str(_TEST_BASE_DIR / "data")
os.environ["PIPEMCP_PIPE_DIR"] = str(_TEST_BASE_DIR / "pipes")

from pipemcp.config import PipeMCPConfig, PipesConfig, TimeoutsConfig  # noqa: E402
from pipemcp.debug_log import clear_log_buffer, reset_logging  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import Generator


settings.register_profile(
    "ci",
    max_examples=100,
    deadline=None,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)
settings.register_profile(
    "dev",
    max_examples=20,
    deadline=500,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip tests that need named pipes on platforms without them."""
    del config
    if sys.platform != "win32":
        return
    skip = pytest.mark.skip(reason="named pipes (FIFOs) are POSIX-only")
    for item in items:
        item.add_marker(skip)


@pytest.fixture(autouse=True)
def _reset_pipemcp_logging() -> Generator[None, None, None]:
    """Undo handlers installed by CLI invocations between tests."""
    yield
    reset_logging()
    clear_log_buffer()


@pytest.fixture
def pipe_dir() -> Generator[Path, None, None]:
    """A short per-test directory for pipe files."""
    directory = Path(tempfile.mkdtemp(prefix="pmcp-", dir=_TEST_BASE_DIR))
    yield directory
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def config(pipe_dir: Path) -> PipeMCPConfig:
    """Config pointing at ``pipe_dir`` with test-friendly timeouts."""
    return PipeMCPConfig(
        pipes=PipesConfig(directory=str(pipe_dir)),
        timeouts=TimeoutsConfig(
            call_timeout_seconds=5.0,
            list_tools_timeout_seconds=5.0,
            channel_idle_timeout_seconds=0,
            idle_poll_interval_seconds=0.02,
        ),
    )
