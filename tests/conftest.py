"""
Pytest configuration and fixtures for airoute tests.
"""

import os

# Use LiteLLM's bundled cost map instead of fetching it at import time
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from typer.testing import CliRunner

from airoute.config import clear_config_cache
from airoute.providers import clear_provider_manager
from airoute.providers.retry import RetryExecutor
from airoute.providers.telemetry import SpanEvent, Telemetry, reset_telemetry


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset global config, manager and telemetry between tests."""
    yield
    clear_config_cache()
    clear_provider_manager()
    reset_telemetry()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def airoute_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point AIROUTE_HOME at an empty directory and clear config env vars."""
    home = temp_dir / ".airoute"
    home.mkdir()
    for key in list(os.environ):
        if key.startswith("AIROUTE_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("AIROUTE_HOME", str(home))
    return home


@pytest.fixture
def sleep() -> RecordingSleep:
    """Provide a sleep function that records delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def executor(sleep: RecordingSleep) -> RetryExecutor:
    """Retry executor with recorded sleeps and jitter pinned to the full delay."""
    return RetryExecutor(sleep=sleep, rand=lambda: 1.0)


@pytest.fixture
def telemetry() -> Telemetry:
    """Provide an isolated telemetry instance."""
    return Telemetry()


@pytest.fixture
def events(telemetry: Telemetry) -> list[SpanEvent]:
    """Collect every event emitted on the telemetry fixture."""
    collected: list[SpanEvent] = []
    telemetry.attach("collector", collected.append)
    return collected
