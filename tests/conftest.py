"""Pytest configuration and shared fixtures for deckwatch tests."""

import asyncio
import os
import shutil
import sys
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from deckwatch.models.config import (
    CloudToolConfig,
    LocalServiceConfig,
    OrchestratorConfig,
    ValidationConfig,
)
from deckwatch.models.endpoint import EndpointProbe

# Child process bodies, run as ``python -c``
LONG_RUNNING = (
    "import sys, time\n"
    "print('listening', flush=True)\n"
    "print('warming up', file=sys.stderr, flush=True)\n"
    "time.sleep(60)\n"
)
IGNORES_SIGTERM = (
    "import signal, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "time.sleep(60)\n"
)
EXITS_WITH_ERROR = (
    "import sys\n"
    "print('boom', file=sys.stderr, flush=True)\n"
    "sys.exit(3)\n"
)
CLOUD_SUCCESS = (
    "import sys\n"
    "print('Deploying to ' + sys.argv[-1], flush=True)\n"
    "print('OutputApiGatewayUrl = https://api.example.test/prod', flush=True)\n"
)
CLOUD_SLOW = (
    "import time\n"
    "print('synthesizing', flush=True)\n"
    "time.sleep(60)\n"
)


def python_argv(code: str) -> list[str]:
    """Return an argv running ``code`` with the current interpreter."""
    return [sys.executable, "-c", code]


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for test file operations.

    Yields:
        Path to temporary directory

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def py() -> Callable[[str], list[str]]:
    """Factory turning Python source into a child-process argv."""
    return python_argv


@pytest.fixture
def scripts() -> SimpleNamespace:
    """Ready-made child-process argvs.

    Attributes:
        long_running: Prints to both streams, then sleeps until terminated
        ignores_sigterm: Prints 'ready' once SIGTERM is ignored, then sleeps
        exits_with_error: Writes to stderr and exits with code 3
        cloud_success: Prints an endpoint address line and exits zero
        cloud_slow: Sleeps until terminated
    """
    return SimpleNamespace(
        long_running=python_argv(LONG_RUNNING),
        ignores_sigterm=python_argv(IGNORES_SIGTERM),
        exits_with_error=python_argv(EXITS_WITH_ERROR),
        cloud_success=python_argv(CLOUD_SUCCESS),
        cloud_slow=python_argv(CLOUD_SLOW),
    )


@pytest.fixture
def fast_config(temp_dir: Path) -> OrchestratorConfig:
    """Configuration with short delays and Python child processes.

    The local launcher sleeps until terminated; the cloud tool prints an
    endpoint address and exits zero. No preflight, database or .env.
    """
    return OrchestratorConfig(
        working_dir=temp_dir,
        grace_period=1.0,
        local=LocalServiceConfig(
            command=python_argv(LONG_RUNNING),
            port=3999,
            startup_delay=0.2,
            services={},
        ),
        cloud=CloudToolConfig(
            command=python_argv(CLOUD_SUCCESS),
            outputs_file=None,
            env_file=None,
            auto_validate=False,
            validation_delay=0.0,
        ),
        validation=ValidationConfig(
            timeout=2.0,
            probes=[
                EndpointProbe(method="GET", path="/health", description="Health"),
                EndpointProbe(
                    method="POST",
                    path="/auth/login",
                    expect_status=[400, 401],
                    description="Login rejects empty body",
                ),
            ],
        ),
    )


async def wait_until(
    predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02
) -> None:
    """Poll ``predicate`` on the running loop until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def eventually() -> Callable[..., Any]:
    """Expose :func:`wait_until` to tests."""
    return wait_until


def pytest_configure(config: Any) -> None:
    """Configure pytest with marker options."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests",
    )
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests",
    )
