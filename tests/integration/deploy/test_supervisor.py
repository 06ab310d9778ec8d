"""Tests for subprocess supervision with real child processes."""

from __future__ import annotations

import asyncio
import sys
import time
from types import SimpleNamespace

import pytest

from deckwatch.deploy.supervisor import ProcessSupervisor
from deckwatch.lib.errors import ProcessExitError, ProcessSpawnError
from deckwatch.models.deployment import DeploymentTarget
from deckwatch.models.log_entry import LogEntry, Severity

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="process-group signalling is POSIX only"
)

LOCAL = DeploymentTarget.LOCAL


@pytest.fixture
def sink() -> list[LogEntry]:
    """Collected log entries."""
    return []


@pytest.fixture
def supervisor(sink: list[LogEntry]) -> ProcessSupervisor:
    """Supervisor with a short grace period."""
    return ProcessSupervisor(log_sink=sink.append, grace_period=0.5)


@pytest.mark.integration
class TestSpawn:
    """Tests for spawn and output forwarding."""

    @pytest.mark.asyncio
    async def test_output_is_forwarded_with_severity(
        self,
        supervisor: ProcessSupervisor,
        sink: list[LogEntry],
        scripts: SimpleNamespace,
        eventually,
    ) -> None:
        """Stdout lines log as info, stderr lines as warning."""
        handle = await supervisor.spawn(
            scripts.long_running, target=LOCAL, service="auth"
        )
        await eventually(lambda: len(sink) >= 2)

        by_message = {e.message: e for e in sink}
        assert by_message["listening"].severity == Severity.INFO
        assert by_message["warming up"].severity == Severity.WARNING
        assert all(e.channel == LOCAL and e.service == "auth" for e in sink)

        await supervisor.terminate(handle)

    @pytest.mark.asyncio
    async def test_spawn_failure_raises(self, supervisor: ProcessSupervisor) -> None:
        """A missing executable raises ProcessSpawnError and tracks nothing."""
        with pytest.raises(ProcessSpawnError) as exc_info:
            await supervisor.spawn(
                ["/nonexistent/deckwatch-launcher"], target=LOCAL, service="all"
            )

        assert exc_info.value.code == "ProcessSpawnFailure"
        assert supervisor.list_processes() == []

    @pytest.mark.asyncio
    async def test_process_is_tracked_until_exit(
        self, supervisor: ProcessSupervisor, py
    ) -> None:
        """Handles are listed while alive and dropped once exited."""
        handle = await supervisor.spawn(
            py("import time; time.sleep(0.2)"), target=LOCAL, service="all"
        )
        assert [p.id for p in supervisor.list_processes()] == [handle.id]
        assert supervisor.get(handle.id) is handle

        result = await handle.wait()

        assert result.exit_code == 0
        assert supervisor.get(handle.id) is None
        assert supervisor.list_processes() == []

    @pytest.mark.asyncio
    async def test_on_exit_callback_runs(
        self, supervisor: ProcessSupervisor, py
    ) -> None:
        """The exit callback sees the recorded result."""
        seen = asyncio.Event()
        codes: list[int | None] = []

        async def on_exit(handle) -> None:
            codes.append(handle.result.exit_code)
            seen.set()

        await supervisor.spawn(
            py("raise SystemExit(4)"), target=LOCAL, service="all", on_exit=on_exit
        )
        await asyncio.wait_for(seen.wait(), 5.0)

        assert codes == [4]


@pytest.mark.integration
class TestRun:
    """Tests for run-to-completion."""

    @pytest.mark.asyncio
    async def test_run_returns_output(
        self, supervisor: ProcessSupervisor, py
    ) -> None:
        """A zero exit returns the captured output."""
        output, result = await supervisor.run(
            py("print('one'); print('two')"), target=LOCAL, service="all"
        )

        assert output == "one\ntwo"
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(
        self, supervisor: ProcessSupervisor, scripts: SimpleNamespace
    ) -> None:
        """A non-zero exit raises ProcessExitError with the captured output."""
        with pytest.raises(ProcessExitError) as exc_info:
            await supervisor.run(
                scripts.exits_with_error, target=LOCAL, service="all"
            )

        assert exc_info.value.exit_code == 3
        assert exc_info.value.output == ["boom"]
        assert str(exc_info.value) == "Command failed with code 3"

    @pytest.mark.asyncio
    async def test_timeout_terminates_and_raises(
        self, supervisor: ProcessSupervisor, scripts: SimpleNamespace
    ) -> None:
        """Exceeding the timeout terminates the child and raises."""
        with pytest.raises(ProcessExitError):
            await supervisor.run(
                scripts.cloud_slow, target=LOCAL, service="all", timeout=0.3
            )

        assert supervisor.list_processes() == []


@pytest.mark.integration
class TestTerminate:
    """Tests for graceful and forceful termination."""

    @pytest.mark.asyncio
    async def test_graceful_termination(
        self, supervisor: ProcessSupervisor, scripts: SimpleNamespace
    ) -> None:
        """A cooperative child exits on SIGTERM without escalation."""
        handle = await supervisor.spawn(
            scripts.long_running, target=LOCAL, service="all"
        )

        result = await supervisor.terminate(handle)

        assert handle.exited
        assert result.killed is False
        assert result.exit_code != 0

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_sigterm_ignoring_child_is_killed_within_grace(
        self,
        supervisor: ProcessSupervisor,
        scripts: SimpleNamespace,
        eventually,
    ) -> None:
        """Terminate returns within grace + epsilon even if SIGTERM is ignored."""
        handle = await supervisor.spawn(
            scripts.ignores_sigterm, target=LOCAL, service="all"
        )
        await eventually(lambda: "ready" in handle.output)

        started = time.monotonic()
        result = await supervisor.terminate(handle)
        elapsed = time.monotonic() - started

        assert elapsed < supervisor.grace_period + 2.0
        assert result.killed is True
        assert result.signal == 9
        assert handle.exited

    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(
        self, supervisor: ProcessSupervisor, py
    ) -> None:
        """Terminating an exited handle returns its existing result."""
        handle = await supervisor.spawn(py("pass"), target=LOCAL, service="all")
        first = await handle.wait()

        assert await supervisor.terminate(handle) is first

    @pytest.mark.asyncio
    async def test_terminate_all(
        self, supervisor: ProcessSupervisor, scripts: SimpleNamespace
    ) -> None:
        """Every tracked process is stopped."""
        handles = [
            await supervisor.spawn(scripts.long_running, target=LOCAL, service="all")
            for _ in range(2)
        ]

        await supervisor.terminate_all()

        assert all(h.exited for h in handles)
        assert supervisor.list_processes() == []
