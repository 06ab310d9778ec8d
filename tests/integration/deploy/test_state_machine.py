"""Tests for the deployment state machine against real child processes."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

from deckwatch.deploy.machine import DeploymentStateMachine
from deckwatch.lib.errors import (
    ConfigError,
    PreflightFailedError,
    ProcessSpawnError,
    StateConflictError,
    UnknownServiceError,
)
from deckwatch.models.config import OrchestratorConfig
from deckwatch.models.deployment import (
    ApiStatus,
    CloudState,
    DeploymentTarget,
    LocalState,
)
from deckwatch.models.log_entry import Severity

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        sys.platform == "win32", reason="process-group signalling is POSIX only"
    ),
]

LOCAL = DeploymentTarget.LOCAL
CLOUD = DeploymentTarget.CLOUD


def _with(config: OrchestratorConfig, section: str, **changes) -> OrchestratorConfig:
    updated = getattr(config, section).model_copy(update=changes)
    return config.model_copy(update={section: updated})


def _probe_transport(status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/login":
            return httpx.Response(401)
        return httpx.Response(status)

    return httpx.MockTransport(handler)


def _messages(machine: DeploymentStateMachine, target: DeploymentTarget) -> list[str]:
    return [e.message for e in machine.logs.tail(target, 100)]


Rejection = tuple[str, str, int, int, int]


async def _reject_twice(
    machine: DeploymentStateMachine,
    target: DeploymentTarget,
    command: Callable[[], Awaitable[object]],
) -> list[Rejection]:
    """Issue a command that must conflict twice, recording its side effects.

    Each element is (code, reason, log count, revision, process count) taken
    right after the rejection.
    """
    observed: list[Rejection] = []
    for _ in range(2):
        with pytest.raises(StateConflictError) as exc_info:
            await command()
        observed.append(
            (
                exc_info.value.code,
                exc_info.value.reason,
                len(machine.logs),
                machine.store.get(target).revision,
                len(machine.processes()),
            )
        )
    return observed


@pytest_asyncio.fixture
async def machine(
    fast_config: OrchestratorConfig,
) -> AsyncGenerator[DeploymentStateMachine, None]:
    """State machine over the fast test configuration."""
    machine = DeploymentStateMachine(fast_config, transport=_probe_transport())
    yield machine
    await machine.shutdown()


class TestLocalLifecycle:
    """Tests for local start, confirmation, exit and stop."""

    @pytest.mark.asyncio
    async def test_start_confirms_running_then_stops(
        self, machine: DeploymentStateMachine, eventually
    ) -> None:
        """stopped -> starting -> running -> stopping -> stopped."""
        result = await machine.start(LOCAL, "all")

        assert result.success
        assert result.state == "starting"
        assert result.port == 3999
        await eventually(lambda: machine.store.get(LOCAL).state == "running")
        status = machine.store.get(LOCAL)
        assert status.active_process_id == result.process_id
        assert status.result_metadata["port"] == 3999

        stopped = await machine.stop(LOCAL)

        assert stopped.state == "stopped"
        assert machine.store.get(LOCAL).active_process_id is None
        assert machine.processes() == []
        assert "Local all service stopped" in _messages(machine, LOCAL)

    @pytest.mark.asyncio
    async def test_repeated_start_conflicts_without_side_effects(
        self, machine: DeploymentStateMachine, eventually
    ) -> None:
        """Every start on a busy target fails the same way and changes nothing."""
        await machine.start(LOCAL)
        await eventually(lambda: machine.store.get(LOCAL).state == "running")
        await eventually(lambda: "warming up" in _messages(machine, LOCAL))
        await eventually(lambda: "listening" in _messages(machine, LOCAL))
        logs_before = len(machine.logs)
        revision_before = machine.store.get(LOCAL).revision

        observed = await _reject_twice(machine, LOCAL, lambda: machine.start(LOCAL))

        expected = (
            "StateConflict",
            StateConflictError.ALREADY_RUNNING,
            logs_before,
            revision_before,
            1,
        )
        assert observed == [expected, expected]

    @pytest.mark.asyncio
    async def test_concurrent_starts_conflict(
        self, machine: DeploymentStateMachine
    ) -> None:
        """Racing starts resolve to one success and one conflict."""
        outcomes = await asyncio.gather(
            machine.start(LOCAL), machine.start(LOCAL), return_exceptions=True
        )

        conflicts = [o for o in outcomes if isinstance(o, StateConflictError)]
        assert len(conflicts) == 1
        assert len(machine.processes()) == 1

    @pytest.mark.asyncio
    async def test_repeated_stop_on_idle_conflicts_without_logging(
        self, machine: DeploymentStateMachine
    ) -> None:
        """Stopping an idle target twice yields the same error and no entries."""
        observed = await _reject_twice(machine, LOCAL, lambda: machine.stop(LOCAL))

        expected = ("StateConflict", StateConflictError.NOT_RUNNING, 0, 0, 0)
        assert observed == [expected, expected]

    @pytest.mark.asyncio
    async def test_stop_while_starting(
        self, fast_config: OrchestratorConfig
    ) -> None:
        """A start can be cancelled before it is confirmed."""
        config = _with(fast_config, "local", startup_delay=5.0)
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(LOCAL)
            result = await machine.stop(LOCAL)

            assert result.state == "stopped"
            assert machine.processes() == []
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_exit_during_startup_returns_to_stopped(
        self,
        fast_config: OrchestratorConfig,
        scripts: SimpleNamespace,
        eventually,
    ) -> None:
        """A launcher that dies before confirmation is recorded as an error."""
        config = _with(
            fast_config, "local", command=scripts.exits_with_error, startup_delay=2.0
        )
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(LOCAL)
            await eventually(lambda: machine.store.get(LOCAL).state == "stopped")

            errors = [
                e for e in machine.logs.tail(LOCAL, 100) if e.severity == Severity.ERROR
            ]
            assert any("failed during startup" in e.message for e in errors)
            assert any(e.message == "boom" for e in machine.logs.tail(LOCAL, 100))
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_stop_after_unrecorded_startup_exit_logs_error(
        self,
        fast_config: OrchestratorConfig,
        scripts: SimpleNamespace,
        eventually,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A stop that finds the launcher already gone still reports the failure.

        The exit handler is held back so the stop wins the lock while the
        target is still ``starting``.
        """
        config = _with(
            fast_config, "local", command=scripts.exits_with_error, startup_delay=5.0
        )
        machine = DeploymentStateMachine(config)

        async def pending_exit_handler(handle: object) -> None:
            return None

        monkeypatch.setattr(machine, "_on_local_exit", pending_exit_handler)
        try:
            await machine.start(LOCAL)
            await eventually(lambda: machine.processes() == [])
            assert machine.store.get(LOCAL).state == "starting"

            result = await machine.stop(LOCAL)

            assert result.state == "stopped"
            errors = [
                e.message
                for e in machine.logs.tail(LOCAL, 100)
                if e.severity == Severity.ERROR
            ]
            assert errors == ["Local all service failed during startup"]
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_exit_after_running(
        self, fast_config: OrchestratorConfig, py, eventually
    ) -> None:
        """A running service that exits non-zero is logged and stopped."""
        config = _with(
            fast_config,
            "local",
            command=py("import time; time.sleep(0.6); raise SystemExit(7)"),
            startup_delay=0.1,
        )
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(LOCAL)
            await eventually(lambda: machine.store.get(LOCAL).state == "running")
            await eventually(lambda: machine.store.get(LOCAL).state == "stopped")

            assert "Local all service stopped with code 7" in _messages(machine, LOCAL)
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_service_is_rejected(
        self, fast_config: OrchestratorConfig
    ) -> None:
        """With a service map, names outside it are refused before spawning."""
        config = _with(fast_config, "local", services={"all": [], "auth": ["--auth"]})
        machine = DeploymentStateMachine(config)

        with pytest.raises(UnknownServiceError, match="Unknown service: billing"):
            await machine.start(LOCAL, "billing")

        assert machine.store.get(LOCAL).state == "stopped"
        assert machine.processes() == []

    @pytest.mark.asyncio
    async def test_spawn_failure_returns_to_stopped(
        self, fast_config: OrchestratorConfig
    ) -> None:
        """A launcher that cannot be executed leaves the target idle."""
        config = _with(fast_config, "local", command=["/nonexistent/launcher"])
        machine = DeploymentStateMachine(config)

        with pytest.raises(ProcessSpawnError):
            await machine.start(LOCAL)

        assert machine.store.get(LOCAL).state == "stopped"
        assert any(
            "Failed to start local deployment" in m for m in _messages(machine, LOCAL)
        )


class TestCloudLifecycle:
    """Tests for cloud deployment, failure, stop and preflight."""

    @pytest.mark.asyncio
    async def test_successful_deployment_records_address(
        self, machine: DeploymentStateMachine, eventually
    ) -> None:
        """A zero exit is deployed, with the address scanned from stdout."""
        result = await machine.start(CLOUD, "all", "staging")

        assert result.state == "deploying"
        assert result.deployment_id.startswith("deploy-")
        await eventually(lambda: machine.store.get(CLOUD).state == "deployed")

        status = machine.store.get(CLOUD)
        assert status.deployment_id == result.deployment_id
        assert status.environment == "staging"
        assert status.result_metadata["api_url"] == "https://api.example.test/prod"
        assert status.result_metadata["address_source"] == "output"
        assert "Deploying to staging" in _messages(machine, CLOUD)

    @pytest.mark.asyncio
    async def test_outputs_artifact_preferred(
        self, fast_config: OrchestratorConfig, py, eventually
    ) -> None:
        """An artifact written during the run wins over stdout."""
        outputs = {"ApiStack": {"OutputApiGatewayUrl": "https://artifact.test/"}}
        code = (
            "import json\n"
            f"json.dump({outputs!r}, open('cdk-outputs.json', 'w'))\n"
            "print('OutputApiGatewayUrl = https://stdout.test/')\n"
        )
        config = _with(
            fast_config, "cloud", command=py(code), outputs_file="cdk-outputs.json"
        )
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(CLOUD)
            await eventually(lambda: machine.store.get(CLOUD).state == "deployed")

            metadata = machine.store.get(CLOUD).result_metadata
            assert metadata["api_url"] == "https://artifact.test/"
            assert metadata["address_source"] == "artifact"
            assert metadata["outputs"] == json.loads(json.dumps(outputs))
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails_deployment(
        self,
        fast_config: OrchestratorConfig,
        scripts: SimpleNamespace,
        eventually,
    ) -> None:
        """A failing tool drives the target to failed with an error entry."""
        config = _with(fast_config, "cloud", command=scripts.exits_with_error)
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(CLOUD)
            await eventually(lambda: machine.store.get(CLOUD).state == "failed")

            assert machine.store.get(CLOUD).result_metadata == {}
            assert (
                "Deployment script failed: Command failed with code 3"
                in _messages(machine, CLOUD)
            )
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_repeated_start_while_deploying_conflicts(
        self,
        fast_config: OrchestratorConfig,
        scripts: SimpleNamespace,
        eventually,
    ) -> None:
        """Cloud starts during a deployment spawn nothing, however often sent."""
        config = _with(fast_config, "cloud", command=scripts.cloud_slow)
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(CLOUD)
            await eventually(lambda: "synthesizing" in _messages(machine, CLOUD))
            logs_before = len(machine.logs)
            revision_before = machine.store.get(CLOUD).revision

            observed = await _reject_twice(machine, CLOUD, lambda: machine.start(CLOUD))

            expected = (
                "StateConflict",
                StateConflictError.ALREADY_RUNNING,
                logs_before,
                revision_before,
                1,
            )
            assert observed == [expected, expected]
            assert len(machine.supervisor.active_for(CLOUD)) == 1
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_stop_kills_tool_and_resets(
        self,
        fast_config: OrchestratorConfig,
        scripts: SimpleNamespace,
    ) -> None:
        """Stopping an in-flight deployment returns to not_deployed."""
        config = _with(fast_config, "cloud", command=scripts.cloud_slow)
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(CLOUD)
            result = await machine.stop(CLOUD)
            await asyncio.sleep(0.1)

            assert result.state == "not_deployed"
            status = machine.store.get(CLOUD)
            assert status.state == "not_deployed"
            assert status.deployment_id is None
            assert machine.supervisor.active_for(CLOUD) == []
            assert any("not rolled back" in m for m in _messages(machine, CLOUD))
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_repeated_stop_when_not_deploying_conflicts(
        self, machine: DeploymentStateMachine
    ) -> None:
        """Only an in-flight deployment can be stopped, on every attempt."""
        observed = await _reject_twice(machine, CLOUD, lambda: machine.stop(CLOUD))

        expected = ("StateConflict", StateConflictError.NOT_RUNNING, 0, 0, 0)
        assert observed == [expected, expected]

    @pytest.mark.asyncio
    async def test_preflight_failure_blocks_deployment(
        self, fast_config: OrchestratorConfig, py
    ) -> None:
        """A failing preflight leaves the target idle and spawns no tool."""
        config = _with(fast_config, "preflight", command=py("raise SystemExit(1)"))
        machine = DeploymentStateMachine(config)
        try:
            with pytest.raises(PreflightFailedError):
                await machine.start(CLOUD)

            assert machine.store.get(CLOUD).state == "not_deployed"
            assert machine.processes() == []
            warnings = [
                e
                for e in machine.logs.tail(CLOUD, 100)
                if e.severity == Severity.WARNING
            ]
            assert any("deployment not started" in e.message for e in warnings)
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_env_file_reaches_tool(
        self,
        fast_config: OrchestratorConfig,
        temp_dir: Path,
        py,
        eventually,
        isolated_env,
    ) -> None:
        """Values from the .env file are passed to the tool."""
        (temp_dir / ".env").write_text("DECKWATCH_TEST_STAGE=blue\n")
        code = "import os; print('stage=' + os.environ['DECKWATCH_TEST_STAGE'])"
        config = _with(fast_config, "cloud", command=py(code), env_file=".env")
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(CLOUD)
            await eventually(lambda: machine.store.get(CLOUD).state == "deployed")

            assert "stage=blue" in _messages(machine, CLOUD)
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_auto_validation_after_deploy(
        self, fast_config: OrchestratorConfig, eventually
    ) -> None:
        """A successful deployment with an address is validated automatically."""
        config = _with(fast_config, "cloud", auto_validate=True, validation_delay=0.0)
        machine = DeploymentStateMachine(config, transport=_probe_transport())
        try:
            await machine.start(CLOUD)
            await eventually(
                lambda: machine.store.health.api.status == ApiStatus.HEALTHY
            )

            api = machine.store.health.api
            assert api.base_url == "https://api.example.test/prod"
            assert api.passed == api.total == 2
        finally:
            await machine.shutdown()


class TestRestart:
    """Tests for restart on both targets."""

    @pytest.mark.asyncio
    async def test_local_restart_from_idle_starts(
        self, machine: DeploymentStateMachine, eventually
    ) -> None:
        """With nothing running, restart is a plain start."""
        result = await machine.restart(LOCAL)

        assert result.state == "starting"
        await eventually(lambda: machine.store.get(LOCAL).state == "running")
        assert "Restarting local services..." not in _messages(machine, LOCAL)
        assert [p.id for p in machine.processes()] == [result.process_id]

    @pytest.mark.asyncio
    async def test_local_restart_from_running_replaces_process(
        self, machine: DeploymentStateMachine, eventually
    ) -> None:
        """The running launcher is stopped before the new one is spawned."""
        first = await machine.start(LOCAL)
        await eventually(lambda: machine.store.get(LOCAL).state == "running")
        first_pid = machine.store.get(LOCAL).result_metadata["pid"]

        second = await machine.restart(LOCAL, "all")

        assert second.state == "starting"
        assert second.process_id != first.process_id
        assert [p.id for p in machine.processes()] == [second.process_id]
        messages = _messages(machine, LOCAL)
        assert messages.index("Restarting local services...") < messages.index(
            "Local all service stopped"
        )
        await eventually(lambda: machine.store.get(LOCAL).state == "running")
        assert machine.store.get(LOCAL).result_metadata["pid"] != first_pid

    @pytest.mark.asyncio
    async def test_local_restart_unknown_service_keeps_running(
        self, fast_config: OrchestratorConfig, eventually
    ) -> None:
        """An unknown service is refused before the running launcher is touched."""
        config = _with(fast_config, "local", services={"all": [], "auth": ["--auth"]})
        machine = DeploymentStateMachine(config)
        try:
            await machine.start(LOCAL)
            await eventually(lambda: machine.store.get(LOCAL).state == "running")

            with pytest.raises(UnknownServiceError):
                await machine.restart(LOCAL, "billing")

            assert machine.store.get(LOCAL).state == "running"
            assert len(machine.processes()) == 1
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_restart_during_command_conflicts(
        self, fast_config: OrchestratorConfig, py
    ) -> None:
        """A restart racing a start that is still in preflight is rejected."""
        config = _with(
            fast_config, "preflight", command=py("import time; time.sleep(0.5)")
        )
        machine = DeploymentStateMachine(config)
        try:
            started, restarted = await asyncio.gather(
                machine.start(CLOUD), machine.restart(CLOUD), return_exceptions=True
            )

            assert isinstance(restarted, StateConflictError)
            assert restarted.reason == StateConflictError.COMMAND_IN_PROGRESS
            assert not isinstance(started, BaseException)
            assert started.state == "deploying"
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_cloud_restart_replaces_in_flight_deployment(
        self,
        fast_config: OrchestratorConfig,
        scripts: SimpleNamespace,
    ) -> None:
        """An in-flight tool is killed and a fresh deployment takes its place."""
        config = _with(fast_config, "cloud", command=scripts.cloud_slow)
        machine = DeploymentStateMachine(config)
        try:
            first = await machine.start(CLOUD)
            second = await machine.restart(CLOUD, "all", "prod")

            assert second.state == "deploying"
            assert second.deployment_id != first.deployment_id
            active = machine.supervisor.active_for(CLOUD)
            assert [h.id for h in active] == [second.process_id]
            status = machine.store.get(CLOUD)
            assert status.deployment_id == second.deployment_id
            assert status.environment == "prod"
            assert "Restarting cloud deployment..." in _messages(machine, CLOUD)
        finally:
            await machine.shutdown()

    @pytest.mark.asyncio
    async def test_cloud_restart_after_deploy_redeploys(
        self, machine: DeploymentStateMachine, eventually
    ) -> None:
        """A finished deployment is simply deployed again."""
        first = await machine.start(CLOUD)
        await eventually(lambda: machine.store.get(CLOUD).state == "deployed")

        second = await machine.restart(CLOUD)

        assert second.state == "deploying"
        assert second.deployment_id != first.deployment_id
        assert "Restarting cloud deployment..." not in _messages(machine, CLOUD)
        await eventually(lambda: machine.store.get(CLOUD).state == "deployed")
        assert machine.store.get(CLOUD).deployment_id == second.deployment_id

    @pytest.mark.asyncio
    async def test_cloud_restart_preflight_failure(
        self, fast_config: OrchestratorConfig, py
    ) -> None:
        """Restart surfaces a failing preflight exactly like start."""
        config = _with(fast_config, "preflight", command=py("raise SystemExit(1)"))
        machine = DeploymentStateMachine(config)
        try:
            with pytest.raises(PreflightFailedError):
                await machine.restart(CLOUD)

            assert machine.store.get(CLOUD).state == "not_deployed"
            assert machine.processes() == []
        finally:
            await machine.shutdown()


class TestEndpointTesting:
    """Tests for validation batches driven by the machine."""

    @pytest.mark.asyncio
    async def test_explicit_url_unhealthy_batch(
        self, fast_config: OrchestratorConfig
    ) -> None:
        """A 404 against [200] marks the probe failed and the API unhealthy."""
        machine = DeploymentStateMachine(fast_config, transport=_probe_transport(404))

        report = await machine.test_endpoints("http://x")

        assert not report.healthy
        assert report.results[0].success is False
        assert report.results[0].status_code == 404
        assert report.results[1].success is True
        assert machine.store.health.api.status == ApiStatus.UNHEALTHY
        assert machine.store.get(CLOUD).state == "not_deployed"
        assert "API endpoint testing completed: 1/2 passed" in _messages(
            machine, CLOUD
        )

    @pytest.mark.asyncio
    async def test_default_url_from_config(
        self, fast_config: OrchestratorConfig
    ) -> None:
        """Without a deployment the configured default address is used."""
        config = _with(fast_config, "validation", default_base_url="http://fallback")
        machine = DeploymentStateMachine(config, transport=_probe_transport())

        report = await machine.test_endpoints()

        assert report.base_url == "http://fallback"
        assert report.healthy

    @pytest.mark.asyncio
    async def test_no_url_available(self, machine: DeploymentStateMachine) -> None:
        """Without any address the request is a configuration error."""
        with pytest.raises(ConfigError):
            await machine.test_endpoints()

    @pytest.mark.asyncio
    async def test_results_discarded_when_deployment_changes(
        self, fast_config: OrchestratorConfig
    ) -> None:
        """A batch bound to a deployment that changed mid-run is stale."""
        machine: DeploymentStateMachine

        async def handler(request: httpx.Request) -> httpx.Response:
            status = machine.store.get(CLOUD)
            if status.state == CloudState.DEPLOYED.value:
                async with machine.store.lock(CLOUD):
                    machine.store.commit(
                        CLOUD, state=CloudState.DEPLOYING, deployment_id="deploy-new"
                    )
            return httpx.Response(200)

        machine = DeploymentStateMachine(
            fast_config, transport=httpx.MockTransport(handler)
        )
        async with machine.store.lock(CLOUD):
            machine.store.commit(
                CLOUD, state=CloudState.DEPLOYING, deployment_id="deploy-old"
            )
            machine.store.commit(
                CLOUD,
                state=CloudState.DEPLOYED,
                result_metadata={"api_url": "http://deployed"},
            )

        report = await machine.test_endpoints()

        assert report.stale is True
        assert report.deployment_id == "deploy-old"
        assert machine.store.health.api.status == ApiStatus.UNKNOWN
        messages = _messages(machine, CLOUD)
        assert any("Discarding endpoint results" in m for m in messages)


class TestShutdownAndQueries:
    """Tests for shutdown, status and log queries."""

    @pytest.mark.asyncio
    async def test_shutdown_terminates_everything(
        self, machine: DeploymentStateMachine, eventually
    ) -> None:
        """Shutdown leaves no tracked process and no observer."""
        observer = machine.broadcast.connect()
        await machine.start(LOCAL)

        await machine.shutdown()

        assert machine.processes() == []
        assert observer.closed
        await eventually(lambda: machine.store.get(LOCAL).state == "stopped")

    @pytest.mark.asyncio
    async def test_status_labels(self, machine: DeploymentStateMachine) -> None:
        """Coarse status reports every component."""
        assert machine.status() == {
            "local": "stopped",
            "cloud": "not_deployed",
            "database": "unknown",
            "api": "unknown",
        }

    @pytest.mark.asyncio
    async def test_records_are_published(self, machine: DeploymentStateMachine) -> None:
        """Entries reach the buffer and connected observers."""
        observer = machine.broadcast.connect()
        while observer.pending:
            await observer.get()

        machine.log(CLOUD, Severity.SUCCESS, "hello")

        event = await observer.get()
        assert event["type"] == "log"
        assert event["data"]["severity"] == "success"
        assert [e.message for e in machine.tail_logs("all", 5)] == ["hello"]

    @pytest.mark.asyncio
    async def test_tail_logs_unknown_channel(
        self, machine: DeploymentStateMachine
    ) -> None:
        """Unknown channels are rejected."""
        with pytest.raises(ValueError):
            machine.tail_logs("staging", 5)


def test_local_state_values_are_stable() -> None:
    """State labels are part of the wire contract."""
    assert [s.value for s in LocalState] == [
        "stopped",
        "starting",
        "running",
        "stopping",
    ]
