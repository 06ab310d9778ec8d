"""Deployment state machine: the controller behind every control command.

Commands for one target are serialized by the store's per-target lock and
rejected (not queued) while another command for that target is resolving.
Commands for different targets run in parallel.

Local lifecycle::

    stopped -> starting -> running -> stopping -> stopped

Cloud lifecycle::

    not_deployed -> deploying -> deployed | failed
    deploying --stop--> not_deployed   (remote changes are not rolled back)

A restart runs the stop and the start under one hold of the command lock, so
no other command for the target can interleave between them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import datetime, timezone
from typing import Any

import httpx
from ulid import ULID

from deckwatch.config.env_loader import build_child_env, load_env_file
from deckwatch.deploy.broadcast import BroadcastChannel
from deckwatch.deploy.health import check_database
from deckwatch.deploy.log_buffer import LogRingBuffer
from deckwatch.deploy.outputs import resolve_deployment_address
from deckwatch.deploy.preflight import PreflightValidator
from deckwatch.deploy.state import DeploymentStateStore
from deckwatch.deploy.supervisor import ProcessHandle, ProcessSupervisor
from deckwatch.deploy.validator import EndpointValidator
from deckwatch.lib.errors import (
    ConfigError,
    PreflightFailedError,
    ProcessExitError,
    ProcessSpawnError,
    StateConflictError,
    UnknownServiceError,
)
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.config import OrchestratorConfig
from deckwatch.models.deployment import (
    ApiHealth,
    ApiStatus,
    CloudState,
    CommandResult,
    DatabaseHealth,
    DeploymentStatus,
    DeploymentTarget,
    LocalState,
    is_idle,
)
from deckwatch.models.endpoint import ValidationReport
from deckwatch.models.log_entry import LogEntry, Severity
from deckwatch.models.process import ProcessInfo

logger = get_logger(__name__)

LOCAL = DeploymentTarget.LOCAL
CLOUD = DeploymentTarget.CLOUD

# Environment variable carrying the selected service to the cloud tool
SERVICE_ENV_VAR = "DECKWATCH_SERVICE"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentStateMachine:
    """Owns the store, log buffer, broadcast hub, supervisor and validators.

    Attributes:
        config: Orchestrator configuration
        store: Committed per-target state
        logs: Per-channel log ring buffer
        broadcast: Observer fan-out
        supervisor: Child process owner
        validator: Endpoint probe runner
        preflight: Cloud deployment gate
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Wire the orchestrator components together.

        Args:
            config: Orchestrator configuration
            transport: Optional httpx transport for endpoint probes (tests)
        """
        self.config = config
        self.logs = LogRingBuffer(config.log_capacity)
        self.store = DeploymentStateStore()
        self.broadcast = BroadcastChannel(
            snapshot_provider=self.store.snapshot,
            tail_provider=self.logs.tail,
            queue_size=config.server.observer_queue_size,
            replay_tail=config.replay_tail,
        )
        self.store.listeners.append(self.broadcast.publish_state)
        self.supervisor = ProcessSupervisor(
            log_sink=self.record, grace_period=config.grace_period
        )
        self.validator = EndpointValidator(
            timeout=config.validation.timeout, transport=transport
        )
        self.preflight = PreflightValidator(
            self.supervisor, config.preflight, config.working_dir
        )
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def record(self, entry: LogEntry) -> LogEntry:
        """Append an entry to its channel and publish it to observers."""
        self.logs.append(entry.channel, entry)
        logger.info(
            f"[{entry.channel.value.upper()}] [{entry.severity.value.upper()}] "
            f"{entry.message}"
        )
        self.broadcast.publish_log(entry)
        return entry

    def log(
        self,
        channel: DeploymentTarget,
        severity: Severity,
        message: str,
        service: str = "system",
    ) -> LogEntry:
        """Create and record a log entry."""
        return self.record(
            LogEntry(
                channel=channel, severity=severity, message=message, service=service
            )
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(
        self,
        target: DeploymentTarget,
        service: str = "all",
        environment: str | None = None,
    ) -> CommandResult:
        """Start a deployment target.

        Raises:
            StateConflictError: If the target is not idle or busy
            UnknownServiceError: If the local service is not configured
            PreflightFailedError: If the cloud preflight check fails
            ProcessSpawnError: If the process cannot be launched
        """
        if target == LOCAL:
            return await self.start_local(service)
        return await self.start_cloud(service, environment)

    async def stop(self, target: DeploymentTarget) -> CommandResult:
        """Stop a deployment target.

        Raises:
            StateConflictError: If the target is idle or busy
        """
        if target == LOCAL:
            return await self.stop_local()
        return await self.stop_cloud()

    async def restart(
        self,
        target: DeploymentTarget,
        service: str = "all",
        environment: str | None = None,
    ) -> CommandResult:
        """Stop a deployment target if it is active, then start it again.

        Raises:
            StateConflictError: If another command for the target is resolving
            UnknownServiceError: If the local service is not configured
            PreflightFailedError: If the cloud preflight check fails
            ProcessSpawnError: If the process cannot be launched
        """
        if target == LOCAL:
            return await self.restart_local(service)
        return await self.restart_cloud(service, environment)

    async def start_local(self, service: str = "all") -> CommandResult:
        """Spawn the local launcher for a service."""
        async with self.store.command(LOCAL) as status:
            if not is_idle(LOCAL, status.state):
                raise StateConflictError(
                    target=LOCAL.value,
                    reason=StateConflictError.ALREADY_RUNNING,
                    state=status.state,
                    message=f"Local deployment already {status.state}",
                )
            return await self._start_local(service)

    async def stop_local(self) -> CommandResult:
        """Terminate the local process and converge to ``stopped``."""
        async with self.store.command(LOCAL) as status:
            if is_idle(LOCAL, status.state):
                raise StateConflictError(
                    target=LOCAL.value,
                    reason=StateConflictError.NOT_RUNNING,
                    state=status.state,
                    message="No local deployment running",
                )
            status = await self._stop_local(status)

        return CommandResult(
            message="Local services stopped", target=LOCAL, state=status.state
        )

    async def restart_local(self, service: str = "all") -> CommandResult:
        """Stop the local launcher if it is active and start it for ``service``."""
        async with self.store.command(LOCAL) as status:
            if self.config.local.resolve_args(service) is None:
                raise UnknownServiceError(service, sorted(self.config.local.services))
            if not is_idle(LOCAL, status.state):
                self.log(LOCAL, Severity.INFO, "Restarting local services...")
                await self._stop_local(status)
            return await self._start_local(service)

    async def start_cloud(
        self, service: str = "all", environment: str | None = None
    ) -> CommandResult:
        """Run the preflight gate, then launch the infrastructure tool."""
        async with self.store.command(CLOUD) as status:
            if not is_idle(CLOUD, status.state):
                raise StateConflictError(
                    target=CLOUD.value,
                    reason=StateConflictError.ALREADY_RUNNING,
                    state=status.state,
                    message="Cloud deployment already in progress",
                )
            return await self._start_cloud(service, environment)

    async def stop_cloud(self) -> CommandResult:
        """Kill an in-flight infrastructure tool and reset to ``not_deployed``.

        Remote changes the tool already applied are left as they are.
        """
        async with self.store.command(CLOUD) as status:
            if status.state != CloudState.DEPLOYING.value:
                raise StateConflictError(
                    target=CLOUD.value,
                    reason=StateConflictError.NOT_RUNNING,
                    state=status.state,
                    message="No cloud deployment in progress",
                )
            status = await self._stop_cloud(status)

        return CommandResult(
            message="Cloud deployment stopped", target=CLOUD, state=status.state
        )

    async def restart_cloud(
        self, service: str = "all", environment: str | None = None
    ) -> CommandResult:
        """Kill an in-flight deployment, if any, and deploy again."""
        async with self.store.command(CLOUD) as status:
            if status.state == CloudState.DEPLOYING.value:
                self.log(CLOUD, Severity.INFO, "Restarting cloud deployment...")
                await self._stop_cloud(status)
            return await self._start_cloud(service, environment)

    # Command bodies below run with the target's command lock held.

    async def _start_local(self, service: str) -> CommandResult:
        local = self.config.local
        command = local.resolve_args(service)
        if command is None:
            raise UnknownServiceError(service, sorted(local.services))

        self.log(LOCAL, Severity.INFO, f"Starting local deployment for: {service}")
        self.store.commit(
            LOCAL,
            state=LocalState.STARTING,
            selected_service=service,
            started_at=_now(),
            ended_at=None,
            result_metadata={},
            active_process_id=None,
        )

        try:
            handle = await self.supervisor.spawn(
                command,
                target=LOCAL,
                service=service,
                cwd=self.config.working_dir,
                port=local.port,
                on_exit=self._on_local_exit,
            )
        except ProcessSpawnError as exc:
            self.log(
                LOCAL,
                Severity.ERROR,
                f"Failed to start local deployment: {exc.message}",
            )
            self.store.commit(LOCAL, state=LocalState.STOPPED, ended_at=_now())
            raise

        status = self.store.commit(LOCAL, active_process_id=handle.id)
        self._spawn_task(LOCAL, self._confirm_local_start(handle))
        return CommandResult(
            message=f"Local {service} deployment started",
            target=LOCAL,
            state=status.state,
            process_id=handle.id,
            port=local.port,
        )

    async def _stop_local(self, status: DeploymentStatus) -> DeploymentStatus:
        prior_state = status.state
        self.log(LOCAL, Severity.INFO, "Stopping local services...")
        self.store.commit(LOCAL, state=LocalState.STOPPING)

        handle = (
            self.supervisor.get(status.active_process_id)
            if status.active_process_id
            else None
        )
        if handle is not None:
            await self.supervisor.terminate(handle)
            self._finalize_local_exit(handle)
            return self.store.get(LOCAL)

        # The process exited but its exit handler is still waiting for the lock
        if prior_state == LocalState.STARTING.value:
            self.log(
                LOCAL,
                Severity.ERROR,
                f"Local {status.selected_service} service failed during startup",
            )
        else:
            self.log(LOCAL, Severity.INFO, "Local service had already exited")
        return self.store.commit(
            LOCAL,
            state=LocalState.STOPPED,
            active_process_id=None,
            ended_at=_now(),
            result_metadata={},
        )

    async def _start_cloud(
        self, service: str, environment: str | None
    ) -> CommandResult:
        cloud = self.config.cloud
        environment = environment or cloud.default_environment

        if self.preflight.enabled:
            self.log(CLOUD, Severity.INFO, "Running preflight consistency check...")
            try:
                await self.preflight.check()
            except PreflightFailedError as exc:
                self.log(
                    CLOUD,
                    Severity.WARNING,
                    f"{exc.message}; deployment not started",
                )
                raise
            self.log(CLOUD, Severity.SUCCESS, "Preflight consistency check passed")

        extra_env = {SERVICE_ENV_VAR: service}
        if cloud.env_file:
            env_path = self.config.working_dir / cloud.env_file
            extra_env = {**load_env_file(env_path), **extra_env}
            self.log(CLOUD, Severity.INFO, "Reloaded environment configuration")

        deployment_id = f"deploy-{ULID()}"
        command = [*cloud.command, environment]
        started_at = _now()
        self.log(
            CLOUD,
            Severity.INFO,
            f"Starting cloud deployment for: {service} ({environment})",
        )
        self.log(CLOUD, Severity.INFO, f"Command: {' '.join(command)}")
        self.store.commit(
            CLOUD,
            state=CloudState.DEPLOYING,
            selected_service=service,
            environment=environment,
            deployment_id=deployment_id,
            started_at=started_at,
            ended_at=None,
            result_metadata={},
            active_process_id=None,
        )

        try:
            handle = await self.supervisor.spawn(
                command,
                target=CLOUD,
                service=service,
                cwd=self.config.working_dir,
                env=build_child_env(extra_env),
            )
        except ProcessSpawnError as exc:
            self.log(
                CLOUD,
                Severity.ERROR,
                f"Failed to start cloud deployment: {exc.message}",
            )
            self.store.commit(CLOUD, state=CloudState.FAILED, ended_at=_now())
            raise

        status = self.store.commit(CLOUD, active_process_id=handle.id)
        self._spawn_task(
            CLOUD, self._await_cloud_deployment(handle, deployment_id, started_at)
        )
        return CommandResult(
            message=f"Cloud deployment started for {service}",
            target=CLOUD,
            state=status.state,
            process_id=handle.id,
            deployment_id=deployment_id,
        )

    async def _stop_cloud(self, status: DeploymentStatus) -> DeploymentStatus:
        self.log(CLOUD, Severity.WARNING, "Stopping cloud deployment...")
        handle = (
            self.supervisor.get(status.active_process_id)
            if status.active_process_id
            else None
        )
        if handle is not None:
            result = await self.supervisor.terminate(handle)
            how = "killed" if result.killed else "terminated"
            self.log(
                CLOUD,
                Severity.INFO,
                f"Deployment tool {how}; already applied remote changes "
                "are not rolled back",
            )
        return self.store.commit(
            CLOUD,
            state=CloudState.NOT_DEPLOYED,
            active_process_id=None,
            deployment_id=None,
            ended_at=_now(),
            result_metadata={},
        )

    async def test_endpoints(self, base_url: str | None = None) -> ValidationReport:
        """Probe the configured endpoints and record the batch.

        Without ``base_url`` the deployed cloud address is used, then the
        configured default. Results bound to a cloud deployment are
        discarded if that deployment changes while probing.

        Raises:
            ConfigError: If no base URL can be determined
        """
        if base_url:
            return await self._validate(base_url, bind=False)

        cloud = self.store.get(CLOUD)
        deployed_url = cloud.result_metadata.get("api_url")
        if deployed_url:
            return await self._validate(deployed_url, bind=True)

        default_url = self.config.validation.default_base_url
        if default_url:
            return await self._validate(default_url, bind=False)

        raise ConfigError(
            "baseUrl", "No base URL given and no deployed endpoint address is known"
        )

    async def refresh_database(self) -> DatabaseHealth:
        """Re-check database reachability and record the result."""
        if self.config.database.host is None:
            return self.store.health.database
        health = await check_database(self.config.database)
        self.store.update_database(health)
        return health

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self) -> dict[str, str]:
        """Coarse status strings for every target and health component."""
        snapshot = self.store.snapshot()
        return {
            "local": snapshot.local.state,
            "cloud": snapshot.cloud.state,
            "database": snapshot.database.status.value,
            "api": snapshot.api.status.value,
        }

    def processes(self) -> list[ProcessInfo]:
        """Currently tracked processes."""
        return self.supervisor.list_processes()

    def tail_logs(self, channel: str, limit: int) -> list[LogEntry]:
        """Return the last ``limit`` entries of a channel, or of both for ``all``.

        Raises:
            ValueError: If the channel is unknown
        """
        if channel == "all":
            return self.logs.merged_tail(limit)
        return self.logs.tail(DeploymentTarget(channel), limit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Terminate every process, cancel background work, drop observers."""
        logger.info("Shutting down orchestrator")
        await self.supervisor.terminate_all()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.broadcast.close_all()

    # ------------------------------------------------------------------
    # Internal transitions
    # ------------------------------------------------------------------

    async def _confirm_local_start(self, handle: ProcessHandle) -> None:
        await asyncio.sleep(self.config.local.startup_delay)
        async with self.store.lock(LOCAL) as status:
            if (
                status.active_process_id != handle.id
                or status.state != LocalState.STARTING.value
                or handle.exited
            ):
                return
            self.log(
                LOCAL,
                Severity.SUCCESS,
                f"Local {handle.service} service started on port {handle.port}",
            )
            self.store.commit(
                LOCAL,
                state=LocalState.RUNNING,
                result_metadata={"port": handle.port, "pid": handle.pid},
            )

    async def _on_local_exit(self, handle: ProcessHandle) -> None:
        async with self.store.lock(LOCAL):
            self._finalize_local_exit(handle)

    def _finalize_local_exit(self, handle: ProcessHandle) -> None:
        """Record a local process exit. Caller holds the local lock."""
        status = self.store.get(LOCAL)
        if status.active_process_id != handle.id:
            return

        result = handle.result
        code = result.exit_code if result else None
        service = handle.service
        if status.state == LocalState.STOPPING.value:
            suffix = " (forced)" if result and result.killed else ""
            self.log(LOCAL, Severity.INFO, f"Local {service} service stopped{suffix}")
        elif status.state == LocalState.STARTING.value:
            self.log(
                LOCAL,
                Severity.ERROR,
                f"Local {service} service failed during startup (exit code {code})",
            )
        elif result is not None and result.succeeded:
            self.log(LOCAL, Severity.INFO, f"Local {service} service stopped normally")
        else:
            self.log(
                LOCAL,
                Severity.ERROR,
                f"Local {service} service stopped with code {code}",
            )

        self.store.commit(
            LOCAL,
            state=LocalState.STOPPED,
            active_process_id=None,
            ended_at=result.ended_at if result else _now(),
            result_metadata={},
        )

    async def _await_cloud_deployment(
        self, handle: ProcessHandle, deployment_id: str, started_at: datetime
    ) -> None:
        result = await handle.wait()
        output_text = "\n".join(handle.output)
        cloud = self.config.cloud

        async with self.store.lock(CLOUD) as status:
            if (
                status.deployment_id != deployment_id
                or status.state != CloudState.DEPLOYING.value
            ):
                logger.info(f"Discarding result of superseded {deployment_id}")
                return

            if not result.succeeded:
                error = ProcessExitError(
                    handle.command, result.exit_code, list(handle.output)
                )
                self.log(
                    CLOUD, Severity.ERROR, f"Deployment script failed: {error.message}"
                )
                self.store.commit(
                    CLOUD,
                    state=CloudState.FAILED,
                    active_process_id=None,
                    ended_at=result.ended_at,
                )
                return

            artifact_path = (
                self.config.working_dir / cloud.outputs_file
                if cloud.outputs_file
                else None
            )
            address, outputs, source = resolve_deployment_address(
                artifact_path=artifact_path,
                output_key=cloud.url_output_key,
                output_text=output_text,
                url_pattern=cloud.url_pattern,
                not_before=started_at,
            )
            if address:
                self.log(CLOUD, Severity.SUCCESS, f"API URL: {address}")
            else:
                self.log(
                    CLOUD,
                    Severity.WARNING,
                    "Deployment reported no endpoint address",
                )
            self.log(
                CLOUD, Severity.SUCCESS, "Deployment script completed successfully"
            )
            self.store.commit(
                CLOUD,
                state=CloudState.DEPLOYED,
                active_process_id=None,
                ended_at=result.ended_at,
                result_metadata={
                    "deployment_id": deployment_id,
                    "api_url": address,
                    "address_source": source,
                    "outputs": outputs,
                },
            )

        if address and cloud.auto_validate:
            self.log(CLOUD, Severity.INFO, "Testing deployed API endpoints...")
            self._spawn_task(CLOUD, self._delayed_validation(address, deployment_id))

    async def _delayed_validation(self, address: str, deployment_id: str) -> None:
        await asyncio.sleep(self.config.cloud.validation_delay)
        status = self.store.get(CLOUD)
        if (
            status.deployment_id != deployment_id
            or status.state != CloudState.DEPLOYED.value
        ):
            logger.info(f"Skipping validation of superseded deployment {deployment_id}")
            return
        await self._validate(address, bind=True)

    async def _validate(self, base_url: str, bind: bool) -> ValidationReport:
        cloud = self.store.get(CLOUD)
        bound_revision = cloud.revision if bind else None
        deployment_id = cloud.deployment_id if bind else None
        previous = self.store.health.api

        self.log(
            CLOUD, Severity.INFO, f"Starting API endpoint testing against {base_url}"
        )
        self.store.update_api(
            previous.model_copy(
                update={"status": ApiStatus.TESTING, "base_url": base_url}
            )
        )

        def report(severity: Severity, message: str) -> None:
            self.log(CLOUD, severity, message)

        report_ = await self.validator.run(
            base_url,
            self.config.validation.probes,
            deployment_id=deployment_id,
            report=report,
        )

        if bind and self.store.get(CLOUD).revision != bound_revision:
            self.log(
                CLOUD,
                Severity.WARNING,
                "Discarding endpoint results: cloud deployment changed during testing",
            )
            self.store.update_api(previous)
            return report_.model_copy(update={"stale": True})

        self.store.update_api(
            ApiHealth(
                status=ApiStatus.HEALTHY if report_.healthy else ApiStatus.UNHEALTHY,
                base_url=base_url,
                endpoints=report_.results,
                passed=report_.passed,
                total=report_.total,
                last_test=report_.finished_at,
            )
        )
        severity = Severity.SUCCESS if report_.healthy else Severity.WARNING
        self.log(
            CLOUD,
            severity,
            f"API endpoint testing completed: {report_.passed}/{report_.total} passed",
        )
        return report_

    def _spawn_task(
        self, channel: DeploymentTarget, coro: Coroutine[Any, Any, None]
    ) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task[None]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("Background task failed", exc_info=exc)
                self.log(channel, Severity.ERROR, f"System error: {exc}")

        task.add_done_callback(_done)
        return task
