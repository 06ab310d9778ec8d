"""Subprocess supervision for local services and infrastructure tools.

The supervisor exclusively owns every ProcessHandle. Other components refer
to a process by its id; termination and handle lifecycle stay here.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from ulid import ULID

from deckwatch.config.defaults import DEFAULT_GRACE_PERIOD
from deckwatch.lib.errors import ProcessExitError, ProcessSpawnError
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.deployment import DeploymentTarget
from deckwatch.models.log_entry import LogEntry, Severity
from deckwatch.models.process import ProcessInfo, ProcessResult

logger = get_logger(__name__)

LogSink = Callable[[LogEntry], None]
ExitCallback = Callable[["ProcessHandle"], Awaitable[None]]

# Lines retained per handle for result extraction
OUTPUT_HISTORY = 5000
# Time allowed for stream readers to drain after the process exits
DRAIN_TIMEOUT = 1.0
# Per-line read limit for child output
STREAM_LIMIT = 1024 * 1024

_POSIX = os.name == "posix"


@dataclass(eq=False)
class ProcessHandle:
    """One supervised subprocess.

    Attributes:
        id: Opaque identifier (ULID)
        target: Deployment target the process belongs to
        service: Service label used for log entries
        command: Full argv
        process: Underlying asyncio process
        started_at: UTC spawn time
        port: Port the process is expected to bind, if any
        result: Exit result, filled by the watcher
        output: Recent stdout/stderr lines in arrival order
    """

    target: DeploymentTarget
    service: str
    command: list[str]
    process: asyncio.subprocess.Process
    id: str = field(default_factory=lambda: str(ULID()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    port: int | None = None
    result: ProcessResult | None = None
    output: deque[str] = field(default_factory=lambda: deque(maxlen=OUTPUT_HISTORY))
    killed: bool = False
    _done: asyncio.Event = field(default_factory=asyncio.Event)
    _watcher: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        """OS process id."""
        return self.process.pid

    @property
    def exited(self) -> bool:
        """True once the watcher has recorded a result."""
        return self.result is not None

    async def wait(self) -> ProcessResult:
        """Suspend until the process has exited and its output is drained."""
        await self._done.wait()
        if self.result is None:
            raise RuntimeError(f"Process {self.id} finished without a result")
        return self.result

    def info(self) -> ProcessInfo:
        """Return a frozen public view of this handle."""
        return ProcessInfo(
            id=self.id,
            target=self.target,
            service=self.service,
            command=list(self.command),
            pid=self.pid,
            started_at=self.started_at,
            port=self.port,
            status="exited" if self.exited else "running",
            result=self.result,
        )


class ProcessSupervisor:
    """Spawns, tracks and terminates child processes.

    Output lines are forwarded to ``log_sink`` as they arrive: stdout at
    ``info`` and stderr at ``warning`` severity, under the owning channel.
    """

    def __init__(
        self,
        log_sink: LogSink,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        """Initialize the supervisor.

        Args:
            log_sink: Receives a LogEntry for every output line
            grace_period: Seconds between graceful and forceful termination
        """
        self._log_sink = log_sink
        self.grace_period = grace_period
        self._handles: dict[str, ProcessHandle] = {}

    async def spawn(
        self,
        command: list[str],
        *,
        target: DeploymentTarget,
        service: str,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        port: int | None = None,
        on_exit: ExitCallback | None = None,
    ) -> ProcessHandle:
        """Launch a subprocess and return its handle without waiting for exit.

        Args:
            command: Full argv
            target: Channel the output is logged under
            service: Service label for log entries
            cwd: Working directory
            env: Complete child environment (inherits ours when None)
            port: Port the process is expected to bind
            on_exit: Awaited by the watcher after the result is recorded

        Returns:
            Handle of the running process

        Raises:
            ProcessSpawnError: If the OS refuses to launch the command
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                limit=STREAM_LIMIT,
                start_new_session=_POSIX,
            )
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to spawn {command!r}: {exc}")
            raise ProcessSpawnError(command, exc) from exc

        handle = ProcessHandle(
            target=target,
            service=service,
            command=list(command),
            process=process,
            port=port,
        )
        self._handles[handle.id] = handle
        handle._watcher = asyncio.create_task(
            self._watch(handle, on_exit), name=f"watch-{handle.id}"
        )
        logger.info(
            f"Spawned {target.value} process {handle.id} (pid {process.pid}): "
            f"{' '.join(command)}"
        )
        return handle

    async def run(
        self,
        command: list[str],
        *,
        target: DeploymentTarget,
        service: str,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> tuple[str, ProcessResult]:
        """Spawn a process and suspend until it exits.

        Returns:
            Combined output text and the exit result

        Raises:
            ProcessSpawnError: If the command cannot be launched
            ProcessExitError: If it exits non-zero or exceeds ``timeout``
        """
        handle = await self.spawn(
            command, target=target, service=service, cwd=cwd, env=env
        )
        try:
            result = await asyncio.wait_for(handle.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Process {handle.id} exceeded {timeout}s, terminating")
            result = await self.terminate(handle)
            raise ProcessExitError(
                command, result.exit_code, list(handle.output)
            ) from None

        output = "\n".join(handle.output)
        if not result.succeeded:
            raise ProcessExitError(command, result.exit_code, list(handle.output))
        return output, result

    async def terminate(
        self, handle: ProcessHandle, grace_period: float | None = None
    ) -> ProcessResult:
        """Stop a process: graceful signal first, forceful kill after the grace period.

        When this returns the handle has an exit result; no handle survives it.
        """
        if handle.result is not None:
            return handle.result

        grace = self.grace_period if grace_period is None else grace_period
        logger.info(f"Terminating process {handle.id} (grace {grace}s)")
        self._signal(handle, signal.SIGTERM)
        try:
            return await asyncio.wait_for(handle.wait(), grace)
        except asyncio.TimeoutError:
            logger.warning(f"Process {handle.id} ignored SIGTERM, killing")
            handle.killed = True
            self._signal(handle, signal.SIGKILL if _POSIX else signal.SIGTERM)
            return await handle.wait()

    async def terminate_all(self, grace_period: float | None = None) -> None:
        """Terminate every tracked process concurrently."""
        handles = list(self._handles.values())
        if handles:
            await asyncio.gather(
                *(self.terminate(h, grace_period) for h in handles),
                return_exceptions=True,
            )

    def get(self, process_id: str) -> ProcessHandle | None:
        """Return a tracked handle by id."""
        return self._handles.get(process_id)

    def list_processes(self) -> list[ProcessInfo]:
        """Return public views of every live process, oldest first."""
        handles = sorted(self._handles.values(), key=lambda h: h.started_at)
        return [h.info() for h in handles]

    def active_for(self, target: DeploymentTarget) -> list[ProcessHandle]:
        """Return live handles belonging to a target."""
        return [h for h in self._handles.values() if h.target == target]

    def _signal(self, handle: ProcessHandle, sig: int) -> None:
        if handle.process.returncode is not None:
            return
        try:
            if _POSIX:
                os.killpg(handle.process.pid, sig)
            else:
                handle.process.send_signal(sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            # Group may contain a process we cannot signal; fall back to the leader
            handle.process.send_signal(sig)

    async def _read_stream(
        self,
        handle: ProcessHandle,
        stream: asyncio.StreamReader | None,
        severity: Severity,
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than STREAM_LIMIT; skip what is buffered
                logger.warning(f"Oversized output line from process {handle.id}")
                continue
            if not raw:
                break
            message = raw.decode("utf-8", errors="replace").rstrip()
            if not message:
                continue
            handle.output.append(message)
            self._log_sink(
                LogEntry(
                    channel=handle.target,
                    severity=severity,
                    message=message,
                    service=handle.service,
                )
            )

    async def _watch(self, handle: ProcessHandle, on_exit: ExitCallback | None) -> None:
        readers = [
            asyncio.create_task(
                self._read_stream(handle, handle.process.stdout, Severity.INFO)
            ),
            asyncio.create_task(
                self._read_stream(handle, handle.process.stderr, Severity.WARNING)
            ),
        ]
        try:
            returncode = await handle.process.wait()
            _, pending = await asyncio.wait(readers, timeout=DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()
        finally:
            returncode = handle.process.returncode
            signaled = returncode is not None and returncode < 0
            handle.result = ProcessResult(
                exit_code=returncode,
                signal=-returncode if signaled else None,
                killed=handle.killed,
                ended_at=datetime.now(timezone.utc),
            )
            self._handles.pop(handle.id, None)
            handle._done.set()
            logger.info(f"Process {handle.id} exited with code {returncode}")

        if on_exit is not None:
            try:
                await on_exit(handle)
            except Exception:
                logger.exception(f"Exit handler for process {handle.id} failed")
