"""Orchestrator control server.

Provides the FastAPI application factory and server lifecycle management
for the control surface (request/response routes) and the event surface
(a WebSocket streaming log and state events).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Body, FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from deckwatch import __version__
from deckwatch.deploy.broadcast import Observer
from deckwatch.deploy.machine import DeploymentStateMachine
from deckwatch.lib.errors import InvalidRequestError
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.config import OrchestratorConfig
from deckwatch.models.deployment import CommandResult, DeploymentTarget
from deckwatch.models.endpoint import ValidationReport
from deckwatch.serve.middleware import LoggingMiddleware, register_exception_handlers
from deckwatch.serve.models import (
    CloudStartRequest,
    CommandResponse,
    DetailedStatusResponse,
    HealthResponse,
    LocalStartRequest,
    LogsResponse,
    ProcessesResponse,
    ServerState,
    StatusResponse,
    TestEndpointsRequest,
    ValidationResponse,
)

logger = get_logger(__name__)

LOG_CHANNELS = ("local", "cloud", "all")


def _command_response(result: CommandResult) -> CommandResponse:
    return CommandResponse(**result.model_dump(mode="json"))


def _validation_response(report: ValidationReport) -> ValidationResponse:
    return ValidationResponse(
        healthy=report.healthy,
        base_url=report.base_url,
        passed=report.passed,
        total=report.total,
        results=report.results,
        deployment_id=report.deployment_id,
        stale=report.stale,
    )


class OrchestratorServer:
    """HTTP and WebSocket server in front of the deployment state machine.

    Attributes:
        config: Orchestrator configuration
        machine: The deployment state machine every route delegates to
        host: The hostname to bind to
        port: The port to listen on
        state: The current server state
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        machine: DeploymentStateMachine | None = None,
        debug: bool = False,
    ) -> None:
        """Initialize the orchestrator server.

        Args:
            config: Orchestrator configuration.
            machine: Pre-built state machine (a fresh one is created if None).
            debug: Log every request at INFO (default: False).
        """
        self.config = config
        self.machine = machine or DeploymentStateMachine(config)
        self.host = config.server.host
        self.port = config.server.port
        self.cors_origins = config.server.cors_origins or ["*"]
        self.debug = debug

        if self.host == "0.0.0.0":  # noqa: S104
            logger.warning(
                "Server binding to 0.0.0.0 exposes deployment control to all "
                "network interfaces. Use 127.0.0.1 for local-only access."
            )

        self.state = ServerState.INITIALIZING
        self._app: FastAPI | None = None
        self._start_time: datetime | None = None

    @property
    def is_ready(self) -> bool:
        """Check if the server is ready to accept requests."""
        return self.state in (ServerState.READY, ServerState.RUNNING)

    @property
    def uptime_seconds(self) -> float:
        """Return server uptime in seconds."""
        if self._start_time is None:
            return 0.0
        delta = datetime.now(timezone.utc) - self._start_time
        return delta.total_seconds()

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application.

        Returns:
            Configured FastAPI application instance.
        """

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncIterator[None]:
            await self.start()
            yield
            await self.stop()

        app = FastAPI(
            title="deckwatch",
            description="Deployment orchestration and live monitoring",
            version=__version__,
            lifespan=lifespan,
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        # Added last so it runs outermost and sees CORS-decorated responses
        app.add_middleware(LoggingMiddleware, debug=self.debug)
        register_exception_handlers(app)

        self._register_health_endpoints(app)
        self._register_deployment_endpoints(app)
        self._register_query_endpoints(app)
        self._register_event_stream(app)

        app.state.server = self
        self._app = app
        self.state = ServerState.READY
        logger.info("FastAPI app created for deckwatch orchestrator")
        return app

    def _register_health_endpoints(self, app: FastAPI) -> None:
        @app.get("/health", response_model=HealthResponse, tags=["Health"])
        async def health() -> HealthResponse:
            """Liveness of the orchestrator itself."""
            return HealthResponse(
                status="healthy" if self.is_ready else "unhealthy",
                server_state=self.state,
                observers=self.machine.broadcast.observer_count,
                uptime_seconds=self.uptime_seconds,
                started_at=self._start_time,
            )

        @app.get("/status", response_model=StatusResponse, tags=["Status"])
        async def status() -> StatusResponse:
            """Coarse status of both targets, the database and the API."""
            await self.machine.refresh_database()
            return StatusResponse(**self.machine.status())

        @app.get(
            "/status/detail", response_model=DetailedStatusResponse, tags=["Status"]
        )
        async def status_detail() -> DetailedStatusResponse:
            """Full committed status records."""
            snapshot = self.machine.store.snapshot()
            return DetailedStatusResponse(**dict(snapshot))

    def _register_deployment_endpoints(self, app: FastAPI) -> None:
        machine = self.machine

        @app.post(
            "/deployment/local/start",
            response_model=CommandResponse,
            tags=["Deployment"],
        )
        async def local_start(
            request: LocalStartRequest | None = Body(default=None),
        ) -> CommandResponse:
            request = request or LocalStartRequest()
            result = await machine.start(DeploymentTarget.LOCAL, request.service)
            return _command_response(result)

        @app.post(
            "/deployment/local/stop",
            response_model=CommandResponse,
            tags=["Deployment"],
        )
        async def local_stop() -> CommandResponse:
            return _command_response(await machine.stop(DeploymentTarget.LOCAL))

        @app.post(
            "/deployment/local/restart",
            response_model=CommandResponse,
            tags=["Deployment"],
        )
        async def local_restart(
            request: LocalStartRequest | None = Body(default=None),
        ) -> CommandResponse:
            request = request or LocalStartRequest()
            result = await machine.restart(DeploymentTarget.LOCAL, request.service)
            return _command_response(result)

        @app.post(
            "/deployment/cloud/start",
            response_model=CommandResponse,
            tags=["Deployment"],
        )
        async def cloud_start(
            request: CloudStartRequest | None = Body(default=None),
        ) -> CommandResponse:
            request = request or CloudStartRequest()
            result = await machine.start(
                DeploymentTarget.CLOUD, request.service, request.environment
            )
            return _command_response(result)

        @app.post(
            "/deployment/cloud/stop",
            response_model=CommandResponse,
            tags=["Deployment"],
        )
        async def cloud_stop() -> CommandResponse:
            return _command_response(await machine.stop(DeploymentTarget.CLOUD))

        @app.post(
            "/deployment/cloud/restart",
            response_model=CommandResponse,
            tags=["Deployment"],
        )
        async def cloud_restart(
            request: CloudStartRequest | None = Body(default=None),
        ) -> CommandResponse:
            request = request or CloudStartRequest()
            result = await machine.restart(
                DeploymentTarget.CLOUD, request.service, request.environment
            )
            return _command_response(result)

        @app.post(
            "/test-endpoints", response_model=ValidationResponse, tags=["Validation"]
        )
        async def test_endpoints(
            request: TestEndpointsRequest | None = Body(default=None),
        ) -> ValidationResponse:
            base_url = request.base_url if request else None
            report = await machine.test_endpoints(base_url)
            return _validation_response(report)

    def _register_query_endpoints(self, app: FastAPI) -> None:
        machine = self.machine
        default_limit = min(50, self.config.log_capacity)

        @app.get(
            "/deployment/logs/{channel}", response_model=LogsResponse, tags=["Logs"]
        )
        async def logs(
            channel: str,
            limit: int = Query(default=default_limit, ge=1),
        ) -> LogsResponse:
            if channel not in LOG_CHANNELS:
                raise InvalidRequestError(
                    f"Unknown log channel '{channel}'. "
                    f"Expected one of: {', '.join(LOG_CHANNELS)}"
                )
            entries = machine.tail_logs(channel, limit)
            return LogsResponse(channel=channel, logs=entries, count=len(entries))

        @app.get("/processes", response_model=ProcessesResponse, tags=["Processes"])
        async def processes() -> ProcessesResponse:
            tracked = machine.processes()
            return ProcessesResponse(processes=tracked, count=len(tracked))

    def _register_event_stream(self, app: FastAPI) -> None:
        @app.websocket("/ws")
        async def events(websocket: WebSocket) -> None:
            await websocket.accept()
            observer = self.machine.broadcast.connect()
            sender = asyncio.create_task(self._pump(websocket, observer))
            receiver = asyncio.create_task(self._drain(websocket))
            try:
                await asyncio.wait(
                    {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                self.machine.broadcast.disconnect(observer)
                for task in (sender, receiver):
                    task.cancel()
                await asyncio.gather(sender, receiver, return_exceptions=True)
                if observer.dropped:
                    logger.info(
                        f"Observer {observer.id} dropped {observer.dropped} events"
                    )

    @staticmethod
    async def _pump(websocket: WebSocket, observer: Observer) -> None:
        """Forward queued events until the observer is closed."""
        async for event in observer:
            await websocket.send_json(event)
        await websocket.close(code=1001)

    @staticmethod
    async def _drain(websocket: WebSocket) -> None:
        """Consume inbound frames until the client disconnects."""
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return
        except WebSocketDisconnect:
            return

    async def start(self) -> None:
        """Mark the server running and record the start time."""
        if self._app is None:
            self.create_app()

        self._start_time = datetime.now(timezone.utc)
        self.state = ServerState.RUNNING
        logger.info(f"Orchestrator started at http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the server gracefully.

        Every tracked process is terminated under the grace-period contract
        and every observer is disconnected.
        """
        self.state = ServerState.SHUTTING_DOWN
        process_count = len(self.machine.processes())
        await self.machine.shutdown()
        self.state = ServerState.STOPPED
        logger.info(
            f"Orchestrator stopped. Terminated {process_count} tracked processes."
        )
