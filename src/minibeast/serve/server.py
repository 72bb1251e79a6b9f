"""Deployer API server implementation.

Provides the FastAPI application factory and server lifecycle management
for the deployment API.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from minibeast import __version__
from minibeast.config.validator import summarize_errors
from minibeast.deploy.service import DeploymentService
from minibeast.lib.logging_config import get_logger
from minibeast.models.config import ServerSettings
from minibeast.serve.middleware import ErrorHandlingMiddleware, LoggingMiddleware
from minibeast.serve.models import HealthResponse, MessageResponse, ServerState
from minibeast.serve.routes import router

logger = get_logger(__name__)


class DeployerServer:
    """HTTP server exposing the deployment API.

    Attributes:
        settings: Resolved server settings.
        service: Deployment service shared by all requests.
        state: The current server state.
    """

    def __init__(
        self,
        settings: ServerSettings,
        service: DeploymentService | None = None,
    ) -> None:
        """Initialize the deployer server.

        Args:
            settings: Resolved server settings.
            service: Deployment service (built from settings when omitted).
        """
        self.settings = settings
        self.service = service or DeploymentService(settings.modules_dir)

        # Warn if binding to all interfaces
        if settings.host == "0.0.0.0":  # noqa: S104
            logger.warning(
                "Server binding to 0.0.0.0 exposes it to all network interfaces. "
                "Use 127.0.0.1 for local-only access."
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
        app = FastAPI(
            title="MiniBeast Data Deployer",
            description="Provision AWS resources for uploaded validator images",
            version=__version__,
            lifespan=self._lifespan,
        )
        app.state.settings = self.settings
        app.state.service = self.service

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Middleware order matters: Starlette executes in reverse order of addition.
        # Request flow:  Logging -> ErrorHandling -> CORS -> Handler
        # Response flow: Handler -> CORS -> ErrorHandling -> Logging
        app.add_middleware(ErrorHandlingMiddleware, debug=self.settings.debug)
        app.add_middleware(LoggingMiddleware, debug=self.settings.debug)

        self._register_exception_handlers(app)
        self._register_health_endpoints(app)
        app.include_router(router)

        self._app = app
        self.state = ServerState.READY

        logger.info(
            f"FastAPI app created with data dir '{self.settings.data_dir}' "
            f"and upload dir '{self.settings.upload_dir}'"
        )
        return app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        await self.start()
        yield
        await self.stop()

    def _register_exception_handlers(self, app: FastAPI) -> None:
        """Render client errors in the ``{success, message}`` envelope."""

        @app.exception_handler(HTTPException)
        async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
            body = MessageResponse(success=False, message=str(exc.detail))
            return JSONResponse(
                status_code=exc.status_code,
                content=body.model_dump(by_alias=True, exclude_none=True),
                headers=getattr(exc, "headers", None),
            )

        @app.exception_handler(RequestValidationError)
        async def validation_error(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            body = MessageResponse(success=False, message=summarize_errors(exc.errors()))
            return JSONResponse(
                status_code=400,
                content=body.model_dump(by_alias=True, exclude_none=True),
            )

    def _register_health_endpoints(self, app: FastAPI) -> None:
        """Register health check endpoints.

        Args:
            app: The FastAPI application.
        """

        @app.get("/health", response_model=HealthResponse, tags=["Health"])
        async def health() -> HealthResponse:
            """Basic health check endpoint."""
            return HealthResponse(
                status="healthy" if self.is_ready else "unhealthy",
                ready=self.is_ready,
                active_deployments=self.service.active_runs,
                uptime_seconds=self.uptime_seconds,
            )

        @app.get("/ready", tags=["Health"])
        async def ready() -> dict[str, bool]:
            """Readiness check endpoint for orchestrators."""
            return {"ready": self.is_ready}

    async def start(self) -> None:
        """Transition the server to the RUNNING state."""
        if self._app is None:
            self.create_app()

        self._start_time = datetime.now(timezone.utc)
        self.state = ServerState.RUNNING
        logger.info(
            f"Deployer server started at http://{self.settings.host}:"
            f"{self.settings.port}"
        )

    async def stop(self) -> None:
        """Stop the server gracefully, cancelling in-flight deployments."""
        self.state = ServerState.SHUTTING_DOWN
        await self.service.shutdown()
        self.state = ServerState.STOPPED
        logger.info("Deployer server stopped.")
