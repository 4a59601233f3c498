"""
Main FastAPI application entry point.

The app owns the relay lifecycle: it connects to Pulsar, opens the gateway
session and runs the relay worker for as long as the service is up.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api import healthz_router, metrics_router
from .config import Settings, get_settings
from .core.context import PulsarRuntime
from .core.dispatcher import GatewayDispatcher
from .core.exceptions import TrackRelayException
from .core.health import HealthChecker
from .core.metrics import MetricsCollector
from .core.relay import TrackingRelay
from .core.worker import RelayWorker


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # The Pulsar client logs through its own C++ logger at INFO
    logging.getLogger("pulsar").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(settings: Settings) -> Any:
    """Create a lifespan handler with access to settings."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Starts the gateway dispatcher, Pulsar runtime and relay worker,
        and shuts them down in reverse order.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting TrackRelay service", version=app.version)

        metrics_collector = MetricsCollector()
        app.state.metrics = metrics_collector

        dispatcher = GatewayDispatcher(
            timeout_seconds=settings.gateway.timeout_seconds,
            metrics=metrics_collector,
        )
        await dispatcher.start()

        relay = TrackingRelay(
            dispatcher=dispatcher,
            retry_policy=settings.gateway.retry_policy,
            metrics=metrics_collector,
        )

        runtime = PulsarRuntime(settings.pulsar)
        worker: Optional[RelayWorker] = None
        try:
            await runtime.connect()
        except Exception as e:
            if not settings.debug:
                await dispatcher.stop()
                raise
            logger.warning("Continuing in debug mode without Pulsar", error=str(e))
        else:
            worker = RelayWorker(runtime, relay, settings.user_config, metrics_collector)
            await worker.start()

        app.state.health_checker = HealthChecker(runtime, worker, dispatcher)

        try:
            logger.info("TrackRelay service started successfully")
            yield
        finally:
            logger.info("Shutting down TrackRelay service")

            if worker is not None:
                await worker.stop()
            await runtime.disconnect()
            await dispatcher.stop()

            logger.info("TrackRelay service shutdown complete")

    return lifespan


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function ensures all configuration is applied
    whether running via FastAPI CLI or direct execution.
    """
    app_settings = settings or get_settings()

    configure_logging(app_settings.log_level)

    app = FastAPI(
        title="TrackRelay",
        description="Tracking update relay: Pulsar → output topic + HTTP gateway",
        version=__version__,
        lifespan=create_lifespan_handler(app_settings),
    )

    @app.exception_handler(TrackRelayException)
    async def trackrelay_exception_handler(request: Request, exc: TrackRelayException) -> JSONResponse:
        """Handle TrackRelay exceptions."""
        logger = structlog.get_logger(__name__)
        logger.error(
            "TrackRelay exception occurred",
            error=str(exc),
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": str(exc),
                "details": exc.details,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger = structlog.get_logger(__name__)
        logger.error(
            "Unexpected exception occurred",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "TrackRelay",
            "version": app.version,
            "input_topic": app_settings.pulsar.input_topic,
            "output_topic": app_settings.pulsar.output_topic,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "trackrelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
