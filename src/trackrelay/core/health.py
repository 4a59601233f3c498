"""
Health checker for the relay's runtime dependencies.

Checks:
- Pulsar client connected
- Relay worker loop running
- Gateway dispatcher session open
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .context import PulsarRuntime
from .dispatcher import GatewayDispatcher
from .worker import RelayWorker

logger = structlog.get_logger(__name__)


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy", "unhealthy"
    message: str
    details: Dict[str, Any]
    last_check: float


@dataclass
class HealthStatus:
    """Overall health status."""
    is_healthy: bool
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    timestamp: float


class HealthChecker:
    """Aggregates component checks into a readiness verdict."""

    def __init__(
        self,
        runtime: Optional[PulsarRuntime] = None,
        worker: Optional[RelayWorker] = None,
        dispatcher: Optional[GatewayDispatcher] = None,
    ) -> None:
        self.runtime = runtime
        self.worker = worker
        self.dispatcher = dispatcher

    async def check_all(self) -> HealthStatus:
        """Perform all health checks and return overall status."""
        results = [
            self._check_pulsar(),
            self._check_worker(),
            self._check_dispatcher(),
        ]

        checks = {result.name: result for result in results}
        failed_checks = [result.name for result in results if result.status != "healthy"]

        if failed_checks:
            logger.warning("Health checks failing", failed_checks=failed_checks)

        return HealthStatus(
            is_healthy=not failed_checks,
            checks=checks,
            failed_checks=failed_checks,
            timestamp=time.time(),
        )

    def _check_pulsar(self) -> HealthCheck:
        connected = self.runtime is not None and self.runtime.is_connected
        details: Dict[str, Any] = {}
        if self.runtime is not None:
            details = {
                "service_url": self.runtime.settings.service_url,
                "producers": len(self.runtime.producers),
            }

        return HealthCheck(
            name="pulsar",
            status="healthy" if connected else "unhealthy",
            message="Pulsar client connected" if connected else "Pulsar client not connected",
            details=details,
            last_check=time.time(),
        )

    def _check_worker(self) -> HealthCheck:
        running = self.worker is not None and self.worker.is_healthy()
        return HealthCheck(
            name="worker",
            status="healthy" if running else "unhealthy",
            message="Relay worker running" if running else "Relay worker not running",
            details={},
            last_check=time.time(),
        )

    def _check_dispatcher(self) -> HealthCheck:
        started = self.dispatcher is not None and self.dispatcher.is_started
        return HealthCheck(
            name="dispatcher",
            status="healthy" if started else "unhealthy",
            message="Gateway session open" if started else "Gateway session closed",
            details={},
            last_check=time.time(),
        )
