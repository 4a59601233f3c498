"""
Prometheus metrics collection.

In-memory counters and histograms; Prometheus handles storage.
"""

import time
from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for TrackRelay.

    Pass a dedicated registry to keep collectors isolated (e.g. in tests).
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        registry = registry if registry is not None else REGISTRY
        self.registry = registry

        # Service info
        self.service_info = Info(
            "trackrelay_service",
            "TrackRelay service information",
            registry=registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "trackrelay",
        })

        # Relay metrics
        self.events_received_total = Counter(
            "relay_events_received_total",
            "Total tracking update events received",
            registry=registry,
        )

        self.events_failed_total = Counter(
            "relay_events_failed_total",
            "Total invocations aborted by a fatal error",
            ["error_code"],
            registry=registry,
        )

        self.republish_total = Counter(
            "relay_republish_total",
            "Republish attempts to the output topic",
            ["result"],
            registry=registry,
        )

        self.events_classified_total = Counter(
            "relay_events_classified_total",
            "Classified events by gateway eligibility",
            ["eligible"],
            registry=registry,
        )

        # Gateway metrics
        self.gateway_requests_total = Counter(
            "gateway_requests_total",
            "Total requests to the gateway",
            ["status_code"],
            registry=registry,
        )

        self.gateway_request_duration = Histogram(
            "gateway_request_duration_seconds",
            "Gateway request duration in seconds",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry,
        )

        self.gateway_retries_total = Counter(
            "gateway_retries_total",
            "Total gateway retries",
            ["attempt"],
            registry=registry,
        )

        self.dispatch_outcomes_total = Counter(
            "gateway_dispatch_outcomes_total",
            "Final dispatch outcomes",
            ["outcome"],
            registry=registry,
        )

        self.uptime_seconds = Gauge(
            "uptime_seconds",
            "Service uptime in seconds",
            registry=registry,
        )

        self._start_time = time.time()

    def record_event_received(self) -> None:
        """Record an inbound event."""
        self.events_received_total.inc()

    def record_event_failed(self, error_code: str) -> None:
        """Record an aborted invocation."""
        self.events_failed_total.labels(error_code=error_code).inc()

    def record_republish(self, success: bool) -> None:
        """Record the result of a republish."""
        self.republish_total.labels(result="success" if success else "failure").inc()

    def record_classification(self, eligible: bool) -> None:
        """Record an eligibility decision."""
        self.events_classified_total.labels(eligible=str(eligible).lower()).inc()

    def record_gateway_request(self, status_code: Optional[int], duration_seconds: float) -> None:
        """Record a single gateway request; status_code is None on transport errors."""
        self.gateway_requests_total.labels(
            status_code=str(status_code) if status_code is not None else "error"
        ).inc()
        self.gateway_request_duration.observe(duration_seconds)

    def record_gateway_retry(self, attempt: int) -> None:
        """Record a gateway retry."""
        self.gateway_retries_total.labels(attempt=str(attempt)).inc()

    def record_dispatch_outcome(self, outcome: str) -> None:
        """Record the final outcome of a dispatch."""
        self.dispatch_outcomes_total.labels(outcome=outcome).inc()

    def update_system_metrics(self) -> None:
        """Update system-level metrics."""
        self.uptime_seconds.set(time.time() - self._start_time)
