"""
Relay orchestrator.

Per invocation:
1. Republish the payload to the output topic (not awaited)
2. Decode the payload
3. Resolve routing config from user config
4. Classify eligibility
5. Dispatch to the gateway when eligible and a gateway is configured

Decode and classification errors abort the invocation and propagate.
Gateway failures are logged and never fail the invocation.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Optional

from ..models.routing import RoutingConfig
from .classifier import Classification, classify
from .decoder import decode
from .dispatcher import DispatchResult, GatewayDispatcher, RetryPolicy
from .exceptions import TrackRelayException
from .metrics import MetricsCollector

if TYPE_CHECKING:
    from .context import FunctionContext


class RelayStage(str, Enum):
    """Invocation stages."""

    START = "start"
    REPUBLISHED = "republished"
    DECODED = "decoded"
    CLASSIFIED = "classified"
    DISPATCHED = "dispatched"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass
class RelayResult:
    """Terminal state of a completed invocation."""
    stage: RelayStage
    classification: Optional[Classification] = None
    dispatch: Optional[DispatchResult] = None


class TrackingRelay:
    """
    Relays tracking updates to the output topic and, when eligible, the gateway.

    Stateless between invocations; safe to share across concurrent handlers.
    """

    def __init__(
        self,
        dispatcher: GatewayDispatcher,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = metrics

    async def handle(self, payload: str, context: "FunctionContext") -> RelayResult:
        """
        Process one tracking update.

        Raises:
            DecodeError: payload is not a valid tracking update
            MissingDataError: no usable tracking response in the payload
        """
        log = context.logger
        log.info("Payload received")
        log.debug("Payload content", payload=payload)

        if self.metrics:
            self.metrics.record_event_received()

        self._republish(payload, context)
        stage = RelayStage.REPUBLISHED

        try:
            event = decode(payload)
            stage = RelayStage.DECODED
            log.info("Carrier's location", source_location=event.source_location)

            config = RoutingConfig.from_context(context)
            log.info("Event codes supplied for redirecting", event_codes=sorted(config.event_codes))

            classification = classify(event, config)
            stage = RelayStage.CLASSIFIED

        except TrackRelayException as e:
            log.error(
                "Relay invocation aborted",
                stage=RelayStage.ABORTED.value,
                last_stage=stage.value,
                error_code=e.error_code,
                error=str(e),
            )
            if self.metrics:
                self.metrics.record_event_failed(e.error_code)
            raise

        if self.metrics:
            self.metrics.record_classification(classification.eligible)

        if not classification.eligible:
            log.info(
                "Tracking update not eligible for gateway",
                source_location=classification.source_location,
                event_code=classification.event_code,
            )
            return RelayResult(stage=RelayStage.SKIPPED, classification=classification)

        if not config.gateway_configured:
            log.error("URL for gateway is not provided")
            return RelayResult(stage=RelayStage.SKIPPED, classification=classification)

        result = await self.dispatcher.dispatch(config.gateway_url, payload, self.retry_policy)
        if not result.delivered:
            log.error(
                "Tracking update not delivered to gateway",
                outcome=result.outcome.value,
                attempts=result.attempts,
                error=result.error_message,
            )

        return RelayResult(
            stage=RelayStage.DISPATCHED,
            classification=classification,
            dispatch=result,
        )

    def _republish(self, payload: str, context: "FunctionContext") -> None:
        """Publish to the output topic without waiting on the broker."""
        topic = context.output_topic

        try:
            future = context.publish(topic, payload)
        except Exception as e:
            context.logger.error("Failed to publish to output topic", topic=topic, error=str(e))
            if self.metrics:
                self.metrics.record_republish(False)
            return

        future.add_done_callback(partial(self._on_republished, topic, context.logger))

    def _on_republished(self, topic: str, log: Any, future: "asyncio.Future[None]") -> None:
        if future.cancelled():
            log.warning("Publish to output topic cancelled", topic=topic)
            success = False
        elif future.exception() is not None:
            log.error("Failed to publish to output topic", topic=topic, error=str(future.exception()))
            success = False
        else:
            log.info("Message sent successfully to pulsar topic", topic=topic)
            success = True

        if self.metrics:
            self.metrics.record_republish(success)
