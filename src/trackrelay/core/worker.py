"""
Background worker that feeds input-topic messages to the relay.

Each message is one invocation: acknowledged when the relay completes,
negatively acknowledged when it raises so the broker can redeliver or
dead-letter it.
"""

import asyncio
from typing import Any, Mapping, Optional

import pulsar
import structlog

from .context import PulsarRuntime
from .exceptions import TrackRelayException
from .metrics import MetricsCollector
from .relay import TrackingRelay

logger = structlog.get_logger(__name__)


class RelayWorker:
    """
    Consumes the input topic and invokes the relay once per message.

    Features:
    - Automatic startup/shutdown
    - Ack on success, negative ack on failure
    - Health reporting
    """

    def __init__(
        self,
        runtime: PulsarRuntime,
        relay: TrackingRelay,
        user_config: Mapping[str, Any],
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.runtime = runtime
        self.relay = relay
        self.user_config = dict(user_config)
        self.metrics = metrics
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

        logger.info("Relay worker initialized", user_config_keys=sorted(self.user_config))

    async def start(self) -> None:
        """Start consuming."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())

        logger.info("Relay worker started")

    async def stop(self) -> None:
        """Stop consuming and wait for the loop to exit."""
        if not self._running:
            return

        self._running = False

        # The loop exits once the pending receive returns, bounded by the
        # receive timeout
        if self._task:
            await self._task
            self._task = None

        logger.info("Relay worker stopped")

    def is_healthy(self) -> bool:
        """Check if the worker loop is alive."""
        return self._running and self._task is not None and not self._task.done()

    async def _run_loop(self) -> None:
        """Main receive loop."""
        timeout_ms = self.runtime.settings.receive_timeout_ms

        while self._running:
            consumer = self.runtime.consumer
            if consumer is None:
                logger.warning("Consumer not available, waiting")
                await asyncio.sleep(timeout_ms / 1000)
                continue

            try:
                message = await asyncio.to_thread(consumer.receive, timeout_ms)
            except pulsar.Timeout:
                continue
            except Exception as e:
                logger.error("Receive failed", error=str(e))
                await asyncio.sleep(timeout_ms / 1000)
                continue

            if not self._running:
                logger.info("Worker stopping, returning message to broker")
                consumer.negative_acknowledge(message)
                break

            await self.process_message(message)

    async def process_message(self, message: Any) -> bool:
        """
        Run one message through the relay and settle it with the broker.

        Returns:
            True if the message was acknowledged
        """
        consumer = self.runtime.consumer
        if consumer is None:
            logger.error("Consumer closed before message could be processed")
            return False

        payload = message.data().decode("utf-8", errors="replace")
        context = self.runtime.context_for(message, self.user_config)

        try:
            await self.relay.handle(payload, context)
        except TrackRelayException as e:
            logger.error(
                "Message processing failed",
                message_id=str(message.message_id()),
                error_code=e.error_code,
                error=str(e),
            )
            consumer.negative_acknowledge(message)
            return False
        except Exception as e:
            logger.error(
                "Unexpected error processing message",
                message_id=str(message.message_id()),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if self.metrics:
                self.metrics.record_event_failed("internal_error")
            consumer.negative_acknowledge(message)
            return False

        consumer.acknowledge(message)
        return True
