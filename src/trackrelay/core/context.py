"""
Function context: the relay's view of the pub/sub runtime.

The relay only needs to publish to a topic, know its output topic, read
user config values and log. PulsarRuntime owns the client, the input
consumer and the output producers; it hands out one PulsarFunctionContext
per received message.
"""

import asyncio
from typing import Any, Dict, Mapping, Optional, Protocol

import pulsar
import structlog

from ..config import PulsarSettings
from .exceptions import ConfigurationError, PublishError

logger = structlog.get_logger(__name__)


class FunctionContext(Protocol):
    """Runtime primitives consumed by the relay."""

    @property
    def output_topic(self) -> str: ...

    @property
    def logger(self) -> Any: ...

    def publish(self, topic: str, payload: str) -> "asyncio.Future[None]": ...

    def get_user_config_value_or_default(self, key: str, default: Any) -> Any: ...


class PulsarRuntime:
    """Pulsar client with one shared-subscription consumer and cached producers."""

    def __init__(self, settings: PulsarSettings) -> None:
        self.settings = settings
        self.client: Optional[pulsar.Client] = None
        self.consumer: Optional[pulsar.Consumer] = None
        self.producers: Dict[str, pulsar.Producer] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to Pulsar and subscribe to the input topic."""
        if not self.settings.input_topic:
            raise ConfigurationError("Pulsar input topic is not configured")

        logger.info(
            "Connecting to Pulsar",
            service_url=self.settings.service_url,
            input_topic=self.settings.input_topic,
        )

        try:
            self.client = pulsar.Client(
                self.settings.service_url,
                operation_timeout_seconds=self.settings.operation_timeout_seconds,
            )
            self.consumer = self.client.subscribe(
                self.settings.input_topic,
                subscription_name=self.settings.subscription_name,
                consumer_type=pulsar.ConsumerType.Shared,
            )
            if self.settings.output_topic:
                self.producer_for(self.settings.output_topic)
        except Exception as e:
            logger.error("Error connecting to Pulsar", error=str(e))
            await self.disconnect()
            raise

        self._connected = True
        logger.info("Connected to Pulsar")

    async def disconnect(self) -> None:
        """Close producers, consumer and client."""
        for topic, producer in self.producers.items():
            try:
                producer.close()
            except Exception as e:
                logger.error("Error closing producer", topic=topic, error=str(e))
        self.producers.clear()

        if self.consumer is not None:
            try:
                self.consumer.close()
            except Exception as e:
                logger.error("Error closing consumer", error=str(e))
            self.consumer = None

        if self.client is not None:
            self.client.close()
            self.client = None
            logger.info("Pulsar client closed")

        self._connected = False

    def producer_for(self, topic: str) -> pulsar.Producer:
        """Get or create the producer for a topic."""
        if topic not in self.producers:
            if self.client is None:
                raise PublishError("Pulsar client is not connected", details={"topic": topic})

            self.producers[topic] = self.client.create_producer(
                topic,
                send_timeout_millis=self.settings.send_timeout_ms,
            )
            logger.info("Producer created", topic=topic)

        return self.producers[topic]

    def context_for(self, message: Any, user_config: Mapping[str, Any]) -> "PulsarFunctionContext":
        """Build the per-message function context."""
        return PulsarFunctionContext(
            runtime=self,
            output_topic=self.settings.output_topic,
            user_config=user_config,
            message_id=str(message.message_id()),
        )


class PulsarFunctionContext:
    """Function context for a single message, backed by a PulsarRuntime."""

    def __init__(
        self,
        runtime: PulsarRuntime,
        output_topic: str,
        user_config: Mapping[str, Any],
        message_id: Optional[str] = None,
    ) -> None:
        self.runtime = runtime
        self._output_topic = output_topic
        self._user_config = dict(user_config)
        self._logger = structlog.get_logger("trackrelay.function").bind(message_id=message_id)

    @property
    def output_topic(self) -> str:
        return self._output_topic

    @property
    def logger(self) -> Any:
        return self._logger

    def get_user_config_value_or_default(self, key: str, default: Any) -> Any:
        return self._user_config.get(key, default)

    def publish(self, topic: str, payload: str) -> "asyncio.Future[None]":
        """
        Publish asynchronously.

        The returned future resolves once the broker acknowledges the send,
        or fails with PublishError.
        """
        if not topic:
            raise PublishError("Output topic is not configured")

        loop = asyncio.get_running_loop()
        future: "asyncio.Future[None]" = loop.create_future()
        producer = self.runtime.producer_for(topic)

        def _resolve(result: Any, msg_id: Any) -> None:
            if future.done():
                return
            if result == pulsar.Result.Ok:
                future.set_result(None)
            else:
                future.set_exception(
                    PublishError(f"Publish to {topic} failed: {result}", details={"topic": topic})
                )

        def _callback(result: Any, msg_id: Any) -> None:
            # Invoked on a Pulsar client thread
            loop.call_soon_threadsafe(_resolve, result, msg_id)

        producer.send_async(payload.encode("utf-8"), _callback)
        return future
