"""
Tests for the relay orchestrator.

Republish, decode, classify and dispatch end to end against an in-memory
function context and a local gateway.
"""

import asyncio
from typing import Callable

import pytest

from trackrelay.core.dispatcher import DispatchOutcome, GatewayDispatcher, RetryPolicy
from trackrelay.core.exceptions import DecodeError, MissingDataError, PublishError
from trackrelay.core.metrics import MetricsCollector
from trackrelay.core.relay import RelayStage, TrackingRelay

OUTPUT_TOPIC = "persistent://public/default/tracking-updates-out"


@pytest.fixture
def relay(dispatcher: GatewayDispatcher, metrics: MetricsCollector) -> TrackingRelay:
    return TrackingRelay(dispatcher=dispatcher, retry_policy=RetryPolicy(), metrics=metrics)


@pytest.fixture
def gateway_context(gateway, function_context: Callable) -> Callable:
    """Context factory with the local gateway configured."""
    def _make(**user_config):
        config = {"api_gateway_url": gateway.url}
        config.update(user_config)
        return function_context(user_config=config, output_topic=OUTPUT_TOPIC)
    return _make


class TestRepublish:
    """Test unconditional republish to the output topic."""

    @pytest.mark.asyncio
    async def test_republished_when_not_eligible(self, relay, gateway_context, make_payload) -> None:
        """Test ineligible updates are still republished."""
        context = gateway_context()
        payload = make_payload(source_location="US")

        await relay.handle(payload, context)

        assert context.published == [(OUTPUT_TOPIC, payload)]

    @pytest.mark.asyncio
    async def test_republished_when_delivered(self, relay, gateway_context, make_payload) -> None:
        """Test delivered updates are republished once."""
        context = gateway_context()
        payload = make_payload()

        await relay.handle(payload, context)

        assert context.published == [(OUTPUT_TOPIC, payload)]

    @pytest.mark.asyncio
    async def test_republished_before_decode_failure(self, relay, gateway_context) -> None:
        """Test the raw payload is republished even when it fails to decode."""
        context = gateway_context()

        with pytest.raises(DecodeError):
            await relay.handle("{not json", context)

        assert context.published == [(OUTPUT_TOPIC, "{not json")]

    @pytest.mark.asyncio
    async def test_publish_failure_only_logged(self, relay, gateway, function_context, make_payload, metrics) -> None:
        """Test a broker-side publish failure is counted and does not abort."""
        context = function_context(
            user_config={"api_gateway_url": gateway.url},
            publish_error=PublishError("broker unavailable"),
        )

        result = await relay.handle(make_payload(), context)
        await asyncio.sleep(0)

        assert result.stage is RelayStage.DISPATCHED
        assert len(gateway.requests) == 1
        assert metrics.registry.get_sample_value("relay_republish_total", {"result": "failure"}) == 1

    @pytest.mark.asyncio
    async def test_publish_raising_does_not_abort(self, relay, gateway, function_context, make_payload, metrics) -> None:
        """Test a publish call that raises does not abort the invocation."""
        context = function_context(
            user_config={"api_gateway_url": gateway.url},
            raise_on_publish=PublishError("producer closed"),
        )

        result = await relay.handle(make_payload(), context)

        assert result.stage is RelayStage.DISPATCHED
        assert metrics.registry.get_sample_value("relay_republish_total", {"result": "failure"}) == 1

    @pytest.mark.asyncio
    async def test_publish_success_recorded(self, relay, gateway_context, make_payload, metrics) -> None:
        """Test a successful publish is counted."""
        await relay.handle(make_payload(source_location="US"), gateway_context())
        await asyncio.sleep(0)

        assert metrics.registry.get_sample_value("relay_republish_total", {"result": "success"}) == 1


class TestEligibilityRouting:
    """Test which events reach the gateway."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_code", ["700", "701", "999"])
    async def test_other_source_locations_never_dispatched(
        self, relay, gateway, gateway_context, make_payload, event_code
    ) -> None:
        """Test sources other than IN never reach the gateway."""
        context = gateway_context(event_codes="700,701,999")

        result = await relay.handle(make_payload(source_location="US", event_code=event_code), context)

        assert result.stage is RelayStage.SKIPPED
        assert result.dispatch is None
        assert result.classification is not None
        assert result.classification.eligible is False
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_code_not_configured_skipped(self, relay, gateway, gateway_context, make_payload) -> None:
        """Test an unconfigured event code is skipped."""
        result = await relay.handle(make_payload(event_code="701"), gateway_context())

        assert result.stage is RelayStage.SKIPPED
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_configured_codes_used(self, relay, gateway, gateway_context, make_payload) -> None:
        """Test the user-configured code list drives eligibility."""
        result = await relay.handle(make_payload(event_code="702"), gateway_context(event_codes="701, 702"))

        assert result.stage is RelayStage.DISPATCHED
        assert len(gateway.requests) == 1

    @pytest.mark.asyncio
    async def test_gateway_not_configured_skipped(self, relay, gateway, function_context, make_payload) -> None:
        """Test an eligible update is skipped when the gateway URL is the dummy sentinel."""
        context = function_context()

        result = await relay.handle(make_payload(), context)

        assert result.stage is RelayStage.SKIPPED
        assert result.classification is not None
        assert result.classification.eligible is True
        assert gateway.requests == []
        assert len(context.published) == 1


class TestDispatchOutcomes:
    """Test that gateway outcomes never fail the invocation."""

    @pytest.mark.asyncio
    async def test_single_post_on_success(self, relay, gateway, gateway_context, make_payload, sleep_recorder) -> None:
        """Test a 2xx gateway response takes exactly one POST."""
        payload = make_payload()

        result = await relay.handle(payload, gateway_context())

        assert result.stage is RelayStage.DISPATCHED
        assert result.dispatch is not None
        assert result.dispatch.outcome is DispatchOutcome.DELIVERED
        assert [request["body"] for request in gateway.requests] == [payload]
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_delivered_on_third_attempt(self, relay, gateway, gateway_context, make_payload, sleep_recorder) -> None:
        """Test two 4xx responses are retried before delivery."""
        gateway.statuses = [429, 429, 200]

        result = await relay.handle(make_payload(), gateway_context())

        assert result.dispatch is not None
        assert result.dispatch.outcome is DispatchOutcome.DELIVERED
        assert len(gateway.requests) == 3
        assert sleep_recorder.delays == [3.0, 3.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted_completes(self, relay, gateway, gateway_context, make_payload) -> None:
        """Test exhausted retries complete the invocation."""
        gateway.statuses = [429, 429, 429]

        result = await relay.handle(make_payload(), gateway_context())

        assert result.stage is RelayStage.DISPATCHED
        assert result.dispatch is not None
        assert result.dispatch.outcome is DispatchOutcome.RETRYABLE_FAILURE
        assert len(gateway.requests) == 3

    @pytest.mark.asyncio
    async def test_server_error_completes_without_retry(self, relay, gateway, gateway_context, make_payload) -> None:
        """Test a 5xx response completes the invocation without retry."""
        gateway.statuses = [503]

        result = await relay.handle(make_payload(), gateway_context())

        assert result.dispatch is not None
        assert result.dispatch.outcome is DispatchOutcome.FATAL_FAILURE
        assert len(gateway.requests) == 1


    @pytest.mark.asyncio
    async def test_undecodable_gateway_body_completes(self, relay, gateway, gateway_context, make_payload) -> None:
        """Test a delivered response whose body is not valid UTF-8 completes the invocation."""
        gateway.response_bytes = b"\xff\xfe\xfa ok"

        result = await relay.handle(make_payload(), gateway_context())

        assert result.stage is RelayStage.DISPATCHED
        assert result.dispatch is not None
        assert result.dispatch.outcome is DispatchOutcome.DELIVERED
        assert len(gateway.requests) == 1

class TestFatalErrors:
    """Test errors that abort the invocation."""

    @pytest.mark.asyncio
    async def test_empty_previous_tracking_raises(
        self, relay, gateway, gateway_context, make_payload, metrics
    ) -> None:
        """Test an empty previous tracking list aborts the invocation."""
        context = gateway_context()

        with pytest.raises(MissingDataError):
            await relay.handle(make_payload(merged=False, previous_tracking=[]), context)

        assert gateway.requests == []
        assert len(context.published) == 1
        assert metrics.registry.get_sample_value(
            "relay_events_failed_total", {"error_code": "missing_data"}
        ) == 1

    @pytest.mark.asyncio
    async def test_no_tracking_response_raises(self, relay, gateway, gateway_context, make_payload) -> None:
        """Test a payload with no tracking response aborts."""
        with pytest.raises(MissingDataError):
            await relay.handle(make_payload(merged=False), gateway_context())

        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_schema_mismatch_raises(self, relay, gateway, gateway_context, metrics) -> None:
        """Test a payload without meta_info aborts with a decode error."""
        with pytest.raises(DecodeError):
            await relay.handle('{"merged_order_tracking_response": {}}', gateway_context())

        assert gateway.requests == []
        assert metrics.registry.get_sample_value(
            "relay_events_failed_total", {"error_code": "decode_error"}
        ) == 1
