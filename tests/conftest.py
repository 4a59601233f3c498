"""
Pytest configuration and shared fixtures.

Contains tracking update payload builders, an in-memory function context,
and a local aiohttp gateway whose response statuses can be scripted.
"""

import asyncio
import json
import time
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
import structlog
from aiohttp import web
from aiohttp.test_utils import TestServer
from prometheus_client import CollectorRegistry

from trackrelay.core.dispatcher import GatewayDispatcher
from trackrelay.core.metrics import MetricsCollector


def build_tracking_update(
    source_location: Optional[str] = "IN",
    event_code: Optional[str] = "700",
    merged: bool = True,
    previous_event_code: Optional[str] = None,
    previous_tracking: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build a tracking update in wire shape."""
    update: Dict[str, Any] = {
        "meta_info": {
            "message_source_location": source_location,
            "message_id": "b6a1d3c2-41f0-4c1e-9a57-0d2f1a7e9c11",
        },
        "order_number": "ORD-10042",
    }

    if merged:
        update["merged_order_tracking_response"] = {
            "tracking": [
                {"current_event_code": event_code, "carrier": "delhivery"},
                {"current_event_code": "100", "carrier": "delhivery"},
            ]
        }

    if previous_tracking is not None:
        update["previous_order_tracking_response"] = {"tracking": previous_tracking}
    elif previous_event_code is not None:
        update["previous_order_tracking_response"] = {
            "tracking": [{"current_event_code": previous_event_code}]
        }

    return update


@pytest.fixture
def make_payload() -> Callable[..., str]:
    """Factory for JSON tracking update payloads."""
    def _make(**kwargs: Any) -> str:
        return json.dumps(build_tracking_update(**kwargs))
    return _make


class FakeFunctionContext:
    """In-memory function context recording published messages."""

    def __init__(
        self,
        user_config: Optional[Dict[str, Any]] = None,
        output_topic: str = "persistent://public/default/tracking-updates-out",
        publish_error: Optional[Exception] = None,
        raise_on_publish: Optional[Exception] = None,
    ) -> None:
        self.user_config = user_config or {}
        self._output_topic = output_topic
        self.publish_error = publish_error
        self.raise_on_publish = raise_on_publish
        self.published: List[tuple] = []
        self._logger = structlog.get_logger("tests")

    @property
    def output_topic(self) -> str:
        return self._output_topic

    @property
    def logger(self) -> Any:
        return self._logger

    def get_user_config_value_or_default(self, key: str, default: Any) -> Any:
        return self.user_config.get(key, default)

    def publish(self, topic: str, payload: str) -> "asyncio.Future[None]":
        if self.raise_on_publish is not None:
            raise self.raise_on_publish

        self.published.append((topic, payload))
        future: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        if self.publish_error is not None:
            future.set_exception(self.publish_error)
        else:
            future.set_result(None)
        return future


@pytest.fixture
def function_context() -> Callable[..., FakeFunctionContext]:
    """Factory for in-memory function contexts."""
    return FakeFunctionContext


class SleepRecorder:
    """Records backoff delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())


class GatewayStub:
    """Scriptable gateway: pops one status per request, 200 once exhausted."""

    def __init__(self) -> None:
        self.url = ""
        self.statuses: List[int] = []
        self.requests: List[Dict[str, Any]] = []
        self.response_body = '{"status": "accepted"}'
        self.response_bytes: Optional[bytes] = None
        self.response_content_type = "application/json; charset=utf-8"
        self.delay_seconds = 0.0

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append({
            "body": await request.text(),
            "content_type": request.headers.get("Content-Type"),
            "received_at": time.monotonic(),
        })

        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        status = self.statuses.pop(0) if self.statuses else 200
        if 200 <= status < 300 and self.response_bytes is not None:
            return web.Response(
                status=status,
                body=self.response_bytes,
                headers={"Content-Type": self.response_content_type},
            )
        if 200 <= status < 300:
            return web.Response(status=status, text=self.response_body)
        return web.Response(status=status, text="gateway error")


@pytest_asyncio.fixture
async def gateway() -> AsyncGenerator[GatewayStub, None]:
    """Local HTTP gateway on an ephemeral port."""
    stub = GatewayStub()
    app = web.Application()
    app.router.add_post("/gateway", stub.handle)

    server = TestServer(app)
    await server.start_server()
    stub.url = str(server.make_url("/gateway"))

    yield stub

    await server.close()


@pytest_asyncio.fixture
async def dispatcher(
    sleep_recorder: SleepRecorder,
    metrics: MetricsCollector,
) -> AsyncGenerator[GatewayDispatcher, None]:
    """Started dispatcher that records backoff delays instead of sleeping."""
    gateway_dispatcher = GatewayDispatcher(timeout_seconds=5, metrics=metrics, sleep=sleep_recorder)
    await gateway_dispatcher.start()

    yield gateway_dispatcher

    await gateway_dispatcher.stop()
