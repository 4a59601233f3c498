"""
Async dispatcher for forwarding tracking updates to the HTTP gateway.

Features:
- POSTs the raw payload as JSON
- Fixed-interval retry, bounded by a total attempt budget
- Status-driven outcomes: 2xx delivered, 4xx retryable, anything else fatal
- Never raises for gateway failures; the outcome is returned instead
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import aiohttp
import structlog

from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

CONTENT_TYPE = "Content-type"
APPLICATION_JSON = "application/json"


class DispatchOutcome(str, Enum):
    """Outcome of a gateway dispatch attempt."""

    DELIVERED = "delivered"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"

    @property
    def retryable(self) -> bool:
        return self is DispatchOutcome.RETRYABLE_FAILURE


def classify_status(status: int) -> DispatchOutcome:
    """Map an HTTP status code onto a dispatch outcome."""
    if 200 <= status < 300:
        return DispatchOutcome.DELIVERED
    if 400 <= status < 500:
        return DispatchOutcome.RETRYABLE_FAILURE
    return DispatchOutcome.FATAL_FAILURE


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed backoff retry policy."""
    max_attempts: int = 3
    backoff_seconds: float = 3.0


@dataclass
class DispatchResult:
    """Result of a dispatch, after all attempts."""
    outcome: DispatchOutcome
    attempts: int
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.outcome is DispatchOutcome.DELIVERED


def _decode_body(raw: bytes, charset: Optional[str]) -> str:
    """Decode a response body leniently; undecodable bytes are replaced."""
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


class GatewayDispatcher:
    """
    Forwards payloads to the gateway over a shared aiohttp session.

    Attempts within one dispatch are sequential; each retry waits the full
    backoff before the next request.
    """

    def __init__(
        self,
        timeout_seconds: float = 30,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.session: Optional[aiohttp.ClientSession] = None
        self._sleep = sleep

    async def start(self) -> None:
        """Open the HTTP session."""
        if self.session is not None:
            return

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
        )
        logger.info("Gateway dispatcher started", timeout_seconds=self.timeout_seconds)

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

        logger.info("Gateway dispatcher stopped")

    @property
    def is_started(self) -> bool:
        return self.session is not None and not self.session.closed

    async def dispatch(self, url: str, payload: str, policy: RetryPolicy) -> DispatchResult:
        """
        Send payload to url under the given retry policy.

        Args:
            url: Gateway URL
            payload: Raw JSON payload, sent unchanged as the request body
            policy: Attempt budget and fixed backoff

        Returns:
            DispatchResult with the final outcome and attempt count
        """
        if not self.session:
            logger.error("Gateway dispatcher not started", url=url)
            return DispatchResult(
                outcome=DispatchOutcome.FATAL_FAILURE,
                attempts=0,
                error_message="Dispatcher not started",
            )

        attempt = 0
        while True:
            attempt += 1
            result = await self._attempt(self.session, url, payload, attempt)

            if not result.outcome.retryable:
                break

            if attempt >= policy.max_attempts:
                logger.error(
                    "Gateway retries exhausted",
                    url=url,
                    attempts=attempt,
                    status=result.status_code,
                )
                break

            logger.info(
                "Retrying gateway dispatch",
                url=url,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                backoff_seconds=policy.backoff_seconds,
            )
            if self.metrics:
                self.metrics.record_gateway_retry(attempt + 1)
            await self._sleep(policy.backoff_seconds)

        if self.metrics:
            self.metrics.record_dispatch_outcome(result.outcome.value)

        logger.info(
            "Gateway dispatch finished",
            url=url,
            outcome=result.outcome.value,
            attempts=result.attempts,
            status=result.status_code,
        )
        return result

    async def _attempt(
        self,
        session: aiohttp.ClientSession,
        url: str,
        payload: str,
        attempt: int,
    ) -> DispatchResult:
        """Issue a single POST and classify the response."""
        headers = {CONTENT_TYPE: APPLICATION_JSON}
        started = time.monotonic()

        try:
            # Redirects are outcomes, not something to follow
            async with session.post(
                url,
                data=payload.encode("utf-8"),
                headers=headers,
                allow_redirects=False,
            ) as response:
                status = response.status
                outcome = classify_status(status)
                body = None
                if outcome is DispatchOutcome.DELIVERED:
                    body = _decode_body(await response.read(), response.charset)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._record_request(None, started)
            logger.error(
                "Gateway request failed",
                url=url,
                attempt=attempt,
                error=str(e) or type(e).__name__,
            )
            return DispatchResult(
                outcome=DispatchOutcome.FATAL_FAILURE,
                attempts=attempt,
                error_message=str(e) or type(e).__name__,
            )

        self._record_request(status, started)

        if outcome is DispatchOutcome.DELIVERED:
            logger.info("Gateway response", url=url, attempt=attempt, status=status, body=body)
            if body:
                logger.info("Message sent to gateway", url=url)
            return DispatchResult(
                outcome=outcome,
                attempts=attempt,
                status_code=status,
                response_body=body,
            )

        if outcome is DispatchOutcome.RETRYABLE_FAILURE:
            logger.warning("Gateway returned retryable status", url=url, attempt=attempt, status=status)
        else:
            logger.error("Gateway returned fatal status", url=url, attempt=attempt, status=status)

        return DispatchResult(
            outcome=outcome,
            attempts=attempt,
            status_code=status,
            error_message=f"Unexpected response status: {status}",
        )

    def _record_request(self, status: Optional[int], started: float) -> None:
        if self.metrics:
            self.metrics.record_gateway_request(status, time.monotonic() - started)
