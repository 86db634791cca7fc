"""
Shared plumbing for hosted-checkout gateway clients: one pooled httpx
client per adapter, bounded timeouts and a narrow retry policy.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from application.dtos.payments import CheckoutSession
from domain.donation.entity import Donation
from domain.program.entity import Program


logger = get_logger(__name__)

# Only failures before the request reached the gateway are retried,
# so a retry can never open a second checkout for the same order.
RETRYABLE_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        timeouts = timeouts or {}
        self._timeout = httpx.Timeout(
            connect=timeouts.get("connect", 1.0),
            read=timeouts.get("read", 3.0),
            write=timeouts.get("write", 3.0),
            pool=timeouts.get("total", 5.0),
        )
        retry = retry or {}
        self._max_retries = int(retry.get("max", 2))
        self._backoff = float(retry.get("base", 0.2))
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "gateway_request_retry",
            provider=self.provider,
            attempt=state.attempt_number,
            error_type=type(exc).__name__ if exc else None,
        )

    async def _retry(self, fn: Callable[[], Awaitable[Any]]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._backoff, min=0.1, max=2.0),
            retry=retry_if_exception_type(RETRYABLE_TRANSPORT_ERRORS),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def create_checkout_session(self, donation: Donation, program: Optional[Program] = None) -> CheckoutSession:
        raise NotImplementedError

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
