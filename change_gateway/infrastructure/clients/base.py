"""Shared HTTP plumbing for external collaborators"""

import asyncio
import logging
import httpx
from typing import Any, Type
from change_gateway.config import settings
from change_gateway.domain.exceptions import GatewayError
from change_gateway.infrastructure.observability.metrics import gateway_latency_histogram, gateway_failure_counter

logger = logging.getLogger(__name__)


def is_retryable(cause: BaseException | None) -> bool:
    """Retry network failures, timeouts, 429 and 5xx; never other 4xx"""
    if isinstance(cause, httpx.HTTPStatusError):
        status = cause.response.status_code
        return status == 429 or status >= 500
    return isinstance(cause, httpx.RequestError)


def is_not_found(cause: BaseException | None) -> bool:
    return isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 404


class GatewayClient:
    """Base client: bounded timeouts, typed errors, backoff for reads"""

    gateway = "gateway"
    error_class: Type[GatewayError] = GatewayError

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.gateway_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.gateway_backoff_base
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def _send(self, operation: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Single attempt, used directly for writes.

        Raises:
            GatewayError subclass: On timeout, HTTP errors, or network failure
        """
        async with self._client() as client:
            try:
                with gateway_latency_histogram.labels(gateway=self.gateway).time():
                    response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response

            except httpx.TimeoutException as e:
                gateway_failure_counter.labels(gateway=self.gateway, operation=operation).inc()
                raise self.error_class(f"{self.gateway} {operation} timed out after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failure_counter.labels(gateway=self.gateway, operation=operation).inc()
                raise self.error_class(f"{self.gateway} {operation} failed: {e.response.status_code}") from e
            except httpx.RequestError as e:
                gateway_failure_counter.labels(gateway=self.gateway, operation=operation).inc()
                raise self.error_class(f"{self.gateway} {operation} unreachable: {e}") from e

    async def _send_with_retry(self, operation: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Read with exponential backoff: base, 2*base, 4*base, ...

        Only side-effect free calls go through here.
        """
        attempt = 0
        while True:
            try:
                return await self._send(operation, method, path, **kwargs)
            except self.error_class as e:
                attempt += 1
                if attempt >= self.max_retries or not is_retryable(e.__cause__):
                    raise

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    f"{self.gateway} {operation} failed, retrying in {backoff}s",
                    extra={"gateway": self.gateway, "operation": operation, "attempt": attempt},
                )
                await asyncio.sleep(backoff)

    def _json(self, response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise self.error_class(f"{self.gateway} {operation} returned invalid JSON") from e
