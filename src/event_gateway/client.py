"""
Producer client for the Event Gateway.

Usage:
    from event_gateway.client import GatewayClient

    async with GatewayClient("http://localhost:8080") as client:
        event_id = await client.publish("orders", b'{"id": 42}')

When the gateway answers 503 the client waits for the Retry-After interval
(capped by ``max_retry_delay``) and tries again, up to ``max_retries`` times.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Type

import httpx

from .core.errors import (
    AdmissionRejectedError,
    BadRequestError,
    ClientError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
)

logger = logging.getLogger(__name__)

_CLIENT_ERRORS: Dict[int, Type[ClientError]] = {
    400: BadRequestError,
    413: PayloadTooLargeError,
    415: UnsupportedMediaTypeError,
}


class GatewayClient:
    """
    Async HTTP client for publishing events to the gateway.

    Attributes:
        base_url: Base URL of the gateway
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        max_retries: int = 3,
        max_retry_delay: float = 30.0,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            base_url: Base URL of the gateway (e.g., "http://localhost:8080")
            max_retries: Retries after a 503 before giving up
            max_retry_delay: Upper bound on a single Retry-After wait (seconds)
            timeout: Request timeout (seconds)
            http_client: Pre-configured client (tests, custom transports)
            sleep: Coroutine used to wait between retries
        """
        self.base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._max_retry_delay = max_retry_delay
        self._timeout = timeout
        self._sleep = sleep
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    async def publish(
        self,
        topic: str,
        payload: bytes,
        content_type: str = "application/json",
    ) -> str:
        """
        Publish a raw payload to a topic.

        Returns:
            The event id assigned by the gateway

        Raises:
            ClientError: On 400/413/415 (never retried)
            AdmissionRejectedError: If the gateway is still under backpressure
                after all retries
            ConnectionError: On any other failure
        """
        client = self._ensure_http_client()
        url = f"{self.base_url}/events/{topic}"
        attempt = 0

        while True:
            try:
                response = await client.post(
                    url,
                    content=payload,
                    headers={"Content-Type": content_type},
                    timeout=self._timeout,
                )
            except httpx.HTTPError as e:
                logger.error(f"Error publishing to {topic}: {e}")
                raise ConnectionError(f"Failed to publish event: {e}") from e

            if response.status_code == 202:
                event_id = response.json()["eventId"]
                logger.debug(f"Published event {event_id} to {topic}")
                return event_id

            detail = self._detail(response)
            if response.status_code in _CLIENT_ERRORS:
                raise _CLIENT_ERRORS[response.status_code](detail)

            if response.status_code != 503:
                raise ConnectionError(
                    f"Failed to publish event: {response.status_code} - {detail}"
                )

            retry_after = self._retry_after(response)
            if attempt >= self._max_retries:
                raise AdmissionRejectedError(detail, retry_after=int(retry_after))

            attempt += 1
            delay = min(retry_after, self._max_retry_delay)
            logger.debug(f"Gateway busy, retrying in {delay:.1f}s (attempt {attempt})")
            await self._sleep(delay)

    def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
            self._owns_client = True
        return self._http_client

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        try:
            return max(0.0, float(response.headers.get("Retry-After", "1")))
        except ValueError:
            return 1.0

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            return response.json().get("detail", response.text)
        except ValueError:
            return response.text
