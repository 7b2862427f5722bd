"""
NATS JetStream sink for the Event Gateway.

Each queue maps to one JetStream stream bound to a single subject. Messages
are published with the Nats-Msg-Id header set to the event id, so JetStream
drops redeliveries of the same event inside its duplicate window. A PubAck
from the server is the durable acknowledgement.
"""
import hashlib
import logging
import re

import nats
from nats.aio.client import Client as NatsClient
from nats.errors import Error as NatsError
from nats.js import JetStreamContext
from nats.js.errors import APIError, NotFoundError, ServiceUnavailableError

from .base import DurableSink, PermanentSinkError, TransientSinkError

logger = logging.getLogger(__name__)

_INVALID_STREAM_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def stream_name_for(queue_name: str) -> str:
    """
    Map a queue name to a valid JetStream stream name.

    Names that need rewriting get a short digest of the original appended, so
    "orders.v1" and "orders_v1" never share a stream.
    """
    sanitized = _INVALID_STREAM_CHARS.sub("_", queue_name)
    if sanitized == queue_name:
        return queue_name
    digest = hashlib.sha1(queue_name.encode("utf-8")).hexdigest()[:8]
    return f"{sanitized}_{digest}"


class JetStreamSink(DurableSink):
    """
    JetStream-backed durable queue.

    Features:
    - Stream provisioning with create-if-not-exists semantics
    - Server-side deduplication keyed by event id
    - Automatic reconnection handled by the NATS client
    """

    def __init__(
        self,
        queue_name: str,
        url: str = "nats://localhost:4222",
        subject_prefix: str = "gateway.queues",
        connect_timeout: int = 2,
        max_reconnect_attempts: int = -1,
        publish_timeout: float | None = None,
    ):
        """
        Initialize the JetStream sink.

        Args:
            queue_name: Durable queue name, also used as the sink id
            url: NATS server URL
            subject_prefix: Prefix of the subject the stream listens on
            connect_timeout: Connection timeout (seconds)
            max_reconnect_attempts: Max reconnection attempts (-1 for infinite)
            publish_timeout: Time to wait for a PubAck (seconds)
        """
        super().__init__(queue_name)
        self._url = url
        self._connect_timeout = connect_timeout
        self._max_reconnect_attempts = max_reconnect_attempts
        self._publish_timeout = publish_timeout
        self.stream_name = stream_name_for(queue_name)
        self.subject = f"{subject_prefix}.{self.stream_name}"
        self._client: NatsClient | None = None
        self._js: JetStreamContext | None = None

    async def connect(self) -> None:
        """Connect to NATS and open a JetStream context."""
        if self._client is not None and self._client.is_connected:
            logger.warning(f"{self.name} already connected")
            return

        logger.info(f"Connecting {self.name} to NATS at {self._url}")

        try:
            self._client = await nats.connect(
                servers=[self._url],
                connect_timeout=self._connect_timeout,
                max_reconnect_attempts=self._max_reconnect_attempts,
                error_cb=self._error_callback,
                disconnected_cb=self._disconnected_callback,
                reconnected_cb=self._reconnected_callback,
            )
        except Exception as e:
            logger.error(f"Failed to connect {self.name} to NATS: {e}")
            raise ConnectionError(f"Failed to connect to NATS at {self._url}: {e}") from e

        self._js = self._client.jetstream()
        logger.info(f"{self.name} connected to {self._client.connected_url}")

    async def close(self) -> None:
        """Drain and close the NATS connection."""
        if self._client is None:
            return

        try:
            await self._client.drain()
        except Exception as e:
            logger.warning(f"Error draining NATS connection for {self.name}: {e}")

        self._client = None
        self._js = None
        logger.info(f"{self.name} closed")

    async def create_if_not_exists(self) -> None:
        """Look the stream up and add it when missing."""
        js = self._require_js()
        try:
            await js.stream_info(self.stream_name)
            logger.debug(f"Stream {self.stream_name} already exists")
            return
        except NotFoundError:
            pass

        try:
            await js.add_stream(name=self.stream_name, subjects=[self.subject])
        except ServiceUnavailableError as e:
            raise TransientSinkError(f"JetStream unavailable: {e}") from e
        except APIError as e:
            raise PermanentSinkError(f"Failed to create stream {self.stream_name}: {e}") from e
        logger.info(f"Created stream {self.stream_name} on subject {self.subject}")

    async def enqueue_message(self, data: bytes, message_id: str | None = None) -> str:
        js = self._require_js()
        headers = {"Nats-Msg-Id": message_id} if message_id else None

        try:
            ack = await js.publish(
                self.subject,
                data,
                timeout=self._publish_timeout,
                stream=self.stream_name,
                headers=headers,
            )
        except ServiceUnavailableError as e:
            raise TransientSinkError(f"JetStream unavailable: {e}") from e
        except APIError as e:
            raise PermanentSinkError(f"JetStream rejected message: {e}") from e
        except NatsError as e:
            # Timeouts, no responders and dropped connections
            raise TransientSinkError(f"Publish to {self.subject} failed: {e}") from e

        if ack.duplicate:
            logger.debug(f"JetStream dropped duplicate {message_id} on {self.stream_name}")
        return f"{ack.stream}:{ack.seq}"

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _require_js(self) -> JetStreamContext:
        if self._js is None or not self.is_connected:
            raise TransientSinkError(f"{self.name} not connected")
        return self._js

    # NATS callbacks for connection lifecycle

    async def _error_callback(self, e: Exception) -> None:
        logger.error(f"NATS error on {self.name}: {e}")

    async def _disconnected_callback(self) -> None:
        logger.warning(f"{self.name} disconnected from NATS")

    async def _reconnected_callback(self) -> None:
        logger.info(f"{self.name} reconnected to NATS")
