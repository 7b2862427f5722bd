"""
In-memory sink for the Event Gateway.

This sink is primarily used for:
- Local development without a NATS cluster
- Unit testing
- Demo purposes

Messages live only as long as the process does.
"""
import logging
from typing import Dict, List
from uuid import uuid4

from .base import DurableSink

logger = logging.getLogger(__name__)


class MemorySink(DurableSink):
    """
    In-memory durable sink for development and testing.

    Messages are keyed by message id, so re-enqueueing the same event id
    replaces the stored copy instead of storing a duplicate.
    """

    def __init__(self, sink_id: str):
        super().__init__(sink_id)
        self._connected = False
        self._created = False
        self._messages: Dict[str, bytes] = {}
        self.enqueue_calls = 0
        self.duplicates = 0

    async def connect(self) -> None:
        """Mark sink as connected."""
        if self._connected:
            logger.warning(f"{self.name} already connected")
            return

        self._connected = True
        logger.info(f"{self.name} connected (in-memory mode)")

    async def close(self) -> None:
        """Disconnect. Stored messages are kept for inspection."""
        self._connected = False
        logger.info(f"{self.name} closed")

    async def create_if_not_exists(self) -> None:
        if not self._created:
            self._created = True
            logger.info(f"Queue {self.sink_id} created")

    async def enqueue_message(self, data: bytes, message_id: str | None = None) -> str:
        if not self._connected:
            raise ConnectionError(f"{self.name} not connected")

        self.enqueue_calls += 1
        key = message_id or str(uuid4())
        if key in self._messages:
            self.duplicates += 1
            logger.debug(f"Duplicate message {key} absorbed by {self.name}")
        self._messages[key] = data
        return key

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def messages(self) -> List[bytes]:
        """Stored message bodies, one per distinct message id."""
        return list(self._messages.values())

    @property
    def count(self) -> int:
        """Number of distinct messages stored."""
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._messages
