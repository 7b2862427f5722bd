"""
Base interface for durable sink backends.

All sinks must implement this interface so the delivery pipeline stays
backend-agnostic. A successful enqueue means the event is recoverable by a
downstream consumer even if the gateway crashes immediately afterwards.
"""
from abc import ABC, abstractmethod

from ..core.errors import (
    InfrastructureError,
    PermanentInfrastructureError,
    TransientInfrastructureError,
)
from ..models.events import Event


class SinkError(InfrastructureError):
    """Base exception for sink errors."""
    pass


class TransientSinkError(SinkError, TransientInfrastructureError):
    """Raised when the sink is temporarily unavailable (network, timeout, 5xx)."""
    pass


class PermanentSinkError(SinkError, PermanentInfrastructureError):
    """Raised when the sink refuses the message (malformed, auth failure)."""
    pass


class DurableSink(ABC):
    """
    Abstract base class for durable queue-like destinations.

    Enqueue must be safe to call concurrently for different events. No
    ordering between events is promised. Sinks must tolerate receiving the
    same event id more than once.
    """

    def __init__(self, sink_id: str):
        self._sink_id = sink_id

    @property
    def sink_id(self) -> str:
        """Stable identifier of this sink (the queue name)."""
        return self._sink_id

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the connection to the backend.

        Raises:
            ConnectionError: If unable to connect
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        pass

    @abstractmethod
    async def create_if_not_exists(self) -> None:
        """
        Provision the underlying queue if it does not exist yet.

        Raises:
            SinkError: If the queue could not be provisioned
        """
        pass

    @abstractmethod
    async def enqueue_message(self, data: bytes, message_id: str | None = None) -> str:
        """
        Durably store a raw message.

        Args:
            data: Message body
            message_id: Optional idempotency key for backends that deduplicate

        Returns:
            Backend acknowledgement token

        Raises:
            TransientSinkError: If the store is temporarily unavailable
            PermanentSinkError: If the store refused the message
        """
        pass

    async def enqueue(self, event: Event) -> str:
        """Store an event envelope, keyed by the event id."""
        return await self.enqueue_message(event.to_envelope(), message_id=event.id)

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the sink is connected."""
        pass

    @property
    def name(self) -> str:
        """Return the sink name for logging."""
        return f"{self.__class__.__name__}({self._sink_id})"
