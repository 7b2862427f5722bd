"""
Core event and delivery records.

An Event is created once per inbound request and never mutated afterwards;
redeliveries work on copies produced by ``with_attempt``. The JSON envelope
produced by ``to_envelope`` is the wire format written to durable sinks. Its
payload is standard base64 (RFC 4648 section 4, padded).
"""
import base64
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel


class Event(BaseModel):
    """
    One inbound payload plus metadata, the unit of delivery.

    Fields:
        id: Unique token generated at creation, never reused
        topic: Routing key the event was published under
        payload: Raw request body
        content_type: Media type declared by the producer
        received_at: When the gateway accepted the request
        attempt: Zero-based delivery attempt number
    """
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(default_factory=lambda: str(uuid4()))
    topic: str = Field(..., min_length=1)
    payload: bytes
    content_type: str = "application/octet-stream"
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempt: int = Field(default=0, ge=0)

    @field_serializer("payload", when_used="json")
    def _encode_payload(self, payload: bytes) -> str:
        return base64.b64encode(payload).decode("ascii")

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value: Any, info: ValidationInfo) -> Any:
        # Envelopes may come from writers using either base64 alphabet
        if info.mode == "json" and isinstance(value, str):
            padded = value + "=" * (-len(value) % 4)
            return base64.b64decode(padded, altchars=b"-_", validate=True)
        return value

    def with_attempt(self, attempt: int) -> "Event":
        """Return a copy of this event carrying a new attempt number."""
        if attempt < self.attempt:
            raise ValueError("attempt can only move forward")
        return self.model_copy(update={"attempt": attempt})

    def to_envelope(self) -> bytes:
        """Serialize to the JSON envelope stored by sinks."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_envelope(cls, data: bytes) -> "Event":
        """Parse an envelope written by ``to_envelope``."""
        return cls.model_validate_json(data)


class PublishStatus(str, Enum):
    """Broker admission result."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    BACKPRESSURE = "backpressure"


class RejectReason(str, Enum):
    """Why the broker refused an event."""

    UNKNOWN_TOPIC = "unknown_topic"
    BROKER_CLOSED = "broker_closed"
    JOURNAL_UNAVAILABLE = "journal_unavailable"


class PublishResult(BaseModel):
    """Outcome of Broker.publish."""
    model_config = ConfigDict(frozen=True)

    status: PublishStatus
    event_id: Optional[str] = None
    reason: Optional[RejectReason] = None

    @classmethod
    def accepted(cls, event_id: str) -> "PublishResult":
        return cls(status=PublishStatus.ACCEPTED, event_id=event_id)

    @classmethod
    def rejected(cls, reason: RejectReason) -> "PublishResult":
        return cls(status=PublishStatus.REJECTED, reason=reason)

    @classmethod
    def backpressure(cls) -> "PublishResult":
        return cls(status=PublishStatus.BACKPRESSURE)


class DeliveryStatus(str, Enum):
    """Terminal delivery states for an (event, subscription) pair."""

    ACKED = "acked"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


class DeliveryOutcome(BaseModel):
    """Result of delivering one event to one subscription's sink."""
    model_config = ConfigDict(frozen=True)

    status: DeliveryStatus
    event_id: str
    sink_id: str
    attempts: int = Field(..., ge=0)
    reason: Optional[str] = None

    @property
    def is_acked(self) -> bool:
        return self.status == DeliveryStatus.ACKED
