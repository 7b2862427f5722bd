"""
Event Gateway models.
"""
from .events import (
    DeliveryOutcome,
    DeliveryStatus,
    Event,
    PublishResult,
    PublishStatus,
    RejectReason,
)

__all__ = [
    "DeliveryOutcome",
    "DeliveryStatus",
    "Event",
    "PublishResult",
    "PublishStatus",
    "RejectReason",
]
