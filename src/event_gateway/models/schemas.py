"""
HTTP request/response models.

All DTOs serialize with camelCase aliases and accept snake_case field names
when populated from Python code.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BaseDTO(BaseModel):
    """Base configuration for all DTOs."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PublishAcceptedResponse(BaseDTO):
    """Response after the broker accepted an event."""
    event_id: str = Field(..., description="Id of the accepted event")
    topic: str = Field(..., description="Topic the event was published to")


class ErrorResponse(BaseDTO):
    """Error body, shaped like FastAPI's HTTPException responses."""
    detail: str


class HealthResponse(BaseDTO):
    """Health check response."""
    status: str = Field(..., description="Service status")
    broker_running: bool = Field(..., description="Whether the broker admits events")
    pending_events: int = Field(..., description="Events waiting for dispatch")
    high_water_mark: int = Field(..., description="Pending buffer limit")
    topics: List[str] = Field(default_factory=list, description="Topics with subscriptions")


class SubscriptionCreate(BaseDTO):
    """Request to bind a topic to a durable queue."""
    topic: str = Field(..., min_length=1, description="Topic to subscribe")
    queue: str = Field(..., min_length=1, description="Durable queue name")
    max_attempts: Optional[int] = Field(
        default=None, gt=0, description="Overrides the configured max attempts"
    )


class SubscriptionInfo(BaseDTO):
    """A registered subscription."""
    topic: str
    sink_id: str
    max_attempts: int


class SubscriptionList(BaseDTO):
    """All registered subscriptions."""
    count: int
    subscriptions: List[SubscriptionInfo]
