from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from ...models.schemas import ErrorResponse, PublishAcceptedResponse
from ...services.gateway import Gateway
from ..dependencies import get_gateway

router = APIRouter(tags=["Events"])

_RESPONSES = {
    202: {"model": PublishAcceptedResponse, "description": "Event accepted for delivery"},
    400: {"model": ErrorResponse, "description": "Topic missing or unknown"},
    413: {"model": ErrorResponse, "description": "Payload too large"},
    415: {"model": ErrorResponse, "description": "Unsupported media type"},
    503: {"model": ErrorResponse, "description": "Backpressure, see Retry-After"},
}


@router.post("/{topic}", status_code=202, responses=_RESPONSES)
async def publish_to_topic(
    topic: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> Response:
    """
    Publish the raw request body to a topic.

    The body is forwarded unchanged; Content-Type must be one of the accepted
    media types. Returns 202 with the event id once the broker admits it.
    """
    return await gateway.ingress.handle(request, topic)


@router.post("", status_code=202, responses=_RESPONSES)
async def publish_with_topic_header(
    request: Request,
    x_event_topic: Optional[str] = Header(default=None),
    gateway: Gateway = Depends(get_gateway),
) -> Response:
    """Publish the raw request body to the topic named in X-Event-Topic."""
    return await gateway.ingress.handle(request, x_event_topic)
