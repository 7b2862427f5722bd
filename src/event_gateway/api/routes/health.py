from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ...models.schemas import HealthResponse
from ...services.gateway import Gateway
from ..dependencies import get_gateway

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(gateway: Gateway = Depends(get_gateway)) -> HealthResponse:
    """
    Health check endpoint.

    Returns broker state, pending buffer depth and the routed topics.
    """
    broker = gateway.broker
    return HealthResponse(
        status="healthy" if broker.is_running else "degraded",
        broker_running=broker.is_running,
        pending_events=broker.pending,
        high_water_mark=broker.high_water_mark,
        topics=gateway.registry.topics,
    )


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
