import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ...models.schemas import SubscriptionCreate, SubscriptionInfo, SubscriptionList
from ...services.gateway import Gateway
from ...services.subscription_registry import Subscription
from ..dependencies import get_gateway

router = APIRouter(tags=["Admin"])
logger = logging.getLogger(__name__)


def _to_info(subscription: Subscription) -> SubscriptionInfo:
    return SubscriptionInfo(
        topic=subscription.topic,
        sink_id=subscription.sink_id,
        max_attempts=subscription.max_attempts,
    )


@router.get("/subscriptions", response_model=SubscriptionList)
async def list_subscriptions(gateway: Gateway = Depends(get_gateway)) -> SubscriptionList:
    """
    List all registered subscriptions.

    Note: This endpoint should be protected in production.
    """
    subscriptions = gateway.registry.all()
    return SubscriptionList(
        count=len(subscriptions),
        subscriptions=[_to_info(sub) for sub in subscriptions],
    )


@router.post(
    "/subscriptions",
    response_model=SubscriptionInfo,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    request: SubscriptionCreate,
    gateway: Gateway = Depends(get_gateway),
) -> SubscriptionInfo:
    """
    Bind a topic to a durable queue.

    Takes effect for events published after this call returns.
    """
    try:
        subscription = await gateway.add_subscription(
            request.topic, request.queue, request.max_attempts
        )
    except Exception as e:
        logger.error(f"Failed to add subscription {request.topic} -> {request.queue}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to provision queue {request.queue}: {str(e)}",
        )
    return _to_info(subscription)


@router.delete("/subscriptions/{topic}/{sink_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    topic: str,
    sink_id: str,
    gateway: Gateway = Depends(get_gateway),
) -> None:
    """Remove a subscription. In-flight deliveries to it still complete."""
    if not gateway.remove_subscription(topic, sink_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subscription {topic} -> {sink_id} not found",
        )
