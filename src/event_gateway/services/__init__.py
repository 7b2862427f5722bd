"""
Event Gateway services.
"""
from .backoff import BackoffPolicy
from .broker import Broker
from .delivery_pipeline import DeliveryPipeline, ErrorKind, classify_error
from .gateway import Gateway
from .ingress import IngressHandler
from .subscription_registry import Subscription, SubscriptionRegistry

__all__ = [
    "BackoffPolicy",
    "Broker",
    "DeliveryPipeline",
    "ErrorKind",
    "classify_error",
    "Gateway",
    "IngressHandler",
    "Subscription",
    "SubscriptionRegistry",
]
