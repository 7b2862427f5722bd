"""
Topic -> durable sink bindings.

The registry is mutable configuration. The broker takes a snapshot at publish
time, so changes only affect events published afterwards.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List

from ..sinks.base import DurableSink
from .backoff import BackoffPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """Binding of a topic to a durable sink with its own retry policy."""
    topic: str
    sink: DurableSink
    max_attempts: int = 5
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self):
        if not self.topic:
            raise ValueError("topic is required")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @property
    def sink_id(self) -> str:
        return self.sink.sink_id


class SubscriptionRegistry:
    """
    Exact-match topic index of subscriptions.

    Each (topic, sink_id) pair is registered at most once; registering it
    again replaces the previous subscription.
    """

    def __init__(self):
        # Topic -> sink id -> subscription
        self._by_topic: Dict[str, Dict[str, Subscription]] = {}

    def register(self, subscription: Subscription) -> None:
        subs = self._by_topic.setdefault(subscription.topic, {})
        replaced = subscription.sink_id in subs
        subs[subscription.sink_id] = subscription
        logger.info(
            f"{'Updated' if replaced else 'Registered'} subscription "
            f"{subscription.topic} -> {subscription.sink_id} "
            f"(max_attempts: {subscription.max_attempts})"
        )

    def unregister(self, topic: str, sink_id: str) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        subs = self._by_topic.get(topic)
        if not subs or sink_id not in subs:
            logger.warning(f"Subscription {topic} -> {sink_id} not found")
            return False

        del subs[sink_id]
        if not subs:
            del self._by_topic[topic]
        logger.info(f"Unregistered subscription {topic} -> {sink_id}")
        return True

    def subscriptions_for(self, topic: str) -> FrozenSet[Subscription]:
        """Snapshot of the subscriptions matching ``topic`` exactly."""
        return frozenset(self._by_topic.get(topic, {}).values())

    def has_topic(self, topic: str) -> bool:
        return bool(self._by_topic.get(topic))

    @property
    def topics(self) -> List[str]:
        return sorted(self._by_topic)

    def all(self) -> List[Subscription]:
        return [sub for topic in self.topics for sub in self._by_topic[topic].values()]

    @property
    def count(self) -> int:
        return sum(len(subs) for subs in self._by_topic.values())
