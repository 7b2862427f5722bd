"""
Gateway wiring and lifecycle.

The Gateway builds the sinks, journal, subscription registry, delivery
pipeline, broker and ingress handler from one Settings instance, and owns their
startup and shutdown order.
"""
import logging
from typing import Callable, Dict, Optional, Set

from ..core.config import Settings
from ..sinks import DurableSink, EventJournal, build_journal, build_sink
from .backoff import BackoffPolicy
from .broker import Broker
from .delivery_pipeline import DeliveryPipeline
from .ingress import IngressHandler
from .subscription_registry import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)

SinkFactory = Callable[[str, Settings], DurableSink]
JournalFactory = Callable[[Settings], Optional[EventJournal]]


class Gateway:
    """
    Owns every component of the event gateway.

    Sinks are shared per queue name: two topics routed to the same queue use
    one sink instance. A queue counts as provisioned only after its
    ``create_if_not_exists`` succeeded.
    """

    def __init__(
        self,
        settings: Settings,
        sink_factory: SinkFactory = build_sink,
        journal_factory: JournalFactory = build_journal,
    ):
        self.settings = settings
        self._sink_factory = sink_factory
        self.sinks: Dict[str, DurableSink] = {}
        self._provisioned: Set[str] = set()
        self._started = False

        self.registry = SubscriptionRegistry()
        self.journal = journal_factory(settings)
        dead_letter_sink = (
            self.sink(settings.dead_letter_queue) if settings.dead_letter_queue else None
        )
        self.pipeline = DeliveryPipeline(
            dead_letter_sink=dead_letter_sink,
            sink_timeout=settings.sink_timeout_seconds,
            completed_ttl=settings.completed_outcome_ttl_seconds,
            completed_max_entries=settings.completed_outcome_max_entries,
            strict_invariants=settings.strict_invariants,
        )
        self.broker = Broker(
            registry=self.registry,
            pipeline=self.pipeline,
            high_water_mark=settings.high_water_mark,
            workers=settings.dispatch_workers,
            journal=self.journal,
        )
        self.ingress = IngressHandler(
            broker=self.broker,
            registry=self.registry,
            max_body_bytes=settings.max_body_bytes,
            accepted_content_types=settings.accepted_content_types,
            retry_after_seconds=settings.retry_after_seconds,
            debug=settings.debug,
        )

        for topic, queues in settings.subscriptions.items():
            for queue in queues:
                self.registry.register(self.subscription(topic, self.sink(queue)))

    def sink(self, queue_name: str) -> DurableSink:
        """Get or create the sink for a queue."""
        if queue_name not in self.sinks:
            self.sinks[queue_name] = self._sink_factory(queue_name, self.settings)
        return self.sinks[queue_name]

    def is_provisioned(self, queue_name: str) -> bool:
        return queue_name in self._provisioned

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_backoff_ms=self.settings.base_backoff_ms,
            max_backoff_ms=self.settings.max_backoff_ms,
            jitter_fraction=self.settings.jitter_fraction,
        )

    def subscription(
        self, topic: str, sink: DurableSink, max_attempts: Optional[int] = None
    ) -> Subscription:
        return Subscription(
            topic=topic,
            sink=sink,
            max_attempts=max_attempts or self.settings.max_attempts,
            backoff=self.backoff_policy(),
        )

    async def add_subscription(
        self, topic: str, queue_name: str, max_attempts: Optional[int] = None
    ) -> Subscription:
        """
        Bind a topic to a queue at runtime.

        The queue is provisioned before the subscription becomes visible, so
        the next publish can already be delivered. If provisioning fails the
        subscription is not registered and a retry provisions again.
        """
        sink = self.sink(queue_name)
        if self._started:
            await self._provision(sink)

        subscription = self.subscription(topic, sink, max_attempts)
        self.registry.register(subscription)
        return subscription

    def remove_subscription(self, topic: str, sink_id: str) -> bool:
        return self.registry.unregister(topic, sink_id)

    async def start(self) -> None:
        """
        Open the journal, connect and provision every sink, then start the broker.

        A journal failure is always fatal. Sink failures are tolerated in debug
        mode only. On failure everything already opened is closed again.
        """
        logger.info(
            f"Starting {self.settings.service_name} with {self.settings.sink_backend} sinks "
            f"({len(self.sinks)} queue(s), topics: {self.registry.topics}, "
            f"{self.settings.broker_buffer} broker buffer)"
        )

        try:
            if self.journal is not None:
                await self.journal.connect()
                await self.journal.create_if_not_exists()

            for sink in self.sinks.values():
                try:
                    await self._provision(sink)
                except Exception as e:
                    logger.error(f"Failed to prepare {sink.name}: {e}")
                    # Continue anyway for graceful degradation in dev mode
                    if not self.settings.debug:
                        raise

            await self.broker.start()
        except Exception:
            await self.broker.stop()
            await self._close_all()
            raise

        self._started = True
        logger.info(f"{self.settings.service_name} ready on port {self.settings.service_port}")

    async def stop(self) -> None:
        """Drain the broker, then close every sink and the journal."""
        logger.info(f"Shutting down {self.settings.service_name}")
        await self.broker.stop()
        await self._close_all()
        self._started = False
        logger.info(f"{self.settings.service_name} shutdown complete")

    async def _provision(self, sink: DurableSink) -> None:
        if not sink.is_connected:
            await sink.connect()
        if sink.sink_id not in self._provisioned:
            await sink.create_if_not_exists()
            self._provisioned.add(sink.sink_id)

    async def _close_all(self) -> None:
        for sink in self.sinks.values():
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"Error closing {sink.name}: {e}")

        if self.journal is not None:
            try:
                await self.journal.close()
            except Exception as e:
                logger.warning(f"Error closing event journal: {e}")

        self._provisioned.clear()
