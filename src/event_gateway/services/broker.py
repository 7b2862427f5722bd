"""
In-process publish/subscribe broker.

The broker owns the bounded buffer of accepted but not yet dispatched events.
Admission is fail-fast: when the buffer holds ``high_water_mark`` events the
next publish returns BACKPRESSURE instead of blocking the publisher. A fixed
pool of dispatch workers drains the buffer and fans each event out to its
subscriptions concurrently.

With an EventJournal the broker records each event durably before accepting
it and replays unfinished entries on start. Without one, pending events live
only in memory.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from ..core.errors import DuplicateDeliveryError
from ..core.metrics import PENDING_EVENTS, PUBLISH_RESULTS_TOTAL
from ..models.events import DeliveryOutcome, DeliveryStatus, Event, PublishResult, RejectReason
from ..sinks.journal import EventJournal
from .delivery_pipeline import DeliveryPipeline
from .subscription_registry import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Dispatch:
    """An accepted event with the subscription snapshot taken at publish time."""
    event: Event
    subscriptions: FrozenSet[Subscription]
    journal_seq: Optional[int] = None


class Broker:
    """
    Bounded pending buffer plus dispatch workers.

    Example:
        broker = Broker(registry, pipeline, high_water_mark=1000)
        await broker.start()
        result = await broker.publish(event)
        ...
        await broker.stop()
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        pipeline: DeliveryPipeline,
        high_water_mark: int = 1000,
        workers: int = 8,
        journal: Optional[EventJournal] = None,
    ):
        if high_water_mark <= 0:
            raise ValueError("high_water_mark must be > 0")
        if workers <= 0:
            raise ValueError("workers must be > 0")

        self.registry = registry
        self.pipeline = pipeline
        self.journal = journal
        self._high_water_mark = high_water_mark
        self._worker_count = workers
        self._pending: asyncio.Queue[_Dispatch] = asyncio.Queue(maxsize=high_water_mark)
        self._workers: List[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Accepted events not yet picked up by a worker."""
        return self._pending.qsize()

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark

    async def start(self) -> None:
        """Start the dispatch workers, then replay the journal if there is one."""
        if self._running:
            logger.warning("Broker is already running")
            return

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"broker-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info(
            f"Broker started ({self._worker_count} workers, "
            f"high-water mark {self._high_water_mark}, "
            f"{'journaled' if self.journal else 'in-memory'} buffer)"
        )

        if self.journal is not None:
            await self._recover()

    async def stop(self) -> None:
        """
        Stop admitting events and shut down once all accepted work is done.

        In-flight deliveries are allowed to complete or fail naturally; only
        idle workers are cancelled.
        """
        if not self._running:
            return

        self._running = False
        logger.info(f"Broker stopping; draining {self.pending} pending event(s)")
        await self._pending.join()

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Broker stopped")

    async def join(self) -> None:
        """Wait until every accepted event has been fully dispatched."""
        await self._pending.join()

    async def publish(self, event: Event) -> PublishResult:
        """
        Admit an event for delivery to every subscription of its topic.

        Returns as soon as admission is decided; delivery happens in the
        background. With a journal, ACCEPTED means the event is durably
        recorded.
        """
        if not self._running:
            return self._record(PublishResult.rejected(RejectReason.BROKER_CLOSED))

        subscriptions = self.registry.subscriptions_for(event.topic)
        if not subscriptions:
            logger.debug(f"No subscriptions for topic: {event.topic}")
            return self._record(PublishResult.rejected(RejectReason.UNKNOWN_TOPIC))

        if self._pending.full():
            return self._backpressure(event)

        item = _Dispatch(event=event, subscriptions=subscriptions)
        if self.journal is not None:
            try:
                seq = await self.journal.record(event)
            except Exception as e:
                logger.error(f"Failed to journal event {event.id}: {e}")
                return self._record(PublishResult.rejected(RejectReason.JOURNAL_UNAVAILABLE))
            item = _Dispatch(event=event, subscriptions=subscriptions, journal_seq=seq)

            if not self._running:
                await self._discard(item)
                return self._record(PublishResult.rejected(RejectReason.BROKER_CLOSED))

        try:
            self._pending.put_nowait(item)
        except asyncio.QueueFull:
            # Filled up while the journal write was in progress
            await self._discard(item)
            return self._backpressure(event)

        PENDING_EVENTS.set(self.pending)
        logger.debug(f"Accepted event {event.id} for {len(subscriptions)} subscription(s)")
        return self._record(PublishResult.accepted(event.id))

    def _backpressure(self, event: Event) -> PublishResult:
        logger.warning(
            f"Backpressure: {self.pending} pending events at high-water mark; "
            f"event for {event.topic} not admitted"
        )
        return self._record(PublishResult.backpressure())

    @staticmethod
    def _record(result: PublishResult) -> PublishResult:
        PUBLISH_RESULTS_TOTAL.labels(result=result.status.value).inc()
        return result

    async def _discard(self, item: _Dispatch) -> None:
        """Remove the journal entry of an event that was not admitted."""
        try:
            await self.journal.acknowledge(item.journal_seq)
        except Exception as e:
            # A leftover entry is replayed on restart; sinks absorb the duplicate
            logger.warning(f"Failed to discard journal entry {item.journal_seq}: {e}")

    async def _recover(self) -> int:
        """Requeue journaled events whose deliveries never finished."""
        entries = await self.journal.replay()
        recovered = 0
        for entry in entries:
            subscriptions = self.registry.subscriptions_for(entry.event.topic)
            if not subscriptions:
                logger.warning(
                    f"Journaled event {entry.event.id} has no subscriptions "
                    f"for {entry.event.topic}; discarding"
                )
                await self.journal.acknowledge(entry.seq)
                continue
            # Workers are running, so a full buffer drains while we wait
            await self._pending.put(
                _Dispatch(event=entry.event, subscriptions=subscriptions, journal_seq=entry.seq)
            )
            recovered += 1

        if recovered:
            logger.info(f"Recovered {recovered} journaled event(s)")
        return recovered

    async def _worker_loop(self, worker_id: int) -> None:
        while True:
            item = await self._pending.get()
            PENDING_EVENTS.set(self.pending)
            try:
                await self._dispatch(item)
                if item.journal_seq is not None:
                    await self.journal.acknowledge(item.journal_seq)
            except Exception as e:
                logger.error(f"Worker {worker_id} failed dispatching {item.event.id}: {e}", exc_info=True)
            finally:
                self._pending.task_done()

    async def _dispatch(self, item: _Dispatch) -> List[DeliveryOutcome]:
        """Fan an event out to its subscriptions concurrently."""
        subscriptions = list(item.subscriptions)
        results = await asyncio.gather(
            *(self.pipeline.deliver(item.event, sub) for sub in subscriptions),
            return_exceptions=True,
        )

        outcomes: List[DeliveryOutcome] = []
        for sub, result in zip(subscriptions, results):
            if isinstance(result, BaseException):
                outcome = self._unexpected_failure(item.event, sub, result)
                if outcome is not None:
                    outcomes.append(outcome)
            else:
                outcomes.append(result)
        return outcomes

    def _unexpected_failure(
        self, event: Event, subscription: Subscription, error: BaseException
    ) -> Optional[DeliveryOutcome]:
        """Give a pair whose delivery crashed a terminal FAILED outcome."""
        if isinstance(error, DuplicateDeliveryError):
            # The delivery already in flight will report the outcome
            logger.warning(f"Duplicate dispatch of {event.id} to {subscription.sink_id} skipped")
            return None

        logger.error(
            f"Delivery of {event.id} to {subscription.sink_id} raised {type(error).__name__}: {error}",
            exc_info=error,
        )
        outcome = DeliveryOutcome(
            status=DeliveryStatus.FAILED,
            event_id=event.id,
            sink_id=subscription.sink_id,
            attempts=0,
            reason=f"{type(error).__name__}: {error}",
        )
        if self.pipeline.complete(outcome):
            return outcome
        return None
