"""
At-least-once delivery from the broker to a subscription's durable sink.

For each (event, subscription) pair the pipeline runs a strictly sequential
attempt loop: enqueue, classify any failure, wait out the backoff delay
without holding a lock, then try again with the next attempt number. Every
pair reaches exactly one terminal outcome (acked, failed or exhausted).
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Set, Tuple

from cachetools import TTLCache

from ..core.errors import (
    DuplicateDeliveryError,
    InvariantViolationError,
    TransientInfrastructureError,
)
from ..core.metrics import (
    DEAD_LETTER_TOTAL,
    DELIVERY_ATTEMPTS_TOTAL,
    DELIVERY_LATENCY_SECONDS,
    DELIVERY_OUTCOMES_TOTAL,
)
from ..models.events import DeliveryOutcome, DeliveryStatus, Event
from ..sinks.base import DurableSink
from .subscription_registry import Subscription

logger = logging.getLogger(__name__)

# Type alias for the non-blocking wait used between attempts
SleepFn = Callable[[float], Awaitable[None]]
PairKey = Tuple[str, str]


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Decide whether a sink failure is worth retrying.

    Network errors, timeouts and errors the sink marked as transient are
    retried. Everything else (malformed payload, auth failure, bugs) is
    permanent.
    """
    if isinstance(exc, (TransientInfrastructureError, asyncio.TimeoutError, TimeoutError, OSError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


class DeliveryPipeline:
    """
    Retry/backoff policy and completion bookkeeping for sink deliveries.

    Guarantees:
    - never more than one in-flight attempt per (event id, sink id)
    - the outcome of a pair is recorded once; later completions for the same
      pair are ignored (or raise InvariantViolationError in strict mode)
    - failed and exhausted events go to the dead-letter sink when one is set
    """

    def __init__(
        self,
        dead_letter_sink: Optional[DurableSink] = None,
        sink_timeout: float = 10.0,
        completed_ttl: float = 300,
        completed_max_entries: int = 100_000,
        strict_invariants: bool = False,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Args:
            dead_letter_sink: Destination for failed and exhausted events
            sink_timeout: Per-call timeout in seconds; a timeout is transient
            completed_ttl: How long completed pairs are remembered (seconds)
            completed_max_entries: Upper bound of remembered completed pairs
            strict_invariants: Raise instead of logging on duplicate completion
            sleep: Coroutine used to wait between attempts
        """
        self.dead_letter_sink = dead_letter_sink
        self._sink_timeout = sink_timeout
        self._strict = strict_invariants
        self._sleep = sleep
        self._in_flight: Set[PairKey] = set()
        self._completed: TTLCache = TTLCache(maxsize=completed_max_entries, ttl=completed_ttl)

    @property
    def in_flight(self) -> int:
        """Number of (event, sink) pairs currently being delivered."""
        return len(self._in_flight)

    def outcome_for(self, event_id: str, sink_id: str) -> Optional[DeliveryOutcome]:
        """Recorded terminal outcome of a pair, if still remembered."""
        return self._completed.get((event_id, sink_id))

    async def deliver(self, event: Event, subscription: Subscription) -> DeliveryOutcome:
        """
        Deliver ``event`` to the subscription's sink until a terminal outcome.

        Raises:
            DuplicateDeliveryError: If the same pair is already in flight
        """
        key = (event.id, subscription.sink_id)
        if key in self._in_flight:
            raise DuplicateDeliveryError(
                f"Delivery of event {event.id} to {subscription.sink_id} already in flight"
            )

        self._in_flight.add(key)
        started = time.monotonic()
        try:
            outcome, last_event = await self._attempt_until_terminal(event, subscription)
        finally:
            self._in_flight.discard(key)

        if not self.complete(outcome):
            return self._completed.get(key, outcome)

        DELIVERY_LATENCY_SECONDS.labels(sink=subscription.sink_id).observe(
            time.monotonic() - started
        )
        if not outcome.is_acked:
            await self._dead_letter(last_event, outcome)
        return outcome

    def complete(self, outcome: DeliveryOutcome) -> bool:
        """
        Record a terminal outcome.

        Returns True for the first completion of a pair and False for a
        repeated one, which is ignored.

        Raises:
            InvariantViolationError: On a repeated completion in strict mode
        """
        key = (outcome.event_id, outcome.sink_id)
        previous = self._completed.get(key)
        if previous is not None:
            message = (
                f"Duplicate completion for event {outcome.event_id} on {outcome.sink_id} "
                f"(first: {previous.status.value}, second: {outcome.status.value})"
            )
            if self._strict:
                raise InvariantViolationError(message)
            logger.warning(f"{message}; ignored")
            return False

        self._completed[key] = outcome
        DELIVERY_OUTCOMES_TOTAL.labels(sink=outcome.sink_id, outcome=outcome.status.value).inc()
        return True

    async def _attempt_until_terminal(
        self, event: Event, subscription: Subscription
    ) -> Tuple[DeliveryOutcome, Event]:
        sink = subscription.sink
        current = event

        while True:
            attempts = current.attempt + 1
            DELIVERY_ATTEMPTS_TOTAL.labels(sink=sink.sink_id).inc()
            try:
                await asyncio.wait_for(sink.enqueue(current), timeout=self._sink_timeout)
            except Exception as exc:
                reason = str(exc) or type(exc).__name__

                if classify_error(exc) is ErrorKind.PERMANENT:
                    logger.error(
                        f"Permanent failure delivering {current.id} to {sink.sink_id}: {reason}"
                    )
                    return self._outcome(current, sink, DeliveryStatus.FAILED, attempts, reason), current

                if attempts >= subscription.max_attempts:
                    logger.error(
                        f"Delivery of {current.id} to {sink.sink_id} exhausted "
                        f"after {attempts} attempts: {reason}"
                    )
                    return self._outcome(current, sink, DeliveryStatus.EXHAUSTED, attempts, reason), current

                delay = subscription.backoff.delay(current.attempt)
                logger.warning(
                    f"Transient failure delivering {current.id} to {sink.sink_id} "
                    f"(attempt {attempts}/{subscription.max_attempts}): {reason}; "
                    f"retrying in {delay:.3f}s"
                )
                await self._sleep(delay)
                current = current.with_attempt(attempts)
                continue

            logger.debug(f"Event {current.id} acked by {sink.sink_id} (attempt {attempts})")
            return self._outcome(current, sink, DeliveryStatus.ACKED, attempts), current

    @staticmethod
    def _outcome(
        event: Event,
        sink: DurableSink,
        status: DeliveryStatus,
        attempts: int,
        reason: Optional[str] = None,
    ) -> DeliveryOutcome:
        return DeliveryOutcome(
            status=status,
            event_id=event.id,
            sink_id=sink.sink_id,
            attempts=attempts,
            reason=reason,
        )

    async def _dead_letter(self, event: Event, outcome: DeliveryOutcome) -> None:
        if self.dead_letter_sink is None:
            logger.error(
                f"Dropping event {event.id} for {outcome.sink_id} "
                f"({outcome.status.value}); no dead-letter sink configured"
            )
            DEAD_LETTER_TOTAL.labels(result="dropped").inc()
            return

        try:
            # One dead-letter entry per failed pair, not per event
            await asyncio.wait_for(
                self.dead_letter_sink.enqueue_message(
                    event.to_envelope(), message_id=f"{event.id}:{outcome.sink_id}"
                ),
                timeout=self._sink_timeout,
            )
        except Exception as exc:
            logger.error(
                f"Failed to dead-letter event {event.id} from {outcome.sink_id}: {exc}",
                exc_info=True,
            )
            DEAD_LETTER_TOTAL.labels(result="failed").inc()
            return

        logger.info(
            f"Event {event.id} dead-lettered to {self.dead_letter_sink.sink_id} "
            f"({outcome.status.value} on {outcome.sink_id})"
        )
        DEAD_LETTER_TOTAL.labels(result="stored").inc()
