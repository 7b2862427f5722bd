"""
Tests for the at-least-once delivery pipeline.
"""
import asyncio

import pytest

from event_gateway.core.errors import DuplicateDeliveryError, InvariantViolationError
from event_gateway.models.events import DeliveryOutcome, DeliveryStatus, Event
from event_gateway.services.backoff import BackoffPolicy
from event_gateway.services.delivery_pipeline import DeliveryPipeline, ErrorKind, classify_error
from event_gateway.services.subscription_registry import Subscription
from event_gateway.sinks.base import PermanentSinkError, TransientSinkError
from event_gateway.sinks.memory_sink import MemorySink

from fake_sinks import RecordingSleep, ScriptedSink


def make_event(topic: str = "orders") -> Event:
    return Event(topic=topic, payload=b'{"id": 42}', content_type="application/json")


async def connected_memory_sink(sink_id: str) -> MemorySink:
    sink = MemorySink(sink_id)
    await sink.connect()
    return sink


class TestClassifyError:
    """Tests for transient/permanent classification."""

    @pytest.mark.parametrize(
        "exc",
        [
            TransientSinkError("unavailable"),
            asyncio.TimeoutError(),
            TimeoutError(),
            ConnectionError("reset"),
        ],
    )
    def test_transient(self, exc):
        assert classify_error(exc) is ErrorKind.TRANSIENT

    @pytest.mark.parametrize(
        "exc",
        [PermanentSinkError("malformed"), ValueError("bad"), RuntimeError("bug")],
    )
    def test_permanent(self, exc):
        assert classify_error(exc) is ErrorKind.PERMANENT


class TestDelivery:
    """Attempt loop, retry and terminal outcomes."""

    async def test_healthy_sink_acks_on_first_attempt(self):
        sink = ScriptedSink("orders-queue")
        pipeline = DeliveryPipeline(sleep=RecordingSleep())
        event = make_event()

        outcome = await pipeline.deliver(event, Subscription(topic="orders", sink=sink))

        assert outcome.status == DeliveryStatus.ACKED
        assert outcome.attempts == 1
        assert sink.calls == 1
        assert event.id in sink

    async def test_transient_failures_are_retried_with_growing_backoff(self):
        sink = ScriptedSink(
            "orders-queue",
            failures=[TransientSinkError("down"), TransientSinkError("still down")],
        )
        sleep = RecordingSleep()
        pipeline = DeliveryPipeline(sleep=sleep)
        subscription = Subscription(
            topic="orders",
            sink=sink,
            max_attempts=5,
            backoff=BackoffPolicy(base_backoff_ms=100, max_backoff_ms=30_000, jitter_fraction=0.2),
        )

        outcome = await pipeline.deliver(make_event(), subscription)

        assert outcome.status == DeliveryStatus.ACKED
        assert outcome.attempts == 3
        assert sink.calls == 3
        assert len(sleep.delays) == 2
        # With 20% jitter the ranges [0.08, 0.12] and [0.16, 0.24] cannot overlap
        assert sleep.delays[1] >= sleep.delays[0]

    async def test_attempt_numbers_move_forward_on_copies(self):
        sink = ScriptedSink("orders-queue", failures=[TransientSinkError("down")] * 2)
        pipeline = DeliveryPipeline(sleep=RecordingSleep())
        event = make_event()

        await pipeline.deliver(event, Subscription(topic="orders", sink=sink))

        assert sink.attempts_seen == [0, 1, 2]
        assert event.attempt == 0

    async def test_always_failing_sink_is_exhausted_and_dead_lettered(self):
        sink = ScriptedSink("orders-queue", always=TransientSinkError("down"))
        dead_letter = await connected_memory_sink("dead-letter")
        pipeline = DeliveryPipeline(dead_letter_sink=dead_letter, sleep=RecordingSleep())
        event = make_event()

        outcome = await pipeline.deliver(
            event, Subscription(topic="orders", sink=sink, max_attempts=3)
        )

        assert outcome.status == DeliveryStatus.EXHAUSTED
        assert outcome.attempts == 3
        assert outcome.reason == "down"
        assert sink.calls == 3
        assert f"{event.id}:orders-queue" in dead_letter
        stored = Event.from_envelope(dead_letter.messages[0])
        assert stored.id == event.id
        assert stored.attempt == 2

    async def test_permanent_failure_is_not_retried(self):
        sink = ScriptedSink("orders-queue", always=PermanentSinkError("malformed"))
        dead_letter = await connected_memory_sink("dead-letter")
        sleep = RecordingSleep()
        pipeline = DeliveryPipeline(dead_letter_sink=dead_letter, sleep=sleep)

        outcome = await pipeline.deliver(make_event(), Subscription(topic="orders", sink=sink))

        assert outcome.status == DeliveryStatus.FAILED
        assert outcome.attempts == 1
        assert sink.calls == 1
        assert sleep.delays == []
        assert dead_letter.count == 1

    async def test_sink_timeout_counts_as_transient(self):
        sink = ScriptedSink("slow-queue", delay=1.0)
        pipeline = DeliveryPipeline(sink_timeout=0.01, sleep=RecordingSleep())

        outcome = await pipeline.deliver(
            make_event(), Subscription(topic="orders", sink=sink, max_attempts=2)
        )

        assert outcome.status == DeliveryStatus.EXHAUSTED
        assert sink.calls == 2

    async def test_exhausted_without_dead_letter_sink_is_dropped(self):
        sink = ScriptedSink("orders-queue", always=TransientSinkError("down"))
        pipeline = DeliveryPipeline(sleep=RecordingSleep())

        outcome = await pipeline.deliver(
            make_event(), Subscription(topic="orders", sink=sink, max_attempts=1)
        )

        assert outcome.status == DeliveryStatus.EXHAUSTED

    async def test_dead_letter_failure_does_not_change_outcome(self):
        sink = ScriptedSink("orders-queue", always=PermanentSinkError("malformed"))
        dead_letter = MemorySink("dead-letter")  # never connected
        pipeline = DeliveryPipeline(dead_letter_sink=dead_letter, sleep=RecordingSleep())

        outcome = await pipeline.deliver(make_event(), Subscription(topic="orders", sink=sink))

        assert outcome.status == DeliveryStatus.FAILED
        assert dead_letter.count == 0

    async def test_dead_letter_keeps_one_entry_per_failed_pair(self):
        first = ScriptedSink("queue-a", always=PermanentSinkError("no"))
        second = ScriptedSink("queue-b", always=PermanentSinkError("no"))
        dead_letter = await connected_memory_sink("dead-letter")
        pipeline = DeliveryPipeline(dead_letter_sink=dead_letter, sleep=RecordingSleep())
        event = make_event()

        await pipeline.deliver(event, Subscription(topic="orders", sink=first))
        await pipeline.deliver(event, Subscription(topic="orders", sink=second))

        assert dead_letter.count == 2


class TestCompletionBookkeeping:
    """One attempt in flight per pair, one recorded outcome per pair."""

    async def test_concurrent_delivery_of_same_pair_is_refused(self):
        sink = ScriptedSink("orders-queue", delay=0.05)
        pipeline = DeliveryPipeline(sleep=RecordingSleep())
        event = make_event()
        subscription = Subscription(topic="orders", sink=sink)

        first = asyncio.create_task(pipeline.deliver(event, subscription))
        await asyncio.sleep(0)
        assert pipeline.in_flight == 1

        with pytest.raises(DuplicateDeliveryError):
            await pipeline.deliver(event, subscription)

        outcome = await first
        assert outcome.is_acked
        assert sink.calls == 1
        assert pipeline.in_flight == 0

    async def test_same_event_to_different_sinks_runs_concurrently(self):
        first = ScriptedSink("queue-a", delay=0.02)
        second = ScriptedSink("queue-b", delay=0.02)
        pipeline = DeliveryPipeline(sleep=RecordingSleep())
        event = make_event()

        outcomes = await asyncio.gather(
            pipeline.deliver(event, Subscription(topic="orders", sink=first)),
            pipeline.deliver(event, Subscription(topic="orders", sink=second)),
        )

        assert all(o.is_acked for o in outcomes)

    async def test_repeated_completion_is_ignored(self):
        sink = ScriptedSink("orders-queue")
        pipeline = DeliveryPipeline(sleep=RecordingSleep())
        event = make_event()
        subscription = Subscription(topic="orders", sink=sink)

        first = await pipeline.deliver(event, subscription)
        second = await pipeline.deliver(event, subscription)

        assert second == first
        assert pipeline.outcome_for(event.id, "orders-queue") == first
        # The sink saw the redelivery and absorbed it
        assert sink.count == 1
        assert sink.duplicates == 1

    async def test_repeated_completion_raises_in_strict_mode(self):
        pipeline = DeliveryPipeline(strict_invariants=True)
        outcome = DeliveryOutcome(
            status=DeliveryStatus.ACKED, event_id="e1", sink_id="orders-queue", attempts=1
        )

        assert pipeline.complete(outcome) is True
        with pytest.raises(InvariantViolationError):
            pipeline.complete(outcome.model_copy(update={"status": DeliveryStatus.FAILED}))

    def test_outcome_for_unknown_pair(self):
        assert DeliveryPipeline().outcome_for("missing", "orders-queue") is None
