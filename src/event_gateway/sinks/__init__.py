"""
Durable sink backends.

This package provides the DurableSink interface and its implementations
(NATS JetStream, In-Memory), plus the journals the broker can use to keep
accepted events across restarts.
"""
from typing import Optional

from ..core.config import Settings
from .base import DurableSink, PermanentSinkError, SinkError, TransientSinkError
from .jetstream_sink import JetStreamSink
from .journal import EventJournal, JetStreamJournal, JournalEntry, MemoryJournal
from .memory_sink import MemorySink


def _jetstream_options(settings: Settings) -> dict:
    return {
        "url": settings.nats_url,
        "subject_prefix": settings.nats_subject_prefix,
        "connect_timeout": settings.nats_connect_timeout,
        "max_reconnect_attempts": settings.nats_max_reconnect_attempts,
        "publish_timeout": settings.sink_timeout_seconds,
    }


def build_sink(queue_name: str, settings: Settings) -> DurableSink:
    """
    Factory function to create a sink for a queue based on configuration.
    """
    backend = settings.sink_backend.lower()

    if backend == "jetstream":
        return JetStreamSink(queue_name=queue_name, **_jetstream_options(settings))
    elif backend == "memory":
        return MemorySink(queue_name)
    else:
        raise ValueError(f"Unknown sink backend: {backend}")


def build_journal(settings: Settings) -> Optional[EventJournal]:
    """
    Create the broker's journal, or None when pending events stay in memory.
    """
    buffer = settings.broker_buffer.lower()

    if buffer == "jetstream":
        return JetStreamJournal(queue_name=settings.journal_stream, **_jetstream_options(settings))
    elif buffer == "memory":
        return None
    else:
        raise ValueError(f"Unknown broker buffer: {buffer}")


__all__ = [
    "DurableSink",
    "SinkError",
    "TransientSinkError",
    "PermanentSinkError",
    "JetStreamSink",
    "MemorySink",
    "EventJournal",
    "JournalEntry",
    "JetStreamJournal",
    "MemoryJournal",
    "build_sink",
    "build_journal",
]
