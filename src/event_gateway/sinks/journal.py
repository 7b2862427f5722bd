"""
Journals for accepted events.

With a journal configured the broker records every accepted event before
answering the producer and removes the entry once all of the event's
deliveries are terminal. Entries still present at startup are replayed, so an
accepted event survives a gateway crash.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List

from nats.errors import Error as NatsError
from nats.js.errors import APIError, NotFoundError, ServiceUnavailableError
from pydantic import ValidationError

from ..models.events import Event
from .base import PermanentSinkError, TransientSinkError
from .jetstream_sink import JetStreamSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JournalEntry:
    """A journaled event and its position in the journal."""
    seq: int
    event: Event


class EventJournal(ABC):
    """Durable record of accepted, not yet fully delivered events."""

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def create_if_not_exists(self) -> None:
        """Provision the backing store. Nothing to do by default."""

    @abstractmethod
    async def record(self, event: Event) -> int:
        """
        Durably store an accepted event.

        Returns:
            Sequence number used to acknowledge the entry later
        """
        pass

    @abstractmethod
    async def acknowledge(self, seq: int) -> None:
        """Remove an entry whose deliveries are all terminal."""
        pass

    @abstractmethod
    async def replay(self) -> List[JournalEntry]:
        """Entries not yet acknowledged, oldest first."""
        pass


class MemoryJournal(EventJournal):
    """
    In-process journal for development and testing.

    Entries outlive connect/close cycles, which lets tests restart a gateway
    against the same journal.
    """

    def __init__(self):
        self._entries: Dict[int, bytes] = {}
        self._next_seq = 1
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def record(self, event: Event) -> int:
        if not self._connected:
            raise ConnectionError("Memory journal not connected")
        seq = self._next_seq
        self._next_seq += 1
        self._entries[seq] = event.to_envelope()
        return seq

    async def acknowledge(self, seq: int) -> None:
        self._entries.pop(seq, None)

    async def replay(self) -> List[JournalEntry]:
        return [
            JournalEntry(seq=seq, event=Event.from_envelope(data))
            for seq, data in sorted(self._entries.items())
        ]

    @property
    def count(self) -> int:
        """Entries not yet acknowledged."""
        return len(self._entries)


class JetStreamJournal(JetStreamSink, EventJournal):
    """
    Journal kept in a JetStream stream.

    Entries are published with the event id as Nats-Msg-Id and deleted by
    sequence number once acknowledged.
    """

    async def record(self, event: Event) -> int:
        token = await self.enqueue(event)
        return int(token.rsplit(":", 1)[1])

    async def acknowledge(self, seq: int) -> None:
        js = self._require_js()
        try:
            await js.delete_msg(self.stream_name, seq)
        except NotFoundError:
            logger.debug(f"Journal entry {seq} already removed from {self.stream_name}")
        except ServiceUnavailableError as e:
            raise TransientSinkError(f"JetStream unavailable: {e}") from e
        except APIError as e:
            raise PermanentSinkError(f"Failed to remove journal entry {seq}: {e}") from e
        except NatsError as e:
            raise TransientSinkError(f"Failed to remove journal entry {seq}: {e}") from e

    async def replay(self) -> List[JournalEntry]:
        js = self._require_js()
        info = await js.stream_info(self.stream_name)
        if not info.state.messages:
            return []

        entries: List[JournalEntry] = []
        for seq in range(info.state.first_seq, info.state.last_seq + 1):
            try:
                msg = await js.get_msg(self.stream_name, seq)
            except NotFoundError:
                # Acknowledged entries leave gaps
                continue
            try:
                entries.append(JournalEntry(seq=seq, event=Event.from_envelope(msg.data)))
            except ValidationError as e:
                logger.error(f"Skipping unreadable journal entry {seq} in {self.stream_name}: {e}")
        logger.info(f"Read {len(entries)} journal entries from {self.stream_name}")
        return entries
