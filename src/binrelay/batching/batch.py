"""Bounded event accumulator.

An :class:`EventBatch` collects events in arrival order until one of three
limits is reached: event count, summed serialized size, or age. A batch is
closed exactly once when it is flushed and never accepts events afterwards.
"""

from __future__ import annotations

from typing import Any

from binrelay.clock import Clock, SystemClock
from binrelay.errors import BinrelayError
from binrelay.events import BinlogEvent


class BatchClosedError(BinrelayError):
    """A closed batch was asked to change."""

    pass


class EventBatch:
    """Ordered, bounded batch of events.

    Example:
        >>> batch = EventBatch(max_count=2, max_memory_bytes=1000, max_age_seconds=5)
        >>> batch.add_event(event)
        True
        >>> batch.should_flush()
        False
    """

    def __init__(
        self,
        max_count: int = 100,
        max_memory_bytes: int = 1024 * 1024,
        max_age_seconds: float = 5.0,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the batch.

        Args:
            max_count: Maximum number of events.
            max_memory_bytes: Maximum sum of serialized event sizes.
            max_age_seconds: Age at which the batch is due for a flush.
            clock: Time source, defaults to the system clock.
        """
        self._max_count = max_count
        self._max_memory = max_memory_bytes
        self._max_age = max_age_seconds
        self._clock = clock or SystemClock()
        self._events: list[BinlogEvent] = []
        self._memory = 0
        self._created_at = self._clock.now()
        self._closed = False

    # -------------------------------------------------------------------------
    # Mutators
    # -------------------------------------------------------------------------

    def add_event(self, event: BinlogEvent) -> bool:
        """Append an event if it fits within the count and memory bounds.

        Returns:
            True if added, False if the batch is full or the event would push
            memory past the limit. The batch is unchanged on False.

        Raises:
            BatchClosedError: If the batch has been closed.
            SerializationError: If the event cannot be sized.
        """
        self._ensure_open()
        if self.is_full:
            return False

        size = event.serialized_size
        if self._memory + size > self._max_memory:
            return False

        self._events.append(event)
        self._memory += size
        return True

    def clear(self) -> None:
        """Drop all events and restart the age clock."""
        self._ensure_open()
        self._events = []
        self._memory = 0
        self._created_at = self._clock.now()

    def close(self) -> None:
        """Mark the batch read-only. Closing twice is an error."""
        self._ensure_open()
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise BatchClosedError("batch is closed")

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def events(self) -> tuple[BinlogEvent, ...]:
        return tuple(self._events)

    @property
    def event_count(self) -> int:
        return len(self._events)

    @property
    def memory_usage(self) -> int:
        return self._memory

    @property
    def created_at(self) -> float:
        return self._created_at

    @property
    def age(self) -> float:
        return self._clock.now() - self._created_at

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_empty(self) -> bool:
        return not self._events

    @property
    def is_full(self) -> bool:
        return len(self._events) >= self._max_count

    @property
    def is_memory_full(self) -> bool:
        return self._memory >= self._max_memory

    @property
    def is_timeout(self) -> bool:
        return self.age >= self._max_age

    def should_flush(self) -> bool:
        """Whether any of the count, memory or age limits has been reached."""
        return self.is_full or self.is_memory_full or self.is_timeout

    def __len__(self) -> int:
        return len(self._events)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of counts by type, database and table plus size and age.

        Events without a database or table are left out of the respective
        breakdown but still counted by type.
        """
        type_stats: dict[str, int] = {}
        database_stats: dict[str, int] = {}
        table_stats: dict[str, int] = {}

        for event in self._events:
            type_stats[event.type.value] = type_stats.get(event.type.value, 0) + 1
            if event.database:
                database_stats[event.database] = database_stats.get(event.database, 0) + 1
            if event.table:
                key = f"{event.database}.{event.table}"
                table_stats[key] = table_stats.get(key, 0) + 1

        return {
            "total_events": len(self._events),
            "memory_usage": self._memory,
            "age_seconds": round(self.age, 3),
            "type_stats": type_stats,
            "database_stats": database_stats,
            "table_stats": table_stats,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary of canonical events, stats and creation time."""
        return {
            "events": [event.to_dict() for event in self._events],
            "stats": self.get_stats(),
            "created_at": self._created_at,
        }

    def __repr__(self) -> str:
        return (
            f"EventBatch(events={len(self._events)}/{self._max_count}, "
            f"memory={self._memory}/{self._max_memory}, closed={self._closed})"
        )
