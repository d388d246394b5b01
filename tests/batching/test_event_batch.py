"""Tests for EventBatch."""

import pytest

from binrelay.batching import BatchClosedError, EventBatch
from binrelay.events import BinlogEvent, EventType


class TestAddEvent:
    """Tests for bounded intake."""

    def test_accumulates_in_order(self, sized_event, clock):
        """Test count, memory and order while under both bounds."""
        batch = EventBatch(max_count=10, max_memory_bytes=10_000, clock=clock)
        events = [sized_event(200 + i) for i in range(5)]

        for event in events:
            assert batch.add_event(event) is True

        assert batch.event_count == 5
        assert batch.memory_usage == sum(e.serialized_size for e in events)
        assert list(batch.events) == events

    def test_rejects_when_full(self, sized_event, clock):
        """Test rejection at max_count without mutation."""
        batch = EventBatch(max_count=2, max_memory_bytes=10_000, clock=clock)
        batch.add_event(sized_event(200))
        batch.add_event(sized_event(200))

        assert batch.add_event(sized_event(200)) is False
        assert batch.event_count == 2
        assert batch.memory_usage == 400

    def test_rejects_memory_overflow(self, sized_event, clock):
        """Test rejection when the event would exceed the memory bound."""
        batch = EventBatch(max_count=10, max_memory_bytes=1000, clock=clock)
        batch.add_event(sized_event(600))

        assert batch.add_event(sized_event(401)) is False
        assert batch.memory_usage == 600
        assert batch.add_event(sized_event(400)) is True
        assert batch.memory_usage == 1000

    def test_oversized_event_rejected_by_empty_batch(self, sized_event, clock):
        """Test that an event larger than the bound never fits."""
        batch = EventBatch(max_count=10, max_memory_bytes=500, clock=clock)

        assert batch.add_event(sized_event(501)) is False
        assert batch.is_empty

    def test_closed_batch_rejects_changes(self, sized_event, clock):
        """Test that a closed batch cannot change or be closed again."""
        batch = EventBatch(clock=clock)
        batch.close()

        assert batch.is_closed
        with pytest.raises(BatchClosedError):
            batch.add_event(sized_event(200))
        with pytest.raises(BatchClosedError):
            batch.clear()
        with pytest.raises(BatchClosedError):
            batch.close()

    def test_clear(self, sized_event, clock):
        """Test clearing resets events, memory and age."""
        batch = EventBatch(max_age_seconds=5, clock=clock)
        batch.add_event(sized_event(200))
        clock.advance(3)

        batch.clear()

        assert batch.is_empty
        assert batch.memory_usage == 0
        assert batch.age == 0


class TestShouldFlush:
    """Tests for flush conditions."""

    def test_fresh_batch(self, clock):
        """Test that a fresh batch is not due."""
        assert EventBatch(clock=clock).should_flush() is False

    def test_full(self, sized_event, clock):
        """Test flush when count reaches the bound."""
        batch = EventBatch(max_count=2, clock=clock)
        batch.add_event(sized_event(200))
        assert batch.should_flush() is False
        batch.add_event(sized_event(200))
        assert batch.is_full
        assert batch.should_flush() is True

    def test_memory_full_at_exact_bound(self, sized_event, clock):
        """Test flush when memory reaches the bound exactly."""
        batch = EventBatch(max_memory_bytes=1000, clock=clock)
        batch.add_event(sized_event(999))
        assert batch.should_flush() is False

        batch = EventBatch(max_memory_bytes=1000, clock=clock)
        batch.add_event(sized_event(1000))
        assert batch.is_memory_full
        assert batch.should_flush() is True

    def test_timeout(self, sized_event, clock):
        """Test flush when age reaches the bound."""
        batch = EventBatch(max_age_seconds=5, clock=clock)
        batch.add_event(sized_event(200))

        clock.advance(4)
        assert batch.should_flush() is False
        clock.advance(1)
        assert batch.is_timeout
        assert batch.should_flush() is True


class TestStats:
    """Tests for batch statistics."""

    @pytest.fixture
    def batch(self, make_event, clock):
        batch = EventBatch(clock=clock)
        batch.add_event(make_event(EventType.INSERT, "shop", "orders"))
        batch.add_event(make_event(EventType.INSERT, "shop", "items"))
        batch.add_event(make_event(EventType.UPDATE, "crm", "users"))
        batch.add_event(BinlogEvent(type=EventType.QUERY, database="crm", data={"query": "BEGIN"}))
        batch.add_event(BinlogEvent(type=EventType.ROTATE))
        return batch

    def test_get_stats(self, batch, clock):
        """Test the statistics snapshot."""
        clock.advance(1.5)

        stats = batch.get_stats()

        assert stats["total_events"] == 5
        assert stats["memory_usage"] == batch.memory_usage
        assert stats["age_seconds"] == 1.5
        assert stats["type_stats"] == {"insert": 2, "update": 1, "query": 1, "rotate": 1}
        assert stats["database_stats"] == {"shop": 2, "crm": 2}
        assert stats["table_stats"] == {"shop.orders": 1, "shop.items": 1, "crm.users": 1}

    def test_to_dict(self, batch, clock):
        """Test conversion to canonical events, stats and creation time."""
        data = batch.to_dict()

        assert len(data["events"]) == 5
        assert data["events"][0]["event_info"]["table"] == "orders"
        assert data["created_at"] == clock.now()
        assert data["stats"]["total_events"] == 5
