"""Tests for the change-capture event model."""

import json
from datetime import datetime
from decimal import Decimal

import pytest

from binrelay.errors import SerializationError
from binrelay.events import BinlogEvent, EventType, encode_json


class TestEventType:
    """Tests for EventType."""

    def test_parse_known(self):
        """Test parsing known type names case-insensitively."""
        assert EventType.parse("insert") == EventType.INSERT
        assert EventType.parse("UPDATE") == EventType.UPDATE

    def test_parse_unknown(self):
        """Test that unknown names map to UNKNOWN."""
        assert EventType.parse("write_rows_v3") == EventType.UNKNOWN

    def test_is_data_change(self):
        """Test data-change classification."""
        assert EventType.DELETE.is_data_change is True
        assert EventType.QUERY.is_data_change is False
        assert EventType.ROTATE.is_data_change is False


class TestBinlogEvent:
    """Tests for BinlogEvent."""

    def test_string_type_is_coerced(self):
        """Test that a string type becomes an EventType."""
        event = BinlogEvent(type="delete", database="shop", table="orders")
        assert event.type is EventType.DELETE

    def test_canonical_dict(self, make_event):
        """Test the canonical representation."""
        event = make_event(log_position=4, event_size=120)

        data = event.to_dict()

        assert set(data) == {"event_info", "data"}
        assert data["event_info"] == {
            "type": "insert",
            "database": "shop",
            "table": "orders",
            "datetime": "2023-11-14 22:13:20",
            "timestamp": 1_700_000_000.0,
            "log_position": 4,
            "event_size": 120,
        }
        assert data["data"]["rows"] == [{"id": 1, "status": "new"}]

    def test_serialized_size_is_compact_json_length(self, make_event):
        """Test that the size is the byte length of compact UTF-8 JSON."""
        event = make_event(rows=[{"id": 1, "name": "café"}])
        expected = json.dumps(event.to_dict(), ensure_ascii=False, separators=(",", ":"))

        assert event.serialized_size == len(expected.encode("utf-8"))
        assert event.serialized_size == len(event.to_json())

    def test_row_values_are_encoded(self, make_event):
        """Test encoding of datetime, Decimal and bytes row values."""
        event = make_event(
            rows=[{"at": datetime(2024, 1, 2, 3, 4, 5), "price": Decimal("9.90"), "raw": b"\x00\x01"}]
        )

        row = json.loads(event.to_json())["data"]["rows"][0]

        assert row == {"at": "2024-01-02 03:04:05", "price": "9.90", "raw": "AAE="}

    def test_unserializable_data_raises(self, make_event):
        """Test that unknown value types raise SerializationError."""
        event = make_event(rows=[{"obj": object()}])

        with pytest.raises(SerializationError):
            event.serialized_size

    def test_row_accessors(self, make_event):
        """Test changed_rows, columns and query accessors."""
        event = make_event(rows=[{"id": 1}, {"id": 2}])

        assert event.is_data_change_event is True
        assert event.changed_rows == [{"id": 1}, {"id": 2}]
        assert event.columns == ["id"]
        assert event.query == ""

    def test_query_accessors(self):
        """Test accessors on a query event."""
        event = BinlogEvent(type=EventType.QUERY, database="shop", data={"query": "TRUNCATE t"})

        assert event.is_query_event is True
        assert event.query == "TRUNCATE t"
        assert event.changed_rows == []
        assert event.columns == []

    def test_from_dict_canonical(self, make_event):
        """Test rebuilding an event from its canonical form."""
        event = make_event(log_position=42)

        assert BinlogEvent.from_dict(event.to_dict()) == event

    def test_from_dict_flat(self):
        """Test rebuilding an event from a flat dictionary."""
        event = BinlogEvent.from_dict(
            {"type": "update", "database": "shop", "table": "items", "timestamp": 10}
        )

        assert event.type == EventType.UPDATE
        assert event.table == "items"
        assert event.timestamp == 10.0
        assert dict(event.data) == {}


class TestEncodeJson:
    """Tests for encode_json."""

    def test_compact_output(self):
        """Test that output has no whitespace separators."""
        assert encode_json({"a": [1, 2]}) == b'{"a":[1,2]}'

    def test_non_ascii_kept(self):
        """Test that non-ASCII text is kept as UTF-8."""
        assert encode_json("日本") == '"日本"'.encode("utf-8")
