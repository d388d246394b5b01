"""Change-capture event model.

Events are produced upstream by the binlog decode loop and are read-only to
the batching pipeline. Their canonical dictionary form is what travels inside
batch payloads, and its compact JSON encoding defines the event's size for
memory accounting.

Example:
    >>> event = BinlogEvent(
    ...     type=EventType.INSERT,
    ...     database="shop",
    ...     table="orders",
    ...     data={"rows": [{"id": 1}], "columns": ["id"]},
    ...     timestamp=1_700_000_000.0,
    ... )
    >>> event.is_data_change_event
    True
    >>> event.serialized_size > 0
    True
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from functools import cached_property
from typing import Any, Mapping

from binrelay.errors import SerializationError


# =============================================================================
# JSON encoding
# =============================================================================


def _json_default(value: Any) -> Any:
    """Encode the non-JSON types a MySQL row can carry."""
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_json(obj: Any) -> bytes:
    """Encode ``obj`` as compact UTF-8 JSON.

    Raises:
        SerializationError: If the object holds values that cannot be encoded.
    """
    try:
        return json.dumps(
            obj,
            ensure_ascii=False,
            separators=(",", ":"),
            default=_json_default,
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Cannot serialize to JSON: {e}") from e


# =============================================================================
# Event types
# =============================================================================


class EventType(str, Enum):
    """Kinds of events a binlog source reports."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    QUERY = "query"
    ROTATE = "rotate"
    XID = "xid"
    GTID = "gtid"
    HEARTBEAT = "heartbeat"
    TABLE_MAP = "table_map"
    FORMAT_DESCRIPTION = "format_description"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: "str | EventType") -> "EventType":
        """Convert a string to an EventType, mapping unknown kinds to UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_data_change(self) -> bool:
        return self in (EventType.INSERT, EventType.UPDATE, EventType.DELETE)


_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


# =============================================================================
# Event
# =============================================================================


@dataclass(frozen=True)
class BinlogEvent:
    """An already-decoded change-capture event.

    Attributes:
        type: Event kind.
        database: Originating database name.
        table: Originating table name, empty for database-wide events.
        data: Row data (``rows``/``columns``) for data-change events or the
            statement (``query``/``execution_time``) for query events.
        timestamp: Capture time in unix seconds.
        log_position: Position of the event in the binlog file.
        event_size: Wire size reported by the source, informational only.
    """

    type: EventType
    database: str = ""
    table: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0
    log_position: int = 0
    event_size: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType.parse(self.type))

    @property
    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def is_data_change_event(self) -> bool:
        return self.type.is_data_change

    @property
    def is_query_event(self) -> bool:
        return self.type == EventType.QUERY

    @property
    def changed_rows(self) -> list[Any]:
        if not self.is_data_change_event:
            return []
        return list(self.data.get("rows", []))

    @property
    def columns(self) -> list[Any]:
        if not self.is_data_change_event:
            return []
        return list(self.data.get("columns", []))

    @property
    def query(self) -> str:
        if not self.is_query_event:
            return ""
        return str(self.data.get("query", ""))

    def event_info(self) -> dict[str, Any]:
        """Get the event header as a dictionary."""
        return {
            "type": self.type.value,
            "database": self.database,
            "table": self.table,
            "datetime": self.datetime.strftime(_DATETIME_FORMAT),
            "timestamp": self.timestamp,
            "log_position": self.log_position,
            "event_size": self.event_size,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to the canonical dictionary representation."""
        return {
            "event_info": self.event_info(),
            "data": dict(self.data),
        }

    def to_json(self) -> bytes:
        """Encode the canonical representation as compact JSON.

        Raises:
            SerializationError: If ``data`` holds values that cannot be encoded.
        """
        return encode_json(self.to_dict())

    @cached_property
    def serialized_size(self) -> int:
        """Size in bytes of the compact JSON encoding."""
        return len(self.to_json())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BinlogEvent":
        """Rebuild an event from its canonical representation.

        Flat dictionaries (``type``, ``database``, ... at top level) are
        accepted too, which is the shape the CLI reads from JSON-lines input.
        """
        info = data.get("event_info", data)
        payload = data.get("data", {})
        return cls(
            type=EventType.parse(info.get("type", EventType.UNKNOWN)),
            database=info.get("database", "") or "",
            table=info.get("table", "") or "",
            data=dict(payload or {}),
            timestamp=float(info.get("timestamp", 0.0) or 0.0),
            log_position=int(info.get("log_position", 0) or 0),
            event_size=int(info.get("event_size", 0) or 0),
        )
