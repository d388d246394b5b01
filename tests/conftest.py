"""Shared pytest fixtures for binrelay tests."""

from __future__ import annotations

import logging
from typing import Any, Callable

import pytest

from binrelay.clock import ManualClock
from binrelay.events import BinlogEvent, EventType


START_TIME = 1_700_000_000.0


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at a fixed timestamp."""
    return ManualClock(START_TIME)


@pytest.fixture
def make_event() -> Callable[..., BinlogEvent]:
    """Factory for row events with sensible defaults."""

    def factory(
        type: str | EventType = EventType.INSERT,
        database: str = "shop",
        table: str = "orders",
        rows: list[Any] | None = None,
        **kwargs: Any,
    ) -> BinlogEvent:
        data = kwargs.pop("data", None)
        if data is None:
            rows = rows if rows is not None else [{"id": 1, "status": "new"}]
            data = {"rows": rows, "columns": sorted({k for r in rows for k in r})}
        kwargs.setdefault("timestamp", START_TIME)
        return BinlogEvent(type=type, database=database, table=table, data=data, **kwargs)

    return factory


@pytest.fixture
def sized_event() -> Callable[..., BinlogEvent]:
    """Factory for query events whose serialized size is exactly ``size`` bytes."""

    def factory(size: int, database: str = "shop", table: str = "orders") -> BinlogEvent:
        def build(query: str) -> BinlogEvent:
            return BinlogEvent(
                type=EventType.QUERY,
                database=database,
                table=table,
                data={"query": query},
                timestamp=START_TIME,
            )

        base = build("").serialized_size
        if size < base:
            raise ValueError(f"smallest event is {base} bytes, asked for {size}")
        event = build("x" * (size - base))
        assert event.serialized_size == size
        return event

    return factory


@pytest.fixture(autouse=True)
def reset_binrelay_logger():
    """Remove handlers installed by configure_logging between tests."""
    yield
    logger = logging.getLogger("binrelay")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
