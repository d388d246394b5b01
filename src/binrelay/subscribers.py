"""Consumer-side subscribers for decoded binlog events.

A subscriber declares which databases, tables and event types it cares
about; an empty collection means "all". The registry routes each event to
every interested subscriber and keeps one failing subscriber from affecting
the others.

Example:
    >>> class OrderAudit(BaseSubscriber):
    ...     databases = ("shop",)
    ...     tables = ("orders",)
    ...
    ...     def on_event(self, event):
    ...         audit_log.append(event.changed_rows)
    >>>
    >>> registry = SubscriberRegistry()
    >>> registry.register(OrderAudit())
    >>> registry.dispatch(event)
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Collection, Protocol, runtime_checkable

from binrelay.events import BinlogEvent, EventType


logger = logging.getLogger(__name__)


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class BinlogSubscriber(Protocol):
    """Receiver of decoded binlog events."""

    def handle(self, event: BinlogEvent) -> None:
        ...

    def interested_databases(self) -> Collection[str]:
        ...

    def interested_tables(self) -> Collection[str]:
        ...

    def interested_event_types(self) -> Collection[str]:
        ...


def _matches(event: BinlogEvent, subscriber: BinlogSubscriber) -> bool:
    databases = subscriber.interested_databases()
    if databases and event.database not in databases:
        return False
    tables = subscriber.interested_tables()
    if tables and event.table not in tables:
        return False
    types = subscriber.interested_event_types()
    if types and event.type.value not in {EventType.parse(t).value for t in types}:
        return False
    return True


# =============================================================================
# Base implementations
# =============================================================================


class BaseSubscriber:
    """Subscriber with class-level filters.

    Subclasses set ``databases``, ``tables`` and ``event_types`` and implement
    :meth:`on_event`. :meth:`handle` ignores events outside the filters, so
    the subscriber can also be called directly.
    """

    name: str = ""
    databases: Collection[str] = ()
    tables: Collection[str] = ()
    event_types: Collection[str] = ()

    def interested_databases(self) -> Collection[str]:
        return self.databases

    def interested_tables(self) -> Collection[str]:
        return self.tables

    def interested_event_types(self) -> Collection[str]:
        return self.event_types

    def should_handle(self, event: BinlogEvent) -> bool:
        """Whether the event passes the database, table and type filters."""
        return _matches(event, self)

    def handle(self, event: BinlogEvent) -> None:
        if self.should_handle(event):
            self.on_event(event)

    def on_event(self, event: BinlogEvent) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name or type(self).__name__!r})"


class LoggingSubscriber(BaseSubscriber):
    """Log every changed row and statement at INFO level.

    Defaults to data-change events only.
    """

    name = "logging"
    event_types = (EventType.INSERT.value, EventType.UPDATE.value, EventType.DELETE.value)

    def __init__(
        self,
        *,
        databases: Collection[str] | None = None,
        tables: Collection[str] | None = None,
        event_types: Collection[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if databases is not None:
            self.databases = tuple(databases)
        if tables is not None:
            self.tables = tuple(tables)
        if event_types is not None:
            self.event_types = tuple(event_types)
        self._logger = logger or logging.getLogger(__name__)

    def on_event(self, event: BinlogEvent) -> None:
        extra = {
            "event_type": event.type.value,
            "database": event.database,
            "table": event.table,
        }
        if event.is_query_event:
            self._logger.info("Query on %s: %s", event.database, event.query, extra=extra)
            return

        for row in event.changed_rows:
            if event.type == EventType.UPDATE and isinstance(row, dict):
                self._logger.info(
                    "Row updated in %s.%s: %s -> %s",
                    event.database,
                    event.table,
                    row.get("before", {}),
                    row.get("after", {}),
                    extra=extra,
                )
            else:
                self._logger.info(
                    "Row %s in %s.%s: %s",
                    event.type.value,
                    event.database,
                    event.table,
                    row,
                    extra=extra,
                )


# =============================================================================
# Registry
# =============================================================================


class SubscriberRegistry:
    """Explicit list of subscribers with failure-isolated dispatch.

    Example:
        >>> registry = SubscriberRegistry()
        >>> registry.register(LoggingSubscriber())
        >>> delivered = registry.dispatch(event)
    """

    def __init__(self) -> None:
        self._subscribers: list[BinlogSubscriber] = []
        self._lock = threading.Lock()
        self._failures = 0

    def register(self, subscriber: BinlogSubscriber) -> None:
        """Register a subscriber.

        Raises:
            TypeError: If the object does not implement the subscriber protocol.
        """
        if not isinstance(subscriber, BinlogSubscriber):
            raise TypeError(f"{subscriber!r} does not implement BinlogSubscriber")
        with self._lock:
            self._subscribers.append(subscriber)

    def unregister(self, subscriber: BinlogSubscriber) -> bool:
        """Unregister a subscriber.

        Returns:
            True if removed.
        """
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                return False
            return True

    def subscribers_for(self, event: BinlogEvent) -> list[BinlogSubscriber]:
        with self._lock:
            subscribers = list(self._subscribers)
        return [s for s in subscribers if _matches(event, s)]

    def dispatch(self, event: BinlogEvent) -> tuple[int, int]:
        """Deliver an event to every interested subscriber.

        Returns:
            Tuple of (deliveries, failures).
        """
        delivered = 0
        failed = 0
        for subscriber in self.subscribers_for(event):
            try:
                subscriber.handle(event)
            except Exception:
                failed += 1
                logger.exception(
                    "Subscriber %r failed on %s event for %s.%s",
                    subscriber,
                    event.type.value,
                    event.database,
                    event.table,
                )
            else:
                delivered += 1
        if failed:
            with self._lock:
                self._failures += failed
        return delivered, failed

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "subscribers": len(self._subscribers),
                "failures": self._failures,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __contains__(self, subscriber: object) -> bool:
        with self._lock:
            return subscriber in self._subscribers
