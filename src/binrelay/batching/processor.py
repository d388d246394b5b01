"""Batch lifecycle: intake, flush timing, payload assembly and delivery.

The processor owns exactly one open :class:`EventBatch` at a time. Events are
fed in one at a time from the decode loop; when a batch reaches one of its
limits it is closed, turned into a :class:`BatchPayload`, optionally
compressed, and handed to the sink. A fresh batch replaces the closed one
before the payload is built, so intake never waits for a batch to exist.

Flush failures never propagate out of :meth:`BatchProcessor.process_event`.
They are logged and passed to the listeners registered with
:meth:`BatchProcessor.on_failure`; the failed batch is not retried.

Example:
    >>> sink = MemorySink()
    >>> processor = BatchProcessor(BatchConfig(batch_size=500), sink)
    >>> with processor:
    ...     for event in decoded_events:
    ...         processor.process_event(event)
    >>> processor.get_stats()["total_events"]
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from typing import Any, Callable, Iterable

from binrelay.batching.base import (
    BatchConfig,
    BatchFailure,
    BatchPayload,
    CompressionDescriptor,
    CumulativeStats,
    FailureStage,
)
from binrelay.batching.batch import EventBatch
from binrelay.batching.sinks import Sink, SinkDispatcher
from binrelay.clock import Clock, SystemClock
from binrelay.compression.base import CompressionAlgorithm, UnsupportedAlgorithmError
from binrelay.compression.manager import CompressionManager
from binrelay.errors import SerializationError, ValidationError
from binrelay.events import BinlogEvent, encode_json

FailureListener = Callable[[BatchFailure], None]
FlushListener = Callable[[BatchPayload], None]


class BatchProcessor:
    """Accumulate events into bounded batches and deliver them.

    One processor serves one decode loop. Separate processors share no
    mutable state: each owns its batch, statistics, codec registry and
    dispatcher.
    """

    def __init__(
        self,
        config: BatchConfig | None = None,
        sink: Sink | None = None,
        *,
        compression_manager: CompressionManager | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            config: Batch configuration.
            sink: Destination for payloads; required when ``queue_enabled``.
            compression_manager: Codec registry, created from the config when
                compression is enabled and none is given.
            clock: Time source for batch age.
            logger: Logger to use instead of the module logger.

        Raises:
            ValidationError: If the configuration is invalid.
            UnsupportedAlgorithmError: If a fixed algorithm is not available.
        """
        self._config = config or BatchConfig()
        self._config.validate()
        self._clock = clock or SystemClock()
        self._logger = logger or logging.getLogger(__name__)

        if self._config.queue_enabled and sink is None:
            raise ValidationError("a sink is required when queue_enabled is set", "sink")

        self._compression: CompressionManager | None = compression_manager
        if self._config.compression_enabled:
            if self._compression is None:
                self._compression = CompressionManager(
                    levels=self._config.compression_levels, logger=self._logger
                )
            elif self._config.compression_levels:
                self._logger.warning(
                    "Ignoring compression_levels %s; the supplied compression manager "
                    "keeps its own codec levels",
                    self._config.compression_levels,
                )
            algorithm = self._config.compression_algorithm
            if algorithm != CompressionAlgorithm.AUTO.value and not self._compression.is_supported(
                algorithm
            ):
                raise UnsupportedAlgorithmError(algorithm, self._compression.supported_codecs())

        self._dispatcher: SinkDispatcher | None = None
        if sink is not None:
            self._dispatcher = SinkDispatcher(
                sink,
                self._config.delivery_policy,
                timeout=self._config.delivery_timeout,
                capacity=self._config.overflow_capacity,
                on_failure=self._on_delivery_failure,
                logger=self._logger,
            )

        self._stats = CumulativeStats()
        self._failure_listeners: list[FailureListener] = []
        self._flush_listeners: list[FlushListener] = []
        self._current = self._new_batch()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def current_batch(self) -> EventBatch:
        return self._current

    @property
    def compression_manager(self) -> CompressionManager | None:
        return self._compression

    @property
    def dispatcher(self) -> SinkDispatcher | None:
        return self._dispatcher

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def on_failure(self, listener: FailureListener) -> "BatchProcessor":
        """Register a listener for undelivered batches and events.

        Returns:
            Self for chaining.
        """
        self._failure_listeners.append(listener)
        return self

    def on_flush(self, listener: FlushListener) -> "BatchProcessor":
        """Register a listener called with each delivered payload.

        Returns:
            Self for chaining.
        """
        self._flush_listeners.append(listener)
        return self

    def _notify(self, listeners: list[Callable[[Any], None]], value: Any) -> None:
        for listener in list(listeners):
            try:
                listener(value)
            except Exception:
                self._logger.exception("Batch listener %r raised", listener)

    def _fail(
        self,
        stage: FailureStage,
        error: BaseException,
        batch_id: str | None,
        event_count: int,
    ) -> None:
        self._logger.error(
            "Batch %s failed at %s stage: %s",
            batch_id or "-",
            stage.value,
            error,
            exc_info=error,
            extra={"batch_id": batch_id, "stage": stage.value, "event_count": event_count},
        )
        failure = BatchFailure(
            batch_id=batch_id,
            stage=stage,
            event_count=event_count,
            error=error,
            occurred_at=self._clock.now(),
        )
        self._notify(self._failure_listeners, failure)

    def _on_delivery_failure(self, payload: BatchPayload, error: BaseException) -> None:
        failure = BatchFailure(
            batch_id=payload.batch_id,
            stage=FailureStage.DELIVERY,
            event_count=payload.event_count,
            error=error,
            occurred_at=self._clock.now(),
        )
        self._notify(self._failure_listeners, failure)

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def process_event(self, event: BinlogEvent) -> None:
        """Add one event, flushing whenever a batch limit is reached.

        An event too large for an empty batch is delivered on its own through
        the single-event fallback. Errors are reported, never raised.
        """
        try:
            accepted = self._current.add_event(event)
        except SerializationError as e:
            self._fail(FailureStage.SERIALIZE, e, None, 1)
            return

        if not accepted:
            self._rotate()
            if not self._current.add_event(event):
                self._process_single_event(event)
                return

        if self._current.should_flush():
            self._rotate()

    def process_events(self, events: Iterable[BinlogEvent]) -> int:
        """Feed every event from an upstream iterable.

        Returns:
            Number of events consumed.
        """
        count = 0
        for event in events:
            self.process_event(event)
            count += 1
        return count

    def tick(self) -> BatchPayload | None:
        """Flush the current batch if it is non-empty and due.

        Meant to be called from the decode loop when it is idle, so that an
        old batch does not wait for the next event to be flushed.
        """
        if not self._current.is_empty and self._current.should_flush():
            return self.flush()
        return None

    def flush(self) -> BatchPayload | None:
        """Close and deliver the current batch.

        Returns:
            The delivered payload, or None when the batch was empty or the
            flush failed.
        """
        if self._current.is_empty:
            return None
        return self._rotate()

    # -------------------------------------------------------------------------
    # Flush
    # -------------------------------------------------------------------------

    def _new_batch(self) -> EventBatch:
        return EventBatch(
            max_count=self._config.batch_size,
            max_memory_bytes=self._config.batch_memory,
            max_age_seconds=self._config.batch_timeout,
            clock=self._clock,
        )

    def _rotate(self) -> BatchPayload | None:
        """Replace the current batch with a fresh one and flush the old one."""
        batch = self._current
        self._current = self._new_batch()
        if batch.is_empty:
            return None
        batch.close()
        return self._process_batch(batch)

    def _process_batch(self, batch: EventBatch) -> BatchPayload | None:
        batch_id = f"batch_{uuid.uuid4().hex}"
        try:
            payload = self._build_payload(batch_id, batch)
            self._deliver(payload)
        except Exception as e:
            self._fail(FailureStage.FLUSH, e, batch_id, batch.event_count)
            return None

        self._stats.record_batch(payload)
        self._logger.info(
            "Flushed batch %s with %d events (%d bytes, %.3fs old)",
            batch_id,
            batch.event_count,
            batch.memory_usage,
            batch.age,
            extra={
                "batch_id": batch_id,
                "event_count": batch.event_count,
                "memory_usage": batch.memory_usage,
                "compression": payload.compression.algorithm if payload.compression else None,
            },
        )
        self._notify(self._flush_listeners, payload)
        return payload

    def _build_payload(self, batch_id: str, batch: EventBatch) -> BatchPayload:
        data = batch.to_dict()
        encoded = encode_json(data["events"])
        # Structured payloads carry the same JSON-native values as compressed ones.
        events: list[dict[str, Any]] | str = json.loads(encoded)

        descriptor = None
        if self._should_compress(encoded):
            algorithm = self._config.compression_algorithm
            if algorithm == CompressionAlgorithm.AUTO.value:
                algorithm = self._compression.get_best_compressor(encoded).name
            result = self._compression.compress(encoded, algorithm)
            events = base64.b64encode(result.data).decode("ascii")
            descriptor = CompressionDescriptor.from_result(result)

        return BatchPayload(
            batch_id=batch_id,
            events=events,
            stats=data["stats"],
            compression=descriptor,
            created_at=data["created_at"],
        )

    def _should_compress(self, encoded: bytes) -> bool:
        if not self._config.compression_enabled or self._compression is None:
            return False
        return len(encoded) >= self._config.compression_threshold

    def _deliver(self, payload: BatchPayload) -> None:
        if not self._config.queue_enabled or self._dispatcher is None:
            return
        self._dispatcher.deliver(self._config.queue_name, self._config.queue_connection, payload)

    def _process_single_event(self, event: BinlogEvent) -> None:
        """Deliver one oversized event without batching or compression."""
        batch_id = f"single_{uuid.uuid4().hex}"
        try:
            database = {event.database: 1} if event.database else {}
            table = {f"{event.database}.{event.table}": 1} if event.table else {}
            payload = BatchPayload(
                batch_id=batch_id,
                events=[json.loads(event.to_json())],
                stats={
                    "total_events": 1,
                    "memory_usage": event.serialized_size,
                    "age_seconds": 0,
                    "type_stats": {event.type.value: 1},
                    "database_stats": database,
                    "table_stats": table,
                },
                compression=None,
                created_at=self._clock.now(),
            )
            self._deliver(payload)
        except Exception as e:
            self._fail(FailureStage.FALLBACK, e, batch_id, 1)
            return

        self._stats.record_fallback()
        self._logger.info(
            "Delivered oversized %s event for %s.%s on its own (%d bytes)",
            event.type.value,
            event.database,
            event.table,
            event.serialized_size,
            extra={"batch_id": batch_id, "event_type": event.type.value},
        )
        self._notify(self._flush_listeners, payload)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def current_batch_info(self) -> dict[str, Any]:
        batch = self._current
        return {
            "event_count": batch.event_count,
            "memory_usage": batch.memory_usage,
            "age": batch.age,
            "is_full": batch.is_full,
            "is_timeout": batch.is_timeout,
            "should_flush": batch.should_flush(),
        }

    def get_stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    def reset_stats(self) -> None:
        self._stats.reset()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self, wait: bool = True) -> None:
        """Flush the current batch and stop the dispatcher.

        Args:
            wait: Wait for asynchronously queued payloads to be pushed.
        """
        self.flush()
        if self._dispatcher is not None:
            self._dispatcher.close(wait=wait)

    def __enter__(self) -> "BatchProcessor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
