"""Decode delivered payloads and fan their events out to subscribers.

This is the receiving end of a sink: it accepts a :class:`BatchPayload`, its
wire dictionary, or a JSON-lines record as written by
:class:`~binrelay.batching.sinks.JsonLinesSink`, restores the events, and
dispatches them through a :class:`SubscriberRegistry`.

Example:
    >>> consumer = PayloadConsumer(registry)
    >>> result = consumer.consume(payload)
    >>> result.event_count, result.failures
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from binrelay.batching.base import BatchPayload
from binrelay.compression.manager import CompressionManager
from binrelay.errors import SerializationError
from binrelay.events import BinlogEvent
from binrelay.subscribers import SubscriberRegistry


logger = logging.getLogger(__name__)


@dataclass
class ConsumeResult:
    """Outcome of consuming one payload.

    Attributes:
        batch_id: Identifier of the consumed payload.
        events: Decoded events in delivery order.
        deliveries: Successful subscriber calls.
        failures: Subscriber calls that raised.
    """

    batch_id: str
    events: list[BinlogEvent] = field(default_factory=list)
    deliveries: int = 0
    failures: int = 0

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def success(self) -> bool:
        return self.failures == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "event_count": self.event_count,
            "deliveries": self.deliveries,
            "failures": self.failures,
        }


class PayloadConsumer:
    """Turn payloads back into events and dispatch them."""

    def __init__(
        self,
        registry: SubscriberRegistry | None = None,
        compression_manager: CompressionManager | None = None,
    ) -> None:
        self._registry = registry or SubscriberRegistry()
        self._compression = compression_manager or CompressionManager()

    @property
    def registry(self) -> SubscriberRegistry:
        return self._registry

    @staticmethod
    def to_payload(payload: BatchPayload | Mapping[str, Any]) -> BatchPayload:
        """Normalize any accepted payload shape to a :class:`BatchPayload`.

        Raises:
            SerializationError: If the mapping is not a payload.
        """
        if isinstance(payload, BatchPayload):
            return payload
        if "payload" in payload and "batch_id" not in payload:
            payload = payload["payload"]
        try:
            return BatchPayload.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Not a batch payload: {e}") from e

    def decode(self, payload: BatchPayload | Mapping[str, Any]) -> list[BinlogEvent]:
        """Restore the events of a payload.

        Raises:
            SerializationError: If the payload or an event is malformed.
            DecompressionError: If the compressed blob is corrupt.
            UnsupportedAlgorithmError: If the recorded codec is unavailable.
        """
        batch = self.to_payload(payload)
        events = []
        for item in batch.decode_events(self._compression):
            if not isinstance(item, Mapping):
                raise SerializationError(
                    f"Event in batch {batch.batch_id} is {type(item).__name__}, not an object"
                )
            events.append(BinlogEvent.from_dict(item))
        return events

    def consume(self, payload: BatchPayload | Mapping[str, Any]) -> ConsumeResult:
        """Decode a payload and dispatch every event in order."""
        batch = self.to_payload(payload)
        result = ConsumeResult(batch_id=batch.batch_id, events=self.decode(batch))
        for event in result.events:
            delivered, failed = self._registry.dispatch(event)
            result.deliveries += delivered
            result.failures += failed

        logger.info(
            "Consumed batch %s: %d events, %d deliveries, %d failures",
            result.batch_id,
            result.event_count,
            result.deliveries,
            result.failures,
            extra={"batch_id": result.batch_id, "event_count": result.event_count},
        )
        return result
