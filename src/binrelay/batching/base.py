"""Base classes and configuration for event batching.

This module defines the configuration, the payload handed to sinks, and the
statistics and failure records produced by the batch processor.
"""

from __future__ import annotations

import base64
import binascii
import json
import threading
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Mapping

from binrelay.compression.base import (
    CompressionAlgorithm,
    CompressionResult,
    DecompressionError,
    compute_ratio,
)
from binrelay.errors import SerializationError, ValidationError
from binrelay.events import encode_json


class DeliveryPolicy(str, Enum):
    """How a flush hands its payload to the sink."""

    BLOCK = "block"  # Push synchronously, wait as long as the sink needs
    TIMEOUT = "timeout"  # Push on a worker, wait at most delivery_timeout
    OVERFLOW = "overflow"  # Enqueue into a bounded queue drained by a worker
    DROP = "drop"  # Hand off only if the sink is idle, otherwise drop


class FailureStage(str, Enum):
    """Where in the pipeline a failure happened."""

    SERIALIZE = "serialize"  # Event could not be sized at intake
    FLUSH = "flush"  # Payload build, compression or synchronous push
    FALLBACK = "fallback"  # Single oversized event delivery
    DELIVERY = "delivery"  # Asynchronous push after hand-off


@dataclass
class BatchConfig:
    """Configuration for the batch processor.

    Attributes:
        batch_size: Maximum events per batch.
        batch_memory: Maximum sum of serialized event sizes per batch (bytes).
        batch_timeout: Maximum batch age in seconds before a forced flush.
        compression_enabled: Gate for compression attempts.
        compression_algorithm: ``"auto"`` or a codec name.
        compression_threshold: Minimum serialized events size to compress.
        compression_levels: Per-codec levels for the built-in codecs.
        queue_enabled: Gate for the sink hand-off.
        queue_connection: Connection name passed opaquely to the sink.
        queue_name: Queue name passed opaquely to the sink.
        delivery_policy: Hand-off policy, see :class:`DeliveryPolicy`.
        delivery_timeout: Seconds to wait under the ``timeout`` policy.
        overflow_capacity: Queue length under the ``overflow`` policy.
    """

    batch_size: int = 100
    batch_memory: int = 1024 * 1024  # 1MB
    batch_timeout: float = 5.0
    compression_enabled: bool = True
    compression_algorithm: str = CompressionAlgorithm.AUTO.value
    compression_threshold: int = 1024  # 1KB
    compression_levels: dict[str, int] = field(default_factory=dict)
    queue_enabled: bool = True
    queue_connection: str = "default"
    queue_name: str = "binlog_batch"
    delivery_policy: DeliveryPolicy = DeliveryPolicy.BLOCK
    delivery_timeout: float | None = None
    overflow_capacity: int = 1000

    def __post_init__(self) -> None:
        if isinstance(self.delivery_policy, str) and not isinstance(
            self.delivery_policy, DeliveryPolicy
        ):
            try:
                self.delivery_policy = DeliveryPolicy(self.delivery_policy.lower())
            except ValueError:
                raise ValidationError(
                    f"unknown policy '{self.delivery_policy}', expected one of "
                    f"{', '.join(p.value for p in DeliveryPolicy)}",
                    "delivery_policy",
                )

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BatchConfig":
        """Build a config from a flat mapping, ignoring unknown keys."""
        known = cls.field_names()
        return cls(**{k: v for k, v in data.items() if k in known})

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValidationError: On the first invalid value.
        """
        if not _is_int(self.batch_size) or self.batch_size <= 0:
            raise ValidationError("must be a positive integer", "batch_size")
        if not _is_int(self.batch_memory) or self.batch_memory <= 0:
            raise ValidationError("must be a positive integer", "batch_memory")
        if not _is_number(self.batch_timeout) or self.batch_timeout < 0:
            raise ValidationError("must be a non-negative number", "batch_timeout")
        if not _is_number(self.compression_threshold) or self.compression_threshold < 0:
            raise ValidationError("must be a non-negative number", "compression_threshold")
        for name in ("compression_enabled", "queue_enabled"):
            if not isinstance(getattr(self, name), bool):
                raise ValidationError("must be a boolean", name)
        if not isinstance(self.compression_algorithm, str) or not self.compression_algorithm:
            raise ValidationError("must be a non-empty string", "compression_algorithm")
        if not isinstance(self.compression_levels, Mapping) or not all(
            _is_int(level) for level in self.compression_levels.values()
        ):
            raise ValidationError("must map codec names to integers", "compression_levels")
        if self.delivery_timeout is not None and not _is_number(self.delivery_timeout):
            raise ValidationError("must be a number", "delivery_timeout")
        if self.delivery_policy == DeliveryPolicy.TIMEOUT and (
            self.delivery_timeout is None or self.delivery_timeout <= 0
        ):
            raise ValidationError(
                "must be positive when delivery_policy is 'timeout'", "delivery_timeout"
            )
        if not _is_int(self.overflow_capacity) or self.overflow_capacity <= 0:
            raise ValidationError("must be a positive integer", "overflow_capacity")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["delivery_policy"] = self.delivery_policy.value
        return data


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class CompressionDescriptor:
    """Compression metadata attached to a payload."""

    algorithm: str
    level: int
    original_size: int
    compressed_size: int
    compression_ratio: float

    @classmethod
    def from_result(cls, result: CompressionResult) -> "CompressionDescriptor":
        return cls(**result.descriptor())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompressionDescriptor":
        original = int(data["original_size"])
        compressed = int(data["compressed_size"])
        return cls(
            algorithm=str(data["algorithm"]),
            level=int(data.get("level", 0)),
            original_size=original,
            compressed_size=compressed,
            compression_ratio=data.get("compression_ratio", compute_ratio(original, compressed)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BatchPayload:
    """The value produced once per flush and handed to the sink.

    Attributes:
        batch_id: Unique identifier of the flush.
        events: Canonical event dictionaries, or a base64 string holding the
            compressed JSON list when ``compression`` is set.
        stats: Statistics snapshot of the batch.
        compression: Compression metadata, ``None`` when uncompressed.
        created_at: Batch creation time in unix seconds.
    """

    batch_id: str
    events: list[dict[str, Any]] | str
    stats: dict[str, Any]
    compression: CompressionDescriptor | None = None
    created_at: float = 0.0

    @property
    def is_compressed(self) -> bool:
        return self.compression is not None

    @property
    def event_count(self) -> int:
        return int(self.stats.get("total_events", 0))

    def decode_events(self, manager: Any = None) -> list[dict[str, Any]]:
        """Get the canonical event dictionaries, decompressing if needed.

        Args:
            manager: A ``CompressionManager``; required for compressed payloads.

        Raises:
            DecompressionError: If the blob is not valid base64 or not valid
                compressed data.
            SerializationError: If the decompressed bytes are not a JSON list.
        """
        if self.compression is None:
            return list(self.events)
        if manager is None:
            from binrelay.compression.manager import CompressionManager

            manager = CompressionManager()
        try:
            blob = base64.b64decode(self.events, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise DecompressionError(
                f"Invalid base64 events blob: {e}", self.compression.algorithm
            ) from e
        raw = manager.decompress(blob, self.compression.algorithm)
        try:
            events = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationError(f"Decompressed events are not JSON: {e}") from e
        if not isinstance(events, list):
            raise SerializationError("Decompressed events are not a list")
        return events

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape."""
        return {
            "batch_id": self.batch_id,
            "events": self.events,
            "stats": self.stats,
            "compression": self.compression.to_dict() if self.compression else None,
            "created_at": self.created_at,
        }

    def to_json(self) -> str:
        """Encode the wire shape as compact JSON.

        Raises:
            SerializationError: If the events hold values that cannot be encoded.
        """
        return encode_json(self.to_dict()).decode("utf-8")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BatchPayload":
        compression = data.get("compression")
        return cls(
            batch_id=str(data["batch_id"]),
            events=data["events"],
            stats=dict(data.get("stats") or {}),
            compression=CompressionDescriptor.from_dict(compression) if compression else None,
            created_at=float(data.get("created_at", 0.0)),
        )


@dataclass
class CumulativeStats:
    """Process-wide delivery counters.

    Mutated only after a successful flush or fallback delivery. The lock makes
    the counters safe to read from other threads.
    """

    total_batches: int = 0
    total_events: int = 0
    total_original_size: int = 0
    total_compressed_size: int = 0
    fallback_events: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_batch(self, payload: BatchPayload) -> None:
        with self._lock:
            self.total_batches += 1
            self.total_events += payload.event_count
            if payload.compression is not None:
                self.total_original_size += payload.compression.original_size
                self.total_compressed_size += payload.compression.compressed_size

    def record_fallback(self) -> None:
        with self._lock:
            self.fallback_events += 1

    def reset(self) -> None:
        with self._lock:
            self.total_batches = 0
            self.total_events = 0
            self.total_original_size = 0
            self.total_compressed_size = 0
            self.fallback_events = 0

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_batches": self.total_batches,
                "total_events": self.total_events,
                "total_original_size": self.total_original_size,
                "total_compressed_size": self.total_compressed_size,
                "fallback_events": self.fallback_events,
                "overall_compression_ratio": compute_ratio(
                    self.total_original_size, self.total_compressed_size
                ),
            }


@dataclass(frozen=True)
class BatchFailure:
    """Notification describing a batch or event that was not delivered.

    Attributes:
        batch_id: Identifier of the failed payload, ``None`` when the failure
            happened before a payload existed.
        stage: Pipeline stage that failed.
        event_count: Number of events lost.
        error: The exception raised.
        occurred_at: Unix seconds.
    """

    batch_id: str | None
    stage: FailureStage
    event_count: int
    error: BaseException
    occurred_at: float
