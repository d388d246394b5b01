"""Event batching for binlog replication.

This module groups decoded binlog events into bounded batches and hands each
flushed batch to a sink as a single payload, compressed when it is worth it.

Features:
    - Count, memory and age limits per batch
    - Single-event fallback for events larger than a whole batch
    - Optional compression with sampled codec selection
    - block, timeout, overflow and drop delivery policies
    - Failure notifications instead of exceptions on the intake path

Example:
    >>> from binrelay.batching import BatchConfig, BatchProcessor, MemorySink
    >>>
    >>> sink = MemorySink()
    >>> with BatchProcessor(BatchConfig(batch_size=100), sink) as processor:
    ...     processor.process_events(events)
    >>> sink.payloads[0].decode_events()
"""

from binrelay.batching.base import (
    # Enums
    DeliveryPolicy,
    FailureStage,
    # Configuration
    BatchConfig,
    # Data classes
    BatchFailure,
    BatchPayload,
    CompressionDescriptor,
    CumulativeStats,
)
from binrelay.batching.batch import BatchClosedError, EventBatch
from binrelay.batching.sinks import (
    CallbackSink,
    JsonLinesSink,
    MemorySink,
    Sink,
    SinkBusyError,
    SinkDispatcher,
    SinkError,
    SinkOverflowError,
    SinkTimeoutError,
)
from binrelay.batching.processor import BatchProcessor

__all__ = [
    # Enums
    "DeliveryPolicy",
    "FailureStage",
    # Configuration
    "BatchConfig",
    # Data classes
    "BatchFailure",
    "BatchPayload",
    "CompressionDescriptor",
    "CumulativeStats",
    # Batch
    "BatchClosedError",
    "EventBatch",
    # Sinks
    "CallbackSink",
    "JsonLinesSink",
    "MemorySink",
    "Sink",
    "SinkBusyError",
    "SinkDispatcher",
    "SinkError",
    "SinkOverflowError",
    "SinkTimeoutError",
    # Processor
    "BatchProcessor",
]
