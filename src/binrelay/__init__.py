"""binrelay - Batching, compression and delivery for MySQL binlog change events."""

__version__ = "0.1.0"

from binrelay.events import BinlogEvent, EventType
from binrelay.errors import BinrelayError, ConfigError, SerializationError, ValidationError
from binrelay.clock import Clock, ManualClock, SystemClock

# Compression
from binrelay.compression import (
    CompressionManager,
    CompressionResult,
    get_codec,
)

# Batching and delivery
from binrelay.batching import (
    BatchConfig,
    BatchFailure,
    BatchPayload,
    BatchProcessor,
    DeliveryPolicy,
    EventBatch,
    JsonLinesSink,
    MemorySink,
)

# Consumer side
from binrelay.subscribers import BaseSubscriber, LoggingSubscriber, SubscriberRegistry
from binrelay.consumer import ConsumeResult, PayloadConsumer

from binrelay.config import Settings, load_settings

__all__ = [
    "__version__",
    # Events
    "BinlogEvent",
    "EventType",
    # Errors
    "BinrelayError",
    "ConfigError",
    "SerializationError",
    "ValidationError",
    # Time
    "Clock",
    "ManualClock",
    "SystemClock",
    # Compression
    "CompressionManager",
    "CompressionResult",
    "get_codec",
    # Batching
    "BatchConfig",
    "BatchFailure",
    "BatchPayload",
    "BatchProcessor",
    "DeliveryPolicy",
    "EventBatch",
    "JsonLinesSink",
    "MemorySink",
    # Consumer
    "BaseSubscriber",
    "LoggingSubscriber",
    "SubscriberRegistry",
    "ConsumeResult",
    "PayloadConsumer",
    # Configuration
    "Settings",
    "load_settings",
]
