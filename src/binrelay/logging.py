"""Structured logging helpers on top of the standard library.

Library modules log through ``logging.getLogger(__name__)`` and pass
structured fields with ``extra=``. This module adds what an application
needs to surface those fields:

- :class:`JSONFormatter` renders one JSON object per record, including
  ``extra`` fields and the active log context.
- :func:`log_context` attaches fields to every record logged on the current
  thread while the block runs.
- :func:`configure_logging` installs a console (rich) or JSON handler on the
  ``binrelay`` logger.

Example:
    >>> configure_logging("DEBUG", "json")
    >>> with log_context(run_id="abc123"):
    ...     processor.process_events(events)  # every record carries run_id
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, TextIO

from rich.console import Console
from rich.logging import RichHandler


# Attributes every LogRecord has; anything else came from ``extra``.
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


# =============================================================================
# Log Context
# =============================================================================


class LogContext:
    """Thread-local stack of fields merged into every log record."""

    _local = threading.local()

    @classmethod
    def get_current(cls) -> dict[str, Any]:
        """Get current context fields."""
        if not hasattr(cls._local, "stack"):
            cls._local.stack = [{}]
        result: dict[str, Any] = {}
        for ctx in cls._local.stack:
            result.update(ctx)
        return result

    @classmethod
    def push(cls, **fields: Any) -> None:
        if not hasattr(cls._local, "stack"):
            cls._local.stack = [{}]
        cls._local.stack.append(fields)

    @classmethod
    def pop(cls) -> dict[str, Any]:
        if hasattr(cls._local, "stack") and len(cls._local.stack) > 1:
            return cls._local.stack.pop()
        return {}

    @classmethod
    def clear(cls) -> None:
        cls._local.stack = [{}]


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Context manager for adding fields to log context.

    Example:
        >>> with log_context(source="binlog.000042"):
        ...     logger.info("Relaying")
    """
    LogContext.push(**fields)
    try:
        yield
    finally:
        LogContext.pop()


class ContextFilter(logging.Filter):
    """Copy the current log context onto each record.

    Fields already set through ``extra`` win over context fields.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in LogContext.get_current().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


# =============================================================================
# Formatters
# =============================================================================


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Get the structured fields of a record (``extra`` and context)."""
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED and not k.startswith("_")}


class JSONFormatter(logging.Formatter):
    """JSON log formatter.

    Example output:
        {"timestamp":"2024-01-15T10:30:00.120000+00:00","level":"info","logger":"binrelay.batching.processor","message":"Flushed batch ...","batch_id":"batch_..."}
    """

    def __init__(self, *, sort_keys: bool = False, ensure_ascii: bool = False) -> None:
        super().__init__()
        self._sort_keys = sort_keys
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(record_fields(record))

        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, tb = record.exc_info
            data["exception"] = {
                "type": exc_type.__name__ if exc_type else type(exc).__name__,
                "message": str(exc),
                "traceback": traceback.format_exception(exc_type, exc, tb),
            }

        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=self._sort_keys,
            ensure_ascii=self._ensure_ascii,
            default=str,
        )


# =============================================================================
# Configuration
# =============================================================================


_HANDLER_NAME = "binrelay"


def configure_logging(
    level: str | int = "INFO",
    fmt: str = "console",
    *,
    stream: TextIO | None = None,
    logger_name: str = "binrelay",
) -> logging.Logger:
    """Install a single handler on the package logger.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Level name or number.
        fmt: ``console`` (rich) or ``json``.
        stream: Output stream, defaults to stderr.
        logger_name: Logger to configure.

    Returns:
        The configured logger.

    Raises:
        ValueError: If the format is unknown.
    """
    stream = stream or sys.stderr
    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
    elif fmt == "console":
        handler = RichHandler(
            console=Console(file=stream),
            show_path=False,
            rich_tracebacks=True,
        )
    else:
        raise ValueError(f"Unknown log format: {fmt}")

    handler.set_name(_HANDLER_NAME)
    handler.addFilter(ContextFilter())

    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            logger.removeHandler(existing)
            existing.close()
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
