"""Shared exception hierarchy for binrelay.

Subpackages define their own specialised errors (see
``binrelay.compression.base`` and ``binrelay.batching.sinks``); all of them
derive from :class:`BinrelayError` so callers can catch the whole family.
"""

from __future__ import annotations


class BinrelayError(Exception):
    """Base exception for all binrelay errors."""

    pass


class ValidationError(BinrelayError, ValueError):
    """Invalid value supplied at construction or configuration time."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class SerializationError(BinrelayError):
    """An event or payload could not be converted to bytes."""

    pass


class ConfigError(BinrelayError):
    """Configuration could not be loaded."""

    pass
