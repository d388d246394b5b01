"""Base classes, protocols, and types for the compression system.

This module defines the exceptions, result types and the codec protocol that
every compression implementation follows.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from binrelay.errors import BinrelayError


# =============================================================================
# Exceptions
# =============================================================================


class CompressionError(BinrelayError):
    """Base exception for compression errors."""

    def __init__(self, message: str, algorithm: str | None = None) -> None:
        self.algorithm = algorithm
        super().__init__(f"[{algorithm}] {message}" if algorithm else message)


class DecompressionError(CompressionError):
    """Error during decompression."""

    pass


class UnsupportedAlgorithmError(CompressionError):
    """Requested algorithm is not registered or not available."""

    def __init__(self, algorithm: str, available: list[str] | None = None) -> None:
        self.available = available or []
        msg = f"Algorithm '{algorithm}' is not supported"
        if self.available:
            msg += f". Available: {', '.join(self.available)}"
        super().__init__(msg, algorithm)


# =============================================================================
# Enums
# =============================================================================


class CompressionAlgorithm(str, Enum):
    """Built-in compression algorithm names."""

    AUTO = "auto"
    GZIP = "gzip"
    LZ4 = "lz4"
    ZSTD = "zstd"


# =============================================================================
# Data Classes
# =============================================================================


def compute_ratio(original_size: int, compressed_size: int) -> float:
    """Compressed-to-original ratio rounded to 4 places, 0 for empty input."""
    if original_size == 0:
        return 0
    return round(compressed_size / original_size, 4)


@dataclass(frozen=True)
class CompressionResult:
    """Result of a compression operation.

    Attributes:
        algorithm: Name of the codec that produced ``data``.
        level: Codec level used.
        original_size: Size of the input in bytes.
        compressed_size: Size of ``data`` in bytes.
        compression_ratio: ``compressed_size / original_size`` rounded to
            4 places (lower is better), 0 for empty input.
        data: Compressed bytes.
    """

    algorithm: str
    level: int
    original_size: int
    compressed_size: int
    compression_ratio: float
    data: bytes

    @classmethod
    def build(cls, algorithm: str, level: int, original: bytes, compressed: bytes) -> "CompressionResult":
        return cls(
            algorithm=algorithm,
            level=level,
            original_size=len(original),
            compressed_size=len(compressed),
            compression_ratio=compute_ratio(len(original), len(compressed)),
            data=compressed,
        )

    def descriptor(self) -> dict[str, Any]:
        """Metadata without the compressed bytes."""
        return {
            "algorithm": self.algorithm,
            "level": self.level,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": self.compression_ratio,
        }


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class CompressionCodec(Protocol):
    """Protocol for codec implementations."""

    @property
    def name(self) -> str:
        """Registry name of the codec."""
        ...

    @property
    def level(self) -> int:
        """Current compression level."""
        ...

    @property
    def level_range(self) -> tuple[int, int]:
        """Inclusive bounds of valid levels."""
        ...

    def set_level(self, level: int) -> None:
        """Change the level.

        Raises:
            ValidationError: If the level is outside ``level_range``.
        """
        ...

    def is_available(self) -> bool:
        """Whether the backing library is present in this runtime."""
        ...

    def compress(self, data: bytes) -> bytes:
        ...

    def decompress(self, data: bytes) -> bytes:
        ...
