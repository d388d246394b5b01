"""Codec implementations.

This module provides the concrete codecs with a unified interface and lazy
loading of optional dependencies. Each codec owns a bounded level range that
is validated whenever the level changes.
"""

from __future__ import annotations

import zlib
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Mapping, Type

from binrelay.compression.base import (
    CompressionAlgorithm,
    CompressionError,
    DecompressionError,
    UnsupportedAlgorithmError,
)
from binrelay.errors import ValidationError


# =============================================================================
# Base Codec
# =============================================================================


class BaseCodec(ABC):
    """Abstract base class for codec implementations.

    Subclasses declare ``name``, ``min_level``, ``max_level`` and
    ``default_level`` and implement the two ``_do_*`` hooks.
    """

    name: str = ""
    min_level: int = 1
    max_level: int = 9
    default_level: int = 6

    def __init__(self, level: int | None = None) -> None:
        """Initialize the codec.

        Args:
            level: Compression level, defaults to ``default_level``.

        Raises:
            ValidationError: If the level is out of range.
        """
        self._level = self.default_level
        self.set_level(self.default_level if level is None else level)

    @property
    def level(self) -> int:
        return self._level

    @property
    def level_range(self) -> tuple[int, int]:
        return (self.min_level, self.max_level)

    def set_level(self, level: int) -> None:
        """Change the compression level.

        Raises:
            ValidationError: If the level is outside the codec's range.
        """
        if isinstance(level, bool) or not isinstance(level, int):
            raise ValidationError(f"level must be an integer, got {level!r}", self.name)
        if not self.min_level <= level <= self.max_level:
            raise ValidationError(
                f"level must be between {self.min_level} and {self.max_level}, got {level}",
                self.name,
            )
        self._level = level

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def _do_compress(self, data: bytes) -> bytes:
        """Perform actual compression. Override in subclasses."""
        pass

    @abstractmethod
    def _do_decompress(self, data: bytes) -> bytes:
        """Perform actual decompression. Override in subclasses."""
        pass

    def _ensure_available(self) -> None:
        if not self.is_available():
            raise UnsupportedAlgorithmError(self.name)

    def compress(self, data: bytes) -> bytes:
        """Compress data.

        Raises:
            UnsupportedAlgorithmError: If the codec is unavailable.
            CompressionError: If compression fails.
        """
        self._ensure_available()
        try:
            return self._do_compress(bytes(data))
        except Exception as e:
            raise CompressionError(f"Compression failed: {e}", self.name) from e

    def decompress(self, data: bytes) -> bytes:
        """Decompress data.

        Raises:
            UnsupportedAlgorithmError: If the codec is unavailable.
            DecompressionError: If decompression fails.
        """
        self._ensure_available()
        try:
            return self._do_decompress(bytes(data))
        except Exception as e:
            raise DecompressionError(f"Decompression failed: {e}", self.name) from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}(level={self._level})"


# =============================================================================
# Gzip Codec
# =============================================================================


class GzipCodec(BaseCodec):
    """Deflate in a zlib stream, using Python's built-in zlib module.

    The framing matches PHP's ``gzcompress`` so payloads interoperate with
    consumers written against that format.
    """

    name = CompressionAlgorithm.GZIP.value
    min_level = 1
    max_level = 9
    default_level = 6

    def _do_compress(self, data: bytes) -> bytes:
        return zlib.compress(data, self.level)

    def _do_decompress(self, data: bytes) -> bytes:
        return zlib.decompress(data)


# =============================================================================
# LZ4 Codec
# =============================================================================


class LZ4Codec(BaseCodec):
    """LZ4 frame compression using the lz4 library.

    LZ4 is optimized for speed. Levels above 2 switch to the high-compression
    mode.
    """

    name = CompressionAlgorithm.LZ4.value
    min_level = 1
    max_level = 12
    default_level = 1

    _lz4 = None
    _checked = False

    @classmethod
    def _get_lz4(cls):
        """Lazy import lz4.frame, ``None`` when missing."""
        if not cls._checked:
            try:
                import lz4.frame
                cls._lz4 = lz4.frame
            except ImportError:
                cls._lz4 = None
            cls._checked = True
        return cls._lz4

    def is_available(self) -> bool:
        return self._get_lz4() is not None

    def _do_compress(self, data: bytes) -> bytes:
        return self._get_lz4().compress(data, compression_level=self.level)

    def _do_decompress(self, data: bytes) -> bytes:
        return self._get_lz4().decompress(data)


# =============================================================================
# Zstandard Codec
# =============================================================================


class ZstdCodec(BaseCodec):
    """Zstandard compression using the zstandard library.

    Installed through the ``zstd`` extra.
    """

    name = CompressionAlgorithm.ZSTD.value
    min_level = 1
    max_level = 22
    default_level = 3

    _zstd = None
    _checked = False

    @classmethod
    def _get_zstd(cls):
        """Lazy import zstandard, ``None`` when missing."""
        if not cls._checked:
            try:
                import zstandard
                cls._zstd = zstandard
            except ImportError:
                cls._zstd = None
            cls._checked = True
        return cls._zstd

    def is_available(self) -> bool:
        return self._get_zstd() is not None

    def _do_compress(self, data: bytes) -> bytes:
        return self._get_zstd().ZstdCompressor(level=self.level).compress(data)

    def _do_decompress(self, data: bytes) -> bytes:
        return self._get_zstd().ZstdDecompressor().decompress(data)


# =============================================================================
# Registry and Factory
# =============================================================================


# Read-only; custom codecs are registered on a CompressionManager instance.
_CODEC_REGISTRY: Mapping[str, Type[BaseCodec]] = MappingProxyType(
    {
        GzipCodec.name: GzipCodec,
        LZ4Codec.name: LZ4Codec,
        ZstdCodec.name: ZstdCodec,
    }
)


def codec_names() -> list[str]:
    """Names of all known codec classes, in registration order."""
    return list(_CODEC_REGISTRY)


def get_codec(name: str | CompressionAlgorithm, level: int | None = None) -> BaseCodec:
    """Create a codec by name.

    Args:
        name: Codec name or enum.
        level: Optional level, defaults to the codec's default.

    Raises:
        UnsupportedAlgorithmError: If no codec is registered under ``name``.
        ValidationError: If the level is out of range.
    """
    key = name.value if isinstance(name, CompressionAlgorithm) else str(name).lower()
    codec_class = _CODEC_REGISTRY.get(key)
    if codec_class is None:
        raise UnsupportedAlgorithmError(key, codec_names())
    return codec_class(level)


def default_codecs(levels: dict[str, int] | None = None) -> list[BaseCodec]:
    """Instantiate the built-in codecs with optional per-codec levels.

    Raises:
        UnsupportedAlgorithmError: If ``levels`` names an unknown codec.
        ValidationError: If a level is out of range.
    """
    levels = dict(levels or {})
    unknown = [name for name in levels if name not in _CODEC_REGISTRY]
    if unknown:
        raise UnsupportedAlgorithmError(unknown[0], codec_names())
    return [codec_class(levels.get(name)) for name, codec_class in _CODEC_REGISTRY.items()]
