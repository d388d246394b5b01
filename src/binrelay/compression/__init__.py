"""Compression for flushed batch payloads.

This module provides named codecs with bounded levels and a manager that
picks the best codec for a payload by compressing a short prefix with every
available codec.

Features:
    - gzip (zlib stream) and lz4 codecs, zstd when ``zstandard`` is installed
    - Level validation per codec
    - Sampled automatic selection with a 1:1 baseline
    - Size and ratio metadata on every result

Example:
    >>> from binrelay.compression import CompressionManager, get_codec
    >>>
    >>> codec = get_codec("gzip", level=9)
    >>> original = codec.decompress(codec.compress(data))
    >>>
    >>> manager = CompressionManager()
    >>> result = manager.compress(data)  # auto-selects
    >>> result.descriptor()
"""

from binrelay.compression.base import (
    # Protocols
    CompressionCodec,
    # Enums
    CompressionAlgorithm,
    # Data classes
    CompressionResult,
    compute_ratio,
    # Exceptions
    CompressionError,
    DecompressionError,
    UnsupportedAlgorithmError,
)
from binrelay.compression.providers import (
    BaseCodec,
    GzipCodec,
    LZ4Codec,
    ZstdCodec,
    codec_names,
    default_codecs,
    get_codec,
)
from binrelay.compression.manager import SAMPLE_SIZE, CompressionManager

__all__ = [
    # Protocols
    "CompressionCodec",
    # Enums
    "CompressionAlgorithm",
    # Data classes
    "CompressionResult",
    "compute_ratio",
    # Exceptions
    "CompressionError",
    "DecompressionError",
    "UnsupportedAlgorithmError",
    # Codecs
    "BaseCodec",
    "GzipCodec",
    "LZ4Codec",
    "ZstdCodec",
    "codec_names",
    "default_codecs",
    "get_codec",
    # Manager
    "SAMPLE_SIZE",
    "CompressionManager",
]
