"""Codec registry with sampled automatic selection.

Example:
    >>> manager = CompressionManager()
    >>> result = manager.compress(b'{"rows": []}' * 200)
    >>> restored = manager.decompress(result.data, result.algorithm)
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from binrelay.compression.base import (
    CompressionAlgorithm,
    CompressionCodec,
    CompressionResult,
    UnsupportedAlgorithmError,
)
from binrelay.compression.providers import LZ4Codec, GzipCodec, default_codecs


SAMPLE_SIZE = 1024


class CompressionManager:
    """Registry of named codecs plus one designated default.

    Each manager owns its codec instances; managers are not shared between
    processors.
    """

    def __init__(
        self,
        codecs: Iterable[CompressionCodec] | None = None,
        *,
        default: str | None = None,
        levels: dict[str, int] | None = None,
        sample_size: int = SAMPLE_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            codecs: Codecs to register, in order. Defaults to gzip, lz4, zstd.
            default: Name of the default codec. Defaults to lz4 when available,
                otherwise gzip.
            levels: Per-codec levels for the built-in codecs.
            sample_size: Prefix length used by :meth:`get_best_compressor`.
            logger: Logger to use instead of the module logger.

        Raises:
            ValidationError: If a level is out of range.
            UnsupportedAlgorithmError: If ``default`` is not registered.
        """
        self._logger = logger or logging.getLogger(__name__)
        self._codecs: dict[str, CompressionCodec] = {}
        self._default: CompressionCodec | None = None
        self._sample_size = sample_size
        self._sample: bytes | None = None
        self._sample_results: dict[str, tuple[int, bytes]] = {}

        for codec in default_codecs(levels) if codecs is None else codecs:
            self.register(codec)

        if default is not None:
            self.set_default(default)
        elif self.is_supported(LZ4Codec.name):
            self.set_default(LZ4Codec.name)
        elif self.is_supported(GzipCodec.name):
            self.set_default(GzipCodec.name)
        else:
            for name in self.supported_codecs():
                self.set_default(name)
                break

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def register(self, codec: CompressionCodec) -> None:
        """Register a codec, replacing any codec with the same name."""
        self._codecs[codec.name] = codec
        self._sample = None
        self._sample_results.clear()

    def get(self, name: str) -> CompressionCodec:
        """Get a registered codec.

        Raises:
            UnsupportedAlgorithmError: If no codec has that name.
        """
        codec = self._codecs.get(name)
        if codec is None:
            raise UnsupportedAlgorithmError(name, list(self._codecs))
        return codec

    def set_default(self, name: str) -> None:
        self._default = self.get(name)

    @property
    def default(self) -> CompressionCodec | None:
        return self._default

    @property
    def codecs(self) -> list[CompressionCodec]:
        return list(self._codecs.values())

    def is_supported(self, name: str) -> bool:
        """Whether a codec is registered and available in this runtime."""
        codec = self._codecs.get(name)
        return codec is not None and codec.is_available()

    def supported_codecs(self) -> list[str]:
        return [name for name, codec in self._codecs.items() if codec.is_available()]

    def _resolve(self, algorithm: str) -> CompressionCodec:
        codec = self.get(algorithm)
        if not codec.is_available():
            raise UnsupportedAlgorithmError(algorithm, self.supported_codecs())
        return codec

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def compress(self, data: bytes, algorithm: str | None = None) -> CompressionResult:
        """Compress data with a named codec or the best sampled one.

        Args:
            data: Bytes to compress.
            algorithm: Codec name, or ``None``/``"auto"`` for sampled selection.

        Raises:
            UnsupportedAlgorithmError: If the codec is unknown or unavailable.
            CompressionError: If the codec fails.
        """
        if algorithm is None or algorithm == CompressionAlgorithm.AUTO.value:
            codec = self.get_best_compressor(data)
        else:
            codec = self._resolve(algorithm)

        compressed = self._cached_sample(codec, data)
        if compressed is None:
            compressed = codec.compress(data)
        return CompressionResult.build(codec.name, codec.level, data, compressed)

    def decompress(self, data: bytes, algorithm: str) -> bytes:
        """Decompress data with the algorithm recorded at compression time.

        Raises:
            UnsupportedAlgorithmError: If the codec is unknown or unavailable.
            DecompressionError: If the data is corrupt.
        """
        return self._resolve(algorithm).decompress(data)

    def get_best_compressor(self, data: bytes) -> CompressionCodec:
        """Pick the codec with the lowest ratio on a bounded prefix of ``data``.

        A codec must strictly beat a 1:1 ratio to be chosen; ties keep the
        earlier-registered codec.

        Raises:
            UnsupportedAlgorithmError: If nothing improves on the baseline and
                there is no default codec.
        """
        sample = bytes(data[: self._sample_size])
        best: CompressionCodec | None = None
        best_ratio = 1.0
        results: dict[str, tuple[int, bytes]] = {}

        if sample:
            for codec in self._codecs.values():
                if not codec.is_available():
                    continue
                try:
                    compressed = codec.compress(sample)
                except Exception as e:
                    self._logger.debug("Skipping codec %s during sampling: %s", codec.name, e)
                    continue
                results[codec.name] = (codec.level, compressed)
                ratio = len(compressed) / len(sample)
                if ratio < best_ratio:
                    best_ratio = ratio
                    best = codec

        self._sample = sample
        self._sample_results = results

        if best is None:
            if self._default is None:
                raise UnsupportedAlgorithmError(
                    CompressionAlgorithm.AUTO.value, self.supported_codecs()
                )
            return self._default
        return best

    def _cached_sample(self, codec: CompressionCodec, data: bytes) -> bytes | None:
        """Reuse the sampling output when the sample was the whole input."""
        if self._sample is None or len(data) > self._sample_size:
            return None
        cached = self._sample_results.get(codec.name)
        if cached is None or cached[0] != codec.level or self._sample != data:
            return None
        return cached[1]

    def get_stats(self) -> dict[str, dict[str, Any]]:
        """Describe every registered codec."""
        return {
            name: {
                "supported": codec.is_available(),
                "level": codec.level,
                "level_range": list(codec.level_range),
                "default": codec is self._default,
            }
            for name, codec in self._codecs.items()
        }
