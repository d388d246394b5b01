"""Tests for CompressionManager."""

import os

import pytest

from binrelay.compression import (
    BaseCodec,
    CompressionManager,
    GzipCodec,
    UnsupportedAlgorithmError,
    codec_names,
    get_codec,
)
from binrelay.errors import ValidationError


class FixedCodec(BaseCodec):
    """Codec that shrinks input to a fixed fraction and counts calls."""

    min_level = 1
    max_level = 1
    default_level = 1

    def __init__(self, name, keep=0.5, available=True):
        self.name = name
        self._keep = keep
        self._available = available
        self.calls = 0
        super().__init__()

    def is_available(self):
        return self._available

    def _do_compress(self, data):
        self.calls += 1
        return data[: int(len(data) * self._keep)]

    def _do_decompress(self, data):
        return data


JSON_DATA = b'{"event_info":{"type":"insert"},"data":{"rows":[{"id":1}]}}' * 100


class TestRegistry:
    """Tests for codec registration and the default codec."""

    def test_default_codecs_registered(self):
        """Test built-in codec registration order."""
        manager = CompressionManager()
        assert [c.name for c in manager.codecs] == ["gzip", "lz4", "zstd"]

    def test_default_is_lz4_when_available(self):
        """Test that lz4 is the default when installed."""
        pytest.importorskip("lz4.frame")
        assert CompressionManager().default.name == "lz4"

    def test_default_falls_back_to_gzip(self):
        """Test gzip default when lz4 is not registered."""
        manager = CompressionManager([GzipCodec()])
        assert manager.default.name == "gzip"

    def test_registration_is_per_manager(self):
        """Test that a codec registered on one manager is invisible elsewhere."""
        first = CompressionManager()
        second = CompressionManager()

        first.register(FixedCodec("half"))

        assert first.is_supported("half")
        assert not second.is_supported("half")
        assert codec_names() == ["gzip", "lz4", "zstd"]
        with pytest.raises(UnsupportedAlgorithmError):
            get_codec("half")

    def test_explicit_default(self):
        """Test choosing the default codec."""
        manager = CompressionManager(default="gzip")
        assert manager.default.name == "gzip"

    def test_unknown_default(self):
        """Test that an unknown default is rejected."""
        with pytest.raises(UnsupportedAlgorithmError):
            CompressionManager(default="brotli")

    def test_levels_applied(self):
        """Test per-codec levels."""
        manager = CompressionManager(levels={"gzip": 1})
        assert manager.get("gzip").level == 1

    def test_out_of_range_level_fails_fast(self):
        """Test that invalid levels fail at construction."""
        with pytest.raises(ValidationError):
            CompressionManager(levels={"gzip": 10})

    def test_is_supported(self):
        """Test support checks for registered, unavailable and unknown codecs."""
        manager = CompressionManager([GzipCodec(), FixedCodec("ghost", available=False)])

        assert manager.is_supported("gzip") is True
        assert manager.is_supported("ghost") is False
        assert manager.is_supported("brotli") is False
        assert manager.supported_codecs() == ["gzip"]

    def test_get_stats(self):
        """Test per-codec description."""
        stats = CompressionManager(default="gzip").get_stats()

        assert stats["gzip"] == {
            "supported": True,
            "level": 6,
            "level_range": [1, 9],
            "default": True,
        }
        assert stats["zstd"]["level_range"] == [1, 22]


class TestCompress:
    """Tests for compress and decompress."""

    def test_named_roundtrip(self):
        """Test compress/decompress with an explicit algorithm."""
        manager = CompressionManager()
        result = manager.compress(JSON_DATA, "gzip")

        assert result.algorithm == "gzip"
        assert result.level == 6
        assert result.original_size == len(JSON_DATA)
        assert result.compressed_size == len(result.data)
        assert result.compression_ratio == round(len(result.data) / len(JSON_DATA), 4)
        assert manager.decompress(result.data, "gzip") == JSON_DATA

    @pytest.mark.parametrize("algorithm", [None, "auto"])
    def test_auto_roundtrip(self, algorithm):
        """Test that omitted and 'auto' algorithms pick a codec."""
        manager = CompressionManager()
        result = manager.compress(JSON_DATA, algorithm)

        assert result.algorithm in manager.supported_codecs()
        assert manager.decompress(result.data, result.algorithm) == JSON_DATA

    def test_empty_input(self):
        """Test compressing empty input."""
        manager = CompressionManager()
        result = manager.compress(b"", "gzip")

        assert result.original_size == 0
        assert result.compression_ratio == 0
        assert manager.decompress(result.data, "gzip") == b""

    def test_unknown_algorithm(self):
        """Test that unknown algorithms raise."""
        with pytest.raises(UnsupportedAlgorithmError):
            CompressionManager().compress(JSON_DATA, "brotli")

    def test_unavailable_algorithm(self):
        """Test that registered but unavailable codecs raise."""
        manager = CompressionManager([GzipCodec(), FixedCodec("ghost", available=False)])
        with pytest.raises(UnsupportedAlgorithmError):
            manager.compress(JSON_DATA, "ghost")
        with pytest.raises(UnsupportedAlgorithmError):
            manager.decompress(b"x", "ghost")


class TestBestCompressor:
    """Tests for sampled automatic selection."""

    def test_lowest_ratio_wins(self):
        """Test that the codec with the lowest sampled ratio is chosen."""
        manager = CompressionManager(
            [FixedCodec("half", 0.5), FixedCodec("quarter", 0.25)], default="half"
        )
        assert manager.get_best_compressor(JSON_DATA).name == "quarter"

    def test_tie_keeps_registration_order(self):
        """Test that equal ratios keep the earlier-registered codec."""
        manager = CompressionManager(
            [FixedCodec("first", 0.5), FixedCodec("second", 0.5)], default="second"
        )
        assert manager.get_best_compressor(JSON_DATA).name == "first"

    def test_no_improvement_returns_default(self):
        """Test that codecs must strictly beat 1:1 to be chosen."""
        manager = CompressionManager(
            [FixedCodec("same", 1.0), FixedCodec("fallback", 1.0)], default="fallback"
        )
        assert manager.get_best_compressor(JSON_DATA).name == "fallback"

    def test_unavailable_codecs_skipped(self):
        """Test that unavailable codecs are not sampled."""
        ghost = FixedCodec("ghost", 0.1, available=False)
        manager = CompressionManager([FixedCodec("half", 0.5), ghost], default="half")

        assert manager.get_best_compressor(JSON_DATA).name == "half"
        assert ghost.calls == 0

    def test_no_default_and_no_winner(self):
        """Test failure when nothing improves and there is no default."""
        manager = CompressionManager([FixedCodec("ghost", 0.1, available=False)])
        assert manager.default is None
        with pytest.raises(UnsupportedAlgorithmError):
            manager.get_best_compressor(JSON_DATA)

    def test_empty_data_returns_default(self):
        """Test that empty input falls back to the default."""
        manager = CompressionManager(default="gzip")
        assert manager.get_best_compressor(b"").name == "gzip"

    def test_sample_is_bounded(self):
        """Test that only the first 1024 bytes are sampled."""

        class RecordingCodec(FixedCodec):
            def _do_compress(self, data):
                self.seen = len(data)
                return super()._do_compress(data)

        codec = RecordingCodec("rec")
        manager = CompressionManager([codec])
        manager.get_best_compressor(b"a" * 5000)
        assert codec.seen == 1024

    def test_incompressible_sample_not_worse_than_default(self):
        """Test that the choice never samples worse than the default codec."""
        data = os.urandom(4096)
        manager = CompressionManager(default="gzip")
        sample = data[:1024]

        best = manager.get_best_compressor(data)
        default_ratio = len(manager.default.compress(sample)) / len(sample)
        best_ratio = len(best.compress(sample)) / len(sample)

        assert best_ratio <= default_ratio

    def test_sample_reused_for_short_payloads(self):
        """Test that a payload equal to its sample is compressed once."""
        codec = FixedCodec("only", 0.5)
        manager = CompressionManager([codec])
        data = JSON_DATA[:800]

        result = manager.compress(data)

        assert codec.calls == 1
        assert result.compressed_size == 400

    def test_long_payload_compressed_in_full(self):
        """Test that payloads longer than the sample are recompressed."""
        codec = FixedCodec("only", 0.5)
        manager = CompressionManager([codec])

        result = manager.compress(JSON_DATA)

        assert codec.calls == 2
        assert result.original_size == len(JSON_DATA)
        assert result.compressed_size == len(JSON_DATA) // 2
