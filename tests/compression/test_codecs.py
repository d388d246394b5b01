"""Tests for codec implementations."""

import zlib

import pytest

from binrelay.compression import (
    BaseCodec,
    CompressionError,
    CompressionResult,
    DecompressionError,
    GzipCodec,
    LZ4Codec,
    UnsupportedAlgorithmError,
    ZstdCodec,
    codec_names,
    compute_ratio,
    default_codecs,
    get_codec,
)
from binrelay.errors import ValidationError


PAYLOADS = [b"", b"x", b'{"rows":[{"id":1}]}' * 500, bytes(range(256)) * 4200]


class TestGzipCodec:
    """Tests for GzipCodec."""

    @pytest.mark.parametrize("data", PAYLOADS)
    def test_roundtrip(self, data):
        """Test exact round-trip for empty, tiny and large inputs."""
        codec = GzipCodec()
        assert codec.decompress(codec.compress(data)) == data

    def test_zlib_framing(self):
        """Test that output is a zlib stream readable by zlib.decompress."""
        data = b"hello world" * 10
        assert zlib.decompress(GzipCodec(9).compress(data)) == data

    def test_level_range(self):
        """Test default level and bounds."""
        codec = GzipCodec()
        assert codec.level == 6
        assert codec.level_range == (1, 9)

    @pytest.mark.parametrize("level", [0, 10, -1])
    def test_out_of_range_level(self, level):
        """Test that out-of-range levels are rejected."""
        with pytest.raises(ValidationError):
            GzipCodec(level)

    def test_set_level_keeps_old_value_on_error(self):
        """Test that a rejected level leaves the codec unchanged."""
        codec = GzipCodec(3)
        with pytest.raises(ValidationError):
            codec.set_level(12)
        assert codec.level == 3

    def test_non_integer_level(self):
        """Test that booleans and strings are not levels."""
        with pytest.raises(ValidationError):
            GzipCodec(True)
        with pytest.raises(ValidationError):
            GzipCodec("5")

    def test_corrupt_input(self):
        """Test that corrupt data raises DecompressionError."""
        with pytest.raises(DecompressionError) as exc_info:
            GzipCodec().decompress(b"not compressed")
        assert exc_info.value.algorithm == "gzip"


class TestLZ4Codec:
    """Tests for LZ4Codec."""

    @pytest.fixture(autouse=True)
    def require_lz4(self):
        pytest.importorskip("lz4.frame")

    @pytest.mark.parametrize("data", PAYLOADS)
    def test_roundtrip(self, data):
        """Test exact round-trip for empty, tiny and large inputs."""
        codec = LZ4Codec()
        assert codec.decompress(codec.compress(data)) == data

    def test_level_range(self):
        """Test that LZ4 accepts levels GzipCodec does not."""
        codec = LZ4Codec(12)
        assert codec.level == 12
        assert codec.level_range == (1, 12)
        with pytest.raises(ValidationError):
            LZ4Codec(13)

    def test_high_compression_level_roundtrip(self):
        """Test round-trip in high-compression mode."""
        data = b"abcdefgh" * 1000
        codec = LZ4Codec(9)
        assert codec.decompress(codec.compress(data)) == data

    def test_is_available(self):
        """Test availability when lz4 is installed."""
        assert LZ4Codec().is_available() is True


class TestZstdCodec:
    """Tests for ZstdCodec."""

    def test_level_range(self):
        """Test bounds without needing the library."""
        assert ZstdCodec().level_range == (1, 22)
        with pytest.raises(ValidationError):
            ZstdCodec(23)

    def test_roundtrip(self):
        """Test round-trip when zstandard is installed."""
        pytest.importorskip("zstandard")
        data = b'{"rows":[{"id":1}]}' * 500
        codec = ZstdCodec(19)
        assert codec.decompress(codec.compress(data)) == data


class TestUnavailableCodec:
    """Tests for codecs whose library is missing."""

    class MissingCodec(BaseCodec):
        name = "missing"

        def is_available(self):
            return False

        def _do_compress(self, data):
            return data

        def _do_decompress(self, data):
            return data

    def test_compress_raises(self):
        """Test that calling an unavailable codec raises."""
        with pytest.raises(UnsupportedAlgorithmError):
            self.MissingCodec().compress(b"data")

    def test_failure_is_wrapped(self):
        """Test that library errors are wrapped in CompressionError."""

        class BrokenCodec(BaseCodec):
            name = "broken"

            def _do_compress(self, data):
                raise RuntimeError("boom")

            def _do_decompress(self, data):
                raise RuntimeError("boom")

        with pytest.raises(CompressionError) as exc_info:
            BrokenCodec().compress(b"data")
        assert "boom" in str(exc_info.value)
        assert exc_info.value.algorithm == "broken"


class TestFactory:
    """Tests for the codec factory."""

    def test_codec_names_order(self):
        """Test registration order of the built-in codecs."""
        assert codec_names() == ["gzip", "lz4", "zstd"]

    def test_get_codec(self):
        """Test creating a codec by name with a level."""
        codec = get_codec("GZIP", level=2)
        assert isinstance(codec, GzipCodec)
        assert codec.level == 2

    def test_get_unknown_codec(self):
        """Test that unknown names raise UnsupportedAlgorithmError."""
        with pytest.raises(UnsupportedAlgorithmError) as exc_info:
            get_codec("brotli")
        assert "gzip" in exc_info.value.available

    def test_default_codecs_levels(self):
        """Test per-codec levels for the built-in codecs."""
        codecs = default_codecs({"gzip": 9, "lz4": 4})
        assert [c.name for c in codecs] == ["gzip", "lz4", "zstd"]
        assert codecs[0].level == 9
        assert codecs[1].level == 4
        assert codecs[2].level == 3

    def test_default_codecs_unknown_name(self):
        """Test that levels for unknown codecs are rejected."""
        with pytest.raises(UnsupportedAlgorithmError):
            default_codecs({"brotli": 5})


class TestCompressionResult:
    """Tests for CompressionResult and ratio computation."""

    def test_ratio_rounding(self):
        """Test ratio rounded to four places."""
        assert compute_ratio(3, 1) == 0.3333
        assert compute_ratio(2000, 150) == 0.075

    def test_ratio_empty_input(self):
        """Test that an empty original gives ratio 0."""
        assert compute_ratio(0, 8) == 0

    def test_build_and_descriptor(self):
        """Test building a result and its metadata."""
        result = CompressionResult.build("gzip", 6, b"a" * 100, b"z" * 12)

        assert result.original_size == 100
        assert result.compressed_size == 12
        assert result.compression_ratio == 0.12
        assert result.descriptor() == {
            "algorithm": "gzip",
            "level": 6,
            "original_size": 100,
            "compressed_size": 12,
            "compression_ratio": 0.12,
        }
