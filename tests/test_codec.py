"""Unit tests for skyhost.imaging.codec.

Covers little-endian sample decoding, the NUL-tolerant base64 decoder,
and the frame geometry rules (explicit dimensions vs square fallback).
"""

import base64

import numpy as np
import pytest

from skyhost.exceptions import DecodeError
from skyhost.imaging.codec import (
    RawFrame,
    decode_base64,
    decode_pixels,
    encode_pixels,
    frame_from_pixels,
    square_dimensions,
)


class TestDecodePixels:
    """Tests for decode_pixels()."""

    def test_even_length_gives_half_as_many_samples(self):
        """Verify n bytes decode to n/2 samples with exact values.

        Samples are little-endian: b"\\x01\\x02" is 0x0201 regardless of
        the host byte order.
        """
        data = bytes([0x01, 0x02, 0xFF, 0xFF, 0x00, 0x00, 0x34, 0x12])

        pixels = decode_pixels(data)

        assert pixels.dtype == np.uint16
        assert pixels.tolist() == [0x0201, 0xFFFF, 0x0000, 0x1234]

    def test_round_trip_is_exact(self):
        """Verify encode_pixels(decode_pixels(b)) == b for even-length b."""
        rng = np.random.default_rng(7)
        data = rng.integers(0, 256, size=512, dtype=np.uint8).tobytes()

        assert encode_pixels(decode_pixels(data)) == data

    def test_odd_trailing_byte_is_dropped(self):
        """Verify a trailing half sample is ignored."""
        assert decode_pixels(b"\x05\x00\x07").tolist() == [5]

    def test_empty_buffer(self):
        """Verify empty input gives an empty array."""
        assert decode_pixels(b"").size == 0

    def test_accepts_bytearray(self):
        assert decode_pixels(bytearray(b"\x00\x01")).tolist() == [256]


class TestDecodeBase64:
    """Tests for decode_base64()."""

    def test_trailing_nuls_are_ignored(self):
        """Verify "AAA=\\0\\0" decodes the same as "AAA="."""
        assert decode_base64("AAA=\0\0") == decode_base64("AAA=")
        assert decode_base64("AAA=") == b"\x00\x00"

    def test_decodes_standard_alphabet(self):
        payload = bytes(range(40))
        assert decode_base64(base64.b64encode(payload).decode()) == payload

    def test_embedded_whitespace_is_ignored(self):
        """Verify line-wrapped base64 (MIME style) decodes like the compact form."""
        payload = bytes(range(120))
        wrapped = base64.encodebytes(payload).decode()
        assert "\n" in wrapped
        assert decode_base64(wrapped) == payload
        assert decode_base64(" AAA=\r\n\0") == b"\x00\x00"
        assert decode_base64("AAA=\0\n") == b"\x00\x00"

    def test_malformed_text_raises_decode_error(self):
        """Verify invalid characters raise DecodeError, not binascii.Error."""
        with pytest.raises(DecodeError, match="Malformed base64"):
            decode_base64("not*base64!")

    def test_bad_padding_raises_decode_error(self):
        with pytest.raises(DecodeError):
            decode_base64("AAA")


class TestSquareDimensions:
    """Tests for square_dimensions()."""

    @pytest.mark.parametrize(
        "count,expected",
        [(0, (0, 0)), (1, (1, 1)), (100, (10, 10)), (101, (10, 10)), (120, (10, 10))],
    )
    def test_floor_of_square_root(self, count, expected):
        assert square_dimensions(count) == expected

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            square_dimensions(-1)


class TestFrameFromPixels:
    """Tests for frame_from_pixels()."""

    def test_explicit_dimensions_are_used(self):
        """Verify width/height from the guider are authoritative.

        A 4x2 frame must not be reinterpreted as square.
        """
        frame = frame_from_pixels(np.arange(8, dtype=np.uint16), width=4, height=2)

        assert (frame.width, frame.height) == (4, 2)
        assert frame.as_array().shape == (2, 4)
        assert frame.as_array()[1, 0] == 4

    def test_200_bytes_give_10_by_10(self):
        """Verify 100 samples without geometry give a 10x10 frame."""
        frame = frame_from_pixels(decode_pixels(bytes(200)))

        assert (frame.width, frame.height) == (10, 10)

    def test_202_bytes_give_10_by_10_and_drop_one_sample(self, log_stream):
        """Verify the square fallback discards the remainder with a warning."""
        frame = frame_from_pixels(decode_pixels(bytes(202)))

        assert (frame.width, frame.height) == (10, 10)
        assert frame.pixels.size == 100
        assert "discarded_pixels=1" in log_stream.getvalue()

    def test_extra_samples_beyond_dimensions_are_truncated(self):
        frame = frame_from_pixels(np.arange(10, dtype=np.uint16), width=3, height=3)
        assert frame.pixels.tolist() == list(range(9))

    def test_too_few_samples_raise(self):
        with pytest.raises(DecodeError, match="needs 16 pixels"):
            frame_from_pixels(np.zeros(15, dtype=np.uint16), width=4, height=4)

    @pytest.mark.parametrize("width,height", [(0, 4), (4, 0), (-1, 4)])
    def test_non_positive_dimensions_raise(self, width, height):
        with pytest.raises(DecodeError, match="Invalid frame dimensions"):
            frame_from_pixels(np.zeros(16, dtype=np.uint16), width=width, height=height)


class TestRawFrame:
    """Tests for the RawFrame dataclass."""

    def test_size_mismatch_raises(self):
        with pytest.raises(DecodeError):
            RawFrame(width=3, height=3, pixels=np.zeros(8, dtype=np.uint16))

    def test_bit_depth_is_16(self):
        frame = RawFrame(width=1, height=1, pixels=np.zeros(1, dtype=np.uint16))
        assert frame.bit_depth == 16
