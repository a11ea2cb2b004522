"""Pixel codec for 16-bit grayscale guide frames.

PHD2 ships pixels as consecutive little-endian unsigned 16-bit samples,
either base64-encoded inside a JSON-RPC response (live star image) or
as raw bytes on disk. This module turns those bytes into a RawFrame and
back.

Dimensions:
    The live path carries explicit width/height and those are used as-is.
    A raw file on disk carries no geometry, so the frame is assumed to be
    square: ``side = floor(sqrt(pixel_count))``. This is a best-effort
    fallback. Non-square sensors come out with a wrong aspect ratio and
    samples beyond ``side * side`` are discarded.
"""

from __future__ import annotations

import base64
import binascii
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from skyhost.exceptions import DecodeError
from skyhost.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "BIT_DEPTH",
    "RawFrame",
    "decode_base64",
    "decode_pixels",
    "encode_pixels",
    "frame_from_pixels",
    "square_dimensions",
]

BIT_DEPTH = 16

# Little-endian unsigned 16-bit
_WIRE_DTYPE = np.dtype("<u2")


@dataclass(frozen=True)
class RawFrame:
    """A decoded 16-bit grayscale frame.

    Attributes:
        width: Frame width in pixels.
        height: Frame height in pixels.
        pixels: Flat uint16 array, row-major, ``len == width * height``.
        bit_depth: Always 16.
    """

    width: int
    height: int
    pixels: NDArray[np.uint16]
    bit_depth: int = BIT_DEPTH

    def __post_init__(self) -> None:
        if self.pixels.size != self.width * self.height:
            raise DecodeError(
                f"Frame {self.width}x{self.height} needs "
                f"{self.width * self.height} pixels, got {self.pixels.size}"
            )

    def as_array(self) -> NDArray[np.uint16]:
        """Return pixels shaped ``(height, width)`` (a view, no copy)."""
        return self.pixels.reshape((self.height, self.width))


def decode_pixels(data: bytes | bytearray | memoryview) -> NDArray[np.uint16]:
    """Decode little-endian 16-bit samples.

    Args:
        data: Raw byte buffer. An odd trailing byte is dropped.

    Returns:
        Native-endian uint16 array of ``len(data) // 2`` samples.

    Example:
        >>> decode_pixels(b"\\x01\\x00\\xff\\xff\\x07").tolist()
        [1, 65535]
    """
    usable = len(data) - (len(data) % 2)
    samples = np.frombuffer(data[:usable], dtype=_WIRE_DTYPE)
    return samples.astype(np.uint16)


def encode_pixels(pixels: NDArray[Any]) -> bytes:
    """Encode samples as little-endian 16-bit bytes (inverse of decode)."""
    return np.asarray(pixels, dtype=np.uint16).astype(_WIRE_DTYPE).tobytes()


def decode_base64(text: str) -> bytes:
    """Decode a base64 pixel payload.

    PHD2 may pad the string with NUL characters; trailing NULs are
    stripped before decoding. Line breaks and other whitespace inside
    the text are ignored. Any other non-alphabet character is an error.

    Args:
        text: Standard base64 text.

    Returns:
        Decoded bytes.

    Raises:
        DecodeError: If the text is not valid base64.

    Example:
        >>> decode_base64("AAA=\\0\\0") == decode_base64("AAA=")
        True
    """
    try:
        compact = "".join(text.split()).rstrip("\0")
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Malformed base64 pixel data: {e}") from e


def square_dimensions(pixel_count: int) -> tuple[int, int]:
    """Guess ``(width, height)`` for a frame of unknown geometry.

    Args:
        pixel_count: Number of 16-bit samples available.

    Returns:
        ``(side, side)`` with ``side = floor(sqrt(pixel_count))``.

    Example:
        >>> square_dimensions(100)
        (10, 10)
        >>> square_dimensions(101)
        (10, 10)
    """
    if pixel_count < 0:
        raise ValueError(f"pixel_count must be >= 0, got {pixel_count}")
    side = math.isqrt(pixel_count)
    return side, side


def frame_from_pixels(
    pixels: NDArray[Any],
    width: int | None = None,
    height: int | None = None,
) -> RawFrame:
    """Build a RawFrame from decoded samples.

    Explicit dimensions are authoritative. Without them the square
    fallback applies and any remainder is discarded with a warning.

    Args:
        pixels: Flat uint16 samples.
        width: Frame width, or None if unknown.
        height: Frame height, or None if unknown.

    Returns:
        RawFrame covering ``width * height`` samples.

    Raises:
        DecodeError: If explicit dimensions are not positive or need more
            samples than the buffer holds.
    """
    pixels = np.asarray(pixels, dtype=np.uint16).ravel()

    if width is None or height is None:
        width, height = square_dimensions(pixels.size)
        discarded = pixels.size - width * height
        if discarded:
            logger.warning(
                "Frame geometry unknown, assuming square",
                width=width,
                height=height,
                discarded_pixels=discarded,
            )
    elif width <= 0 or height <= 0:
        raise DecodeError(f"Invalid frame dimensions {width}x{height}")
    elif pixels.size < width * height:
        raise DecodeError(
            f"Frame {width}x{height} needs {width * height} pixels, "
            f"payload has {pixels.size}"
        )

    return RawFrame(width=width, height=height, pixels=pixels[: width * height])
