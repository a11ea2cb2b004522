"""PNG encoding for rendered guide frames.

Provides a Protocol-based encoder so the pipeline can be tested with a
fake encoder, and an OpenCV implementation used in production.

Usage:
    # Production (default)
    encoded = encode_image(rendered)
    encoded.base64  # -> "iVBORw0KGgo..."

    # Testing
    class FakeEncoder:
        def encode_png(self, img):
            return b"\\x89PNGfake"
    encode_image(rendered, encoder=FakeEncoder())

Architecture:
    ImageEncoder (Protocol) <- CV2ImageEncoder (real)
                            <- fake encoders (tests)
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from skyhost.exceptions import EncodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "CV2ImageEncoder",
    "EncodedImage",
    "ImageEncoder",
    "PNG_SIGNATURE",
    "encode_image",
    "to_base64",
]

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@runtime_checkable
class ImageEncoder(Protocol):
    """Protocol for turning a rendered image into PNG bytes."""

    def encode_png(self, img: NDArray[Any]) -> bytes:
        """Encode an image array as PNG.

        Args:
            img: 2-D uint8 array ``(height, width)``.

        Returns:
            Complete PNG file bytes.

        Raises:
            EncodeError: If the image cannot be encoded.
        """
        ...  # pragma: no cover


class CV2ImageEncoder(ImageEncoder):
    """OpenCV-based PNG encoder.

    The cv2 import is deferred to ``__init__`` so modules importing this
    one (and tests providing fake encoders) never load OpenCV unless a
    real encoder is built.

    Thread Safety:
        cv2.imencode is safe to call from concurrent requests.
    """

    def __init__(self, compression: int = 3) -> None:
        """Create the encoder.

        Args:
            compression: zlib level 0-9 for IMWRITE_PNG_COMPRESSION.
                3 is OpenCV's default trade-off.

        Raises:
            ValueError: If compression is outside 0-9.
            ImportError: If opencv-python-headless is not installed.
        """
        if not 0 <= compression <= 9:
            raise ValueError(f"compression must be 0-9, got {compression}")
        import cv2

        self._cv2 = cv2
        self._compression = compression

    def encode_png(self, img: NDArray[Any]) -> bytes:
        """Encode with ``cv2.imencode(".png")``.

        Raises:
            EncodeError: If the image is not 2-D, has a zero dimension, or
                OpenCV reports failure.
        """
        _validate_image(img)
        try:
            success, data = self._cv2.imencode(
                ".png", img, [self._cv2.IMWRITE_PNG_COMPRESSION, self._compression]
            )
        except self._cv2.error as e:
            raise EncodeError(f"PNG encoding failed: {e}") from e
        if not success:
            raise EncodeError(
                f"PNG encoding failed for image shape={img.shape}, dtype={img.dtype}"
            )
        return data.tobytes()


@dataclass(frozen=True)
class EncodedImage:
    """PNG image ready for a JSON response."""

    width: int
    height: int
    base64: str
    format: str = "png"


def _validate_image(img: NDArray[Any]) -> None:
    """Reject images PNG cannot represent."""
    if img.ndim != 2:
        raise EncodeError(f"Expected 2-D grayscale image, got shape {img.shape}")
    height, width = img.shape
    if width == 0 or height == 0:
        raise EncodeError(f"Cannot encode empty image {width}x{height}")


def to_base64(data: bytes) -> str:
    """Encode bytes as standard base64 text."""
    return base64.b64encode(data).decode("ascii")


def encode_image(
    img: NDArray[Any], encoder: ImageEncoder | None = None
) -> EncodedImage:
    """Encode a rendered image as base64 PNG.

    Args:
        img: 2-D uint8 array from the stretch.
        encoder: Encoder to use; a CV2ImageEncoder when None.

    Returns:
        EncodedImage with the image's dimensions.

    Raises:
        EncodeError: If the image is empty or encoding fails.
    """
    _validate_image(img)
    png = (encoder or CV2ImageEncoder()).encode_png(img)
    height, width = img.shape
    return EncodedImage(width=width, height=height, base64=to_base64(png))
