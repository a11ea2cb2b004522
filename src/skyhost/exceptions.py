"""Exception hierarchy for skyhost.

Guider errors describe the external PHD2 process; image errors describe
the decode, stretch and encode stages. The pipeline converts all of them
into ``{"success": False, "error": ...}`` envelopes, so none of these
escape the HTTP boundary.
"""

from __future__ import annotations


class SkyHostError(Exception):
    """Base exception for skyhost operations."""

    pass


# --- Guider ---


class GuiderError(SkyHostError):
    """Base exception for guider bridge failures."""

    pass


class GuiderNotConnectedError(GuiderError):
    """Raised when no compatible guider device is connected."""

    def __init__(self, device: str = "PHD2") -> None:
        self.device = device
        super().__init__(f"{device} not connected")


class GuiderProtocolError(GuiderError):
    """Raised when the guider answers with an error payload or times out.

    Attributes:
        code: JSON-RPC error code, or None for transport failures.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


# --- Imaging ---


class ImageError(SkyHostError):
    """Base exception for image conversion failures."""

    pass


class DecodeError(ImageError):
    """Raised when a pixel payload cannot be decoded."""

    pass


class StretchError(ImageError):
    """Raised when a frame cannot be stretched for display."""

    pass


class EncodeError(ImageError):
    """Raised when a rendered image cannot be encoded as PNG."""

    pass


class ImageDataError(SkyHostError):
    """Raised when the guider delivered no usable image data."""

    pass
