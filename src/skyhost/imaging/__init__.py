"""Image conversion for guide frames.

Pipeline stages, leaves first:

- codec: bytes/base64 <-> 16-bit RawFrame
- stretch: RawFrame -> 8-bit display image (MTF curve)
- encoder: display image -> PNG -> base64
- frames: saved frame files (FITS or raw samples) -> RawFrame

Example:
    from skyhost.imaging import (
        SAVED_FRAME_STRETCH,
        decode_base64,
        decode_pixels,
        encode_image,
        frame_from_pixels,
        stretch,
    )

    pixels = decode_pixels(decode_base64(payload))
    frame = frame_from_pixels(pixels, width=64, height=48)
    encoded = encode_image(stretch(frame, SAVED_FRAME_STRETCH))
"""

from skyhost.imaging.codec import (
    BIT_DEPTH,
    RawFrame,
    decode_base64,
    decode_pixels,
    encode_pixels,
    frame_from_pixels,
    square_dimensions,
)
from skyhost.imaging.encoder import (
    CV2ImageEncoder,
    EncodedImage,
    ImageEncoder,
    encode_image,
    to_base64,
)
from skyhost.imaging.frames import is_fits, read_frame_file
from skyhost.imaging.stretch import (
    LIVE_PREVIEW_STRETCH,
    SAVED_FRAME_STRETCH,
    StretchParameters,
    stretch,
)

__all__ = [
    # Codec
    "BIT_DEPTH",
    "RawFrame",
    "decode_base64",
    "decode_pixels",
    "encode_pixels",
    "frame_from_pixels",
    "square_dimensions",
    # Stretch
    "LIVE_PREVIEW_STRETCH",
    "SAVED_FRAME_STRETCH",
    "StretchParameters",
    "stretch",
    # Encoding
    "CV2ImageEncoder",
    "EncodedImage",
    "ImageEncoder",
    "encode_image",
    "to_base64",
    # Files
    "is_fits",
    "read_frame_file",
]
