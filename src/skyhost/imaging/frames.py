"""Reading guide frames saved to disk.

PHD2's ``save_image`` writes the current guide frame to a temporary
file. Files that start with a FITS primary header are read with astropy,
which gives the true geometry. Anything else is treated as headerless
little-endian 16-bit samples and goes through the square fallback of the
pixel codec.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
from astropy.io import fits

from skyhost.exceptions import DecodeError
from skyhost.imaging.codec import RawFrame, decode_pixels, frame_from_pixels
from skyhost.observability import get_logger

logger = get_logger(__name__)

__all__ = ["FITS_SIGNATURE", "is_fits", "read_frame_file"]

# Every FITS file opens with the SIMPLE keyword card
FITS_SIGNATURE = b"SIMPLE  ="


def is_fits(data: bytes) -> bool:
    """Check whether a buffer begins with a FITS primary header."""
    return data[: len(FITS_SIGNATURE)] == FITS_SIGNATURE


def _frame_from_fits(path: Path) -> RawFrame:
    """Decode the first 2-D image HDU of a FITS file.

    Scaled data (BZERO/BSCALE, as PHD2 writes for unsigned frames) is
    applied by astropy; values are clipped into the 16-bit range.

    Raises:
        DecodeError: If no HDU holds a 2-D image.
    """
    with fits.open(path, memmap=False) as hdul:
        for hdu in hdul:
            data = hdu.data
            if data is not None and data.ndim == 2:
                height, width = data.shape
                pixels = np.clip(np.nan_to_num(data), 0, 65535).astype(np.uint16)
                return RawFrame(width=width, height=height, pixels=pixels.ravel())
    raise DecodeError(f"No 2-D image in FITS file {path.name}")


def read_frame_file(path: Path | str) -> RawFrame:
    """Load a saved guide frame.

    Args:
        path: File written by the guider.

    Returns:
        RawFrame with FITS geometry, or square-fallback geometry for raw
        sample files.

    Raises:
        OSError: If the file cannot be read.
        DecodeError: If the content is not a usable frame.
    """
    path = Path(path)
    data = path.read_bytes()

    if is_fits(data):
        try:
            frame = _frame_from_fits(path)
        except (OSError, ValueError, TypeError) as e:
            raise DecodeError(f"Unreadable FITS file {path.name}: {e}") from e
        logger.debug("Read FITS frame", path=str(path), width=frame.width)
        return frame

    return frame_from_pixels(decode_pixels(data))
