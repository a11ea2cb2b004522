"""Display stretch for 16-bit guide frames.

Guide frames are mostly dark sky with a few faint stars; a linear
16-to-8-bit conversion shows almost nothing. The stretch here clips the
shadows relative to the frame median and then applies a midtone transfer
function (MTF):

    MTF(x; m) = (m - 1) * x / ((2m - 1) * x - m)

MTF maps 0 to 0, 1 to 1 and m to 0.5. It is monotonic increasing for any
balance 0 < m < 1; m < 0.5 brightens, m > 0.5 darkens.

Parameters:
    black_point: fraction of the median that becomes black, clamped to
        [0, 1]. 0 keeps every value, 1 clips the whole background.
    midtone: brightness bias in stops. The balance is
        ``m = 1 / (1 + 2**midtone)``, so 0 is linear, positive values
        brighten and negative values darken.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from skyhost.exceptions import StretchError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from skyhost.imaging.codec import RawFrame

__all__ = [
    "LIVE_PREVIEW_STRETCH",
    "SAVED_FRAME_STRETCH",
    "StretchParameters",
    "midtone_balance",
    "mtf",
    "stretch",
]

_MAX_16BIT = 65535.0
_MAX_DISPLAY = 255.0

# 2**60 already drives the balance to the clamp below
_MIDTONE_LIMIT = 60.0
_BALANCE_EPS = 1e-6


@dataclass(frozen=True)
class StretchParameters:
    """Black point and midtone bias for one stretch."""

    black_point: float
    midtone: float

    def sanitized(self, fallback: StretchParameters) -> StretchParameters:
        """Replace non-finite values (NaN, inf) with the fallback's."""
        return StretchParameters(
            black_point=(
                self.black_point
                if math.isfinite(self.black_point)
                else fallback.black_point
            ),
            midtone=self.midtone if math.isfinite(self.midtone) else fallback.midtone,
        )


# Fixed defaults for the live star image; the saved frame default applies
# when the client omits black/midtone. The live curve has no shadow clip,
# so it never renders a pixel darker than a linear conversion.
LIVE_PREVIEW_STRETCH = StretchParameters(black_point=0.0, midtone=2.8)
SAVED_FRAME_STRETCH = StretchParameters(black_point=0.25, midtone=2.0)


def midtone_balance(midtone: float) -> float:
    """Convert a midtone bias in stops to an MTF balance in (0, 1).

    Example:
        >>> midtone_balance(0.0)
        0.5
    """
    exponent = min(max(midtone, -_MIDTONE_LIMIT), _MIDTONE_LIMIT)
    balance = 1.0 / (1.0 + 2.0**exponent)
    return min(max(balance, _BALANCE_EPS), 1.0 - _BALANCE_EPS)


def mtf(x: NDArray[np.float64], balance: float) -> NDArray[np.float64]:
    """Apply the midtone transfer function to values in [0, 1]."""
    denominator = (2.0 * balance - 1.0) * x - balance
    with np.errstate(divide="ignore", invalid="ignore"):
        result = (balance - 1.0) * x / denominator
    return np.nan_to_num(result, nan=0.0, posinf=1.0, neginf=0.0)


def stretch(frame: RawFrame, params: StretchParameters) -> NDArray[np.uint8]:
    """Render a 16-bit frame as an 8-bit display image.

    Args:
        frame: Decoded frame.
        params: Black point and midtone bias. Non-finite values fall back
            to the saved-frame defaults.

    Returns:
        uint8 array of shape ``(height, width)``, always within [0, 255].

    Raises:
        StretchError: If the frame has no pixels.

    Example:
        >>> img = stretch(frame, SAVED_FRAME_STRETCH)
        >>> img.shape == (frame.height, frame.width)
        True
    """
    if frame.width <= 0 or frame.height <= 0:
        raise StretchError(f"Cannot stretch empty frame {frame.width}x{frame.height}")

    params = params.sanitized(SAVED_FRAME_STRETCH)
    data = frame.as_array().astype(np.float64) / _MAX_16BIT

    black = min(max(params.black_point, 0.0), 1.0)
    shadows = black * float(np.median(data))
    span = 1.0 - shadows
    if span <= 0.0:
        # Saturated background: only full-scale pixels stay white
        clipped = (data >= 1.0).astype(np.float64)
    else:
        clipped = np.clip((data - shadows) / span, 0.0, 1.0)

    stretched = mtf(clipped, midtone_balance(params.midtone))
    display = np.clip(np.rint(stretched * _MAX_DISPLAY), 0.0, _MAX_DISPLAY)
    return display.astype(np.uint8)
