"""Guider type definitions.

Result shapes returned by the bridge and the closed set of guider device
variants. Kept separate from the implementations to avoid circular
imports between the PHD2 client, the digital twin and the bridge.

Device variants:
    GuiderDevice: base class for whatever guider the host has selected
    Phd2Guider: PHD2 over JSON-RPC (see skyhost.guider.phd2)
    DigitalTwinPhd2Guider: simulated PHD2 (see skyhost.guider.twin)
    DirectGuider: pulse-guides through the mount, no image access
    NoGuider: nothing selected

Only the PHD2 variants speak the protocol the bridge needs; every other
variant is reported as "PHD2 not connected".
"""

from __future__ import annotations

from dataclasses import dataclass


# --- Results ---


@dataclass(frozen=True)
class GuiderResult:
    """Outcome of a simple guider command.

    Attributes:
        success: True if PHD2 accepted the command.
        state: PHD2 application state (get_state only), e.g. "Guiding".
        message: Human-readable confirmation on success.
        error: Error text from PHD2 on failure.
    """

    success: bool
    state: str | None = None
    message: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class StarImage:
    """Star image returned by PHD2 ``get_star_image``.

    Attributes:
        width: Image width in pixels.
        height: Image height in pixels.
        star_position: (x, y) of the guide star inside the image.
        pixels_base64: Base64 little-endian uint16 samples.
        frame_number: PHD2 frame counter.
    """

    width: int
    height: int
    star_position: tuple[float, float]
    pixels_base64: str
    frame_number: int = 0


@dataclass(frozen=True)
class LiveFrameResult:
    """Outcome of fetching the live star image."""

    success: bool
    frame: StarImage | None = None
    error: str | None = None


@dataclass(frozen=True)
class SavedFrameResult:
    """Outcome of asking PHD2 to save the current frame."""

    success: bool
    file_path: str | None = None
    error: str | None = None


# --- Devices ---


class GuiderDevice:
    """Base class for a guider selected on the host."""

    name = "Guider"

    @property
    def connected(self) -> bool:
        """Whether the device reports an active connection."""
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(connected={self.connected})"


class DirectGuider(GuiderDevice):
    """Guides by pulsing the mount directly; exposes no guide images."""

    name = "Direct Guider"

    @property
    def connected(self) -> bool:
        return True


class NoGuider(GuiderDevice):
    """Placeholder when no guider is selected."""

    name = "No Guider"
