"""Bridge from HTTP handlers to the selected guider.

The host can have any guider selected; only PHD2 variants understand the
commands below. Every operation first checks the device type and raises
GuiderNotConnectedError for anything else, then performs exactly one
JSON-RPC call bounded by ``timeout``.

Error mapping:
    incompatible / unreachable device -> GuiderNotConnectedError (raised)
    PHD2 error payload or timeout     -> result with ``error`` text
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from skyhost.config import DEFAULT_RPC_TIMEOUT_S
from skyhost.exceptions import GuiderNotConnectedError, GuiderProtocolError
from skyhost.guider.phd2 import Phd2Guider
from skyhost.guider.types import (
    GuiderDevice,
    GuiderResult,
    LiveFrameResult,
    SavedFrameResult,
    StarImage,
)
from skyhost.observability import get_logger

logger = get_logger(__name__)

__all__ = ["DEFAULT_EXPOSURE_MS", "Phd2Bridge"]

DEFAULT_EXPOSURE_MS = 2000


class Phd2Bridge:
    """PHD2 operations used by the REST API and the image pipeline.

    Args:
        device_getter: Returns the guider currently selected on the host.
            Called on every operation so a device switch takes effect
            immediately.
        timeout: Seconds allowed for each JSON-RPC call.

    Example:
        >>> bridge = Phd2Bridge(provider.get_device, timeout=10.0)
        >>> result = await bridge.get_state()
        >>> result.state
        'Guiding'
    """

    def __init__(
        self,
        device_getter: Callable[[], GuiderDevice | None],
        timeout: float = DEFAULT_RPC_TIMEOUT_S,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._device_getter = device_getter
        self.timeout = timeout

    def _phd2(self) -> Phd2Guider:
        device = self._device_getter()
        if not isinstance(device, Phd2Guider):
            raise GuiderNotConnectedError("PHD2")
        return device

    async def _call(self, method: str, params: Any = None) -> Any:
        """Type-check the device and perform one bounded call.

        Raises:
            GuiderNotConnectedError: Device is not PHD2 or unreachable.
            GuiderProtocolError: PHD2 error payload or timeout.
        """
        guider = self._phd2()
        try:
            return await asyncio.wait_for(
                guider.call(method, params), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.error("PHD2 call timed out", method=method, timeout=self.timeout)
            raise GuiderProtocolError(
                f"PHD2 did not respond within {self.timeout:g} s"
            ) from e

    async def close(self) -> None:
        """Close the PHD2 connection, if the selected device has one.

        Must run on the event loop that made the calls, i.e. from the
        application's shutdown hook.
        """
        device = self._device_getter()
        if isinstance(device, Phd2Guider):
            await device.disconnect()
            logger.debug("PHD2 connection closed", device=repr(device))

    async def get_state(self) -> GuiderResult:
        """Get the PHD2 application state (``get_app_state``)."""
        try:
            result = await self._call("get_app_state")
        except GuiderProtocolError as e:
            return GuiderResult(success=False, error=str(e))
        if result is None:
            return GuiderResult(success=False, error="No response from PHD2")
        return GuiderResult(success=True, state=str(result))

    async def stop_guiding(self) -> GuiderResult:
        """Stop looping/guiding (``stop_capture``)."""
        try:
            await self._call("stop_capture")
        except GuiderProtocolError as e:
            return GuiderResult(success=False, error=str(e))
        return GuiderResult(success=True, message="Guiding stopped.")

    async def set_exposure(
        self, milliseconds: int = DEFAULT_EXPOSURE_MS
    ) -> GuiderResult:
        """Set the guide exposure (``set_exposure``).

        Args:
            milliseconds: Exposure duration in ms.
        """
        try:
            await self._call("set_exposure", [int(milliseconds)])
        except GuiderProtocolError as e:
            return GuiderResult(success=False, error=str(e))
        return GuiderResult(
            success=True,
            message=f"Exposure set to {milliseconds / 1000:g} seconds.",
        )

    async def get_live_frame(self) -> LiveFrameResult:
        """Fetch the star image around the guide star (``get_star_image``).

        Returns:
            LiveFrameResult. ``frame.pixels_base64`` may be empty; the
            caller decides what an empty payload means.
        """
        try:
            result = await self._call("get_star_image")
        except GuiderProtocolError as e:
            return LiveFrameResult(success=False, error=str(e))
        if not isinstance(result, dict):
            return LiveFrameResult(success=False, error="No image data from PHD2")

        star_pos = result.get("star_pos") or [0.0, 0.0]
        try:
            frame = StarImage(
                width=int(result.get("width", 0)),
                height=int(result.get("height", 0)),
                star_position=(float(star_pos[0]), float(star_pos[1])),
                pixels_base64=str(result.get("pixels") or ""),
                frame_number=int(result.get("frame", 0)),
            )
        except (TypeError, ValueError, IndexError) as e:
            logger.warning("Malformed star image from PHD2", error=str(e))
            return LiveFrameResult(success=False, error="No image data from PHD2")
        return LiveFrameResult(success=True, frame=frame)

    async def save_frame_to_disk(self) -> SavedFrameResult:
        """Ask PHD2 to write the current guide frame (``save_image``).

        Returns:
            SavedFrameResult with the file path PHD2 wrote.
        """
        try:
            result = await self._call("save_image")
        except GuiderProtocolError as e:
            return SavedFrameResult(success=False, error=str(e))
        filename = result.get("filename") if isinstance(result, dict) else None
        if not filename:
            return SavedFrameResult(success=False, error="PHD2 returned no file name")
        return SavedFrameResult(success=True, file_path=str(filename))
