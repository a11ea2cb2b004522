"""Guide image pipeline.

Composes the guider bridge with the imaging stages into the operations
behind the ``/api/phd2`` endpoints. Every operation returns an Envelope
and never raises:

    guider not connected  -> 200 {"success": false, "error": "PHD2 not connected"}
    PHD2 error payload    -> 200 {"success": false, "error": <PHD2 text>}
    missing image data    -> 200 {"success": false, "error": <generic text>}
    anything unexpected   -> 500 {"success": false, "error": <generic text>}

Saved frames:
    ``get_saved_frame`` asks PHD2 to write the current frame, reads it,
    converts it and deletes the file. The whole save -> read -> delete
    sequence runs under one lock so concurrent requests cannot delete a
    file another request is still reading.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from skyhost.exceptions import GuiderNotConnectedError, ImageDataError
from skyhost.guider.bridge import DEFAULT_EXPOSURE_MS, Phd2Bridge
from skyhost.imaging import (
    LIVE_PREVIEW_STRETCH,
    SAVED_FRAME_STRETCH,
    EncodedImage,
    ImageEncoder,
    RawFrame,
    StretchParameters,
    decode_base64,
    decode_pixels,
    encode_image,
    frame_from_pixels,
    read_frame_file,
    stretch,
)
from skyhost.observability import LogContext, get_logger

logger = get_logger(__name__)

__all__ = ["Envelope", "ImagePipeline", "SavedFrameState"]

NO_IMAGE_DATA = "No image data from PHD2"
SAVE_FAILED = "Could not save or load image"


@dataclass(frozen=True)
class Envelope:
    """JSON body plus HTTP status for one API response."""

    body: dict[str, Any] = field(default_factory=dict)
    status_code: int = 200

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))

    @classmethod
    def ok(cls, **fields: Any) -> Envelope:
        return cls({"success": True, **fields})

    @classmethod
    def fail(cls, error: str, status_code: int = 200) -> Envelope:
        return cls({"success": False, "error": error}, status_code)


class SavedFrameState:
    """Path of the most recent frame PHD2 saved for us.

    Written only by the save-image operation; overwritten on the next
    save. Reads and writes are guarded by a lock.
    """

    def __init__(self) -> None:
        self._path: str | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> str | None:
        with self._lock:
            return self._path

    def record(self, path: str) -> None:
        with self._lock:
            self._path = path


class ImagePipeline:
    """PHD2 commands and guide image conversion.

    Args:
        bridge: Type-checked PHD2 operations.
        saved_frame: Holder for the last saved frame path, owned by the
            server lifecycle. A private one is created when None.
        encoder: PNG encoder; OpenCV when None.

    Example:
        >>> pipeline = ImagePipeline(Phd2Bridge(provider.get_device))
        >>> envelope = await pipeline.get_live_preview()
        >>> envelope.body["width"], envelope.body["height"]
        (32, 32)
    """

    def __init__(
        self,
        bridge: Phd2Bridge,
        saved_frame: SavedFrameState | None = None,
        encoder: ImageEncoder | None = None,
    ) -> None:
        self.bridge = bridge
        self.saved_frame = saved_frame if saved_frame is not None else SavedFrameState()
        self._encoder = encoder
        self._save_lock: asyncio.Lock | None = None
        self._save_lock_loop: asyncio.AbstractEventLoop | None = None

    def _saved_frame_lock(self) -> asyncio.Lock:
        """Save lock for the running loop; a restarted listener gets a new one."""
        loop = asyncio.get_running_loop()
        if self._save_lock is None or self._save_lock_loop is not loop:
            self._save_lock = asyncio.Lock()
            self._save_lock_loop = loop
        return self._save_lock

    async def close(self) -> None:
        """Release the guider connection. Called on application shutdown."""
        await self.bridge.close()

    async def _guarded(
        self,
        operation: str,
        internal_error: str,
        action: Callable[[], Awaitable[Envelope]],
    ) -> Envelope:
        """Run an operation and classify whatever it raises."""
        started = time.perf_counter()
        with LogContext(operation=operation):
            try:
                envelope = await action()
            except GuiderNotConnectedError as e:
                logger.info("Guider not connected", device=e.device)
                envelope = Envelope.fail(str(e))
            except ImageDataError as e:
                logger.warning("Guide image unavailable", cause=str(e))
                envelope = Envelope.fail(str(e))
            except Exception:
                logger.exception("Internal error in guide image operation")
                envelope = Envelope.fail(internal_error, status_code=500)

            logger.debug(
                "Operation finished",
                success=envelope.success,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        return envelope

    # --- Commands ---

    async def get_state(self) -> Envelope:
        """Report the PHD2 application state."""

        async def action() -> Envelope:
            result = await self.bridge.get_state()
            if not result.success:
                return Envelope.fail(result.error or "No response from PHD2")
            return Envelope.ok(state=result.state)

        return await self._guarded("get_state", "Error retrieving PHD2 state", action)

    async def stop_guiding(self) -> Envelope:
        """Stop PHD2 looping and guiding."""

        async def action() -> Envelope:
            result = await self.bridge.stop_guiding()
            if not result.success:
                return Envelope.fail(result.error or "PHD2 did not stop")
            return Envelope.ok(message=result.message)

        return await self._guarded(
            "stop_guiding", "Internal error while stopping guiding", action
        )

    async def set_exposure(self, milliseconds: int = DEFAULT_EXPOSURE_MS) -> Envelope:
        """Set the PHD2 guide exposure.

        Args:
            milliseconds: Exposure in ms (2000 unless the client asks).
        """

        async def action() -> Envelope:
            if milliseconds <= 0:
                return Envelope.fail(f"Invalid exposure {milliseconds} ms")
            result = await self.bridge.set_exposure(milliseconds)
            if not result.success:
                return Envelope.fail(result.error or "PHD2 rejected the exposure")
            return Envelope.ok(message=result.message)

        return await self._guarded("set_exposure", "Error setting exposure", action)

    # --- Images ---

    async def get_live_preview(self) -> Envelope:
        """Fetch the live star image as a stretched base64 PNG.

        Returns:
            Envelope with ``width``, ``height`` and ``image`` on success.
            Stretch parameters are fixed for this path.
        """

        async def action() -> Envelope:
            result = await self.bridge.get_live_frame()
            star = result.frame
            if not result.success or star is None or not star.pixels_base64:
                if result.error:
                    logger.info("PHD2 returned no star image", error=result.error)
                raise ImageDataError(NO_IMAGE_DATA)

            pixels = decode_pixels(decode_base64(star.pixels_base64))
            frame = frame_from_pixels(pixels, width=star.width, height=star.height)
            encoded = self._render(frame, LIVE_PREVIEW_STRETCH)
            return Envelope.ok(
                width=encoded.width, height=encoded.height, image=encoded.base64
            )

        return await self._guarded(
            "get_live_preview", "Internal error while retrieving star image", action
        )

    async def get_saved_frame(
        self, black_point: float | None = None, midtone: float | None = None
    ) -> Envelope:
        """Have PHD2 save the current frame and return it as a base64 PNG.

        Args:
            black_point: Shadow clip, default 0.25.
            midtone: Midtone bias, default 2.0.

        Returns:
            Envelope with ``width``, ``height`` and ``image`` on success.
            Raw frame files without a FITS header get square dimensions.
        """
        params = StretchParameters(
            black_point=(
                SAVED_FRAME_STRETCH.black_point if black_point is None else black_point
            ),
            midtone=SAVED_FRAME_STRETCH.midtone if midtone is None else midtone,
        ).sanitized(SAVED_FRAME_STRETCH)

        async def action() -> Envelope:
            async with self._saved_frame_lock():
                saved = await self.bridge.save_frame_to_disk()
                if not saved.success or not saved.file_path:
                    logger.info("PHD2 did not save a frame", error=saved.error)
                    raise ImageDataError(SAVE_FAILED)

                path = Path(saved.file_path)
                if not path.is_file():
                    logger.info("Saved frame missing on disk", path=str(path))
                    raise ImageDataError(SAVE_FAILED)

                self.saved_frame.record(str(path))
                try:
                    frame = read_frame_file(path)
                    encoded = self._render(frame, params)
                finally:
                    _delete_quietly(path)

            return Envelope.ok(
                width=encoded.width, height=encoded.height, image=encoded.base64
            )

        return await self._guarded(
            "get_saved_frame", "Internal error during image retrieval", action
        )

    def _render(self, frame: RawFrame, params: StretchParameters) -> EncodedImage:
        return encode_image(stretch(frame, params), self._encoder)


def _delete_quietly(path: Path) -> None:
    """Remove a temporary frame file; failure is only a warning."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not delete saved frame", path=str(path), error=str(e))
