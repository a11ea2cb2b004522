"""Digital twin of PHD2 - simulated guider for testing.

Answers the JSON-RPC methods the bridge uses without a network
connection, so the HTTP surface and image pipeline run on any machine.

Simulation:
    A synthetic guide frame (noisy sky background plus Gaussian stars) is
    generated once per instance. ``get_star_image`` returns a crop around
    the brightest star, ``save_image`` writes the full frame as a FITS
    file into a temporary directory, just as PHD2 does.

Example:
    guider = DigitalTwinPhd2Guider()
    await guider.call("get_app_state")        # "Guiding"
    image = await guider.call("get_star_image")
    image["width"], image["height"]           # (32, 32)
"""

from __future__ import annotations

import base64
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from astropy.io import fits

from skyhost.exceptions import GuiderProtocolError
from skyhost.guider.phd2 import Phd2Guider
from skyhost.imaging.codec import encode_pixels
from skyhost.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = ["DigitalTwinConfig", "DigitalTwinPhd2Guider"]

# PHD2 error code for "no star selected"
_NO_STAR_ERROR = 1
_UNKNOWN_METHOD_ERROR = -32601


@dataclass
class DigitalTwinConfig:
    """Configuration for the simulated guide camera.

    Attributes:
        frame_width: Full guide frame width (PHD2 default camera sim is
            640x512; smaller keeps tests fast).
        frame_height: Full guide frame height.
        star_box: Side of the square star image crop.
        star_count: Number of synthetic stars.
        background: Mean sky level in ADU.
        noise: Sky noise sigma in ADU.
        seed: RNG seed so frames are reproducible.
        save_dir: Directory for save_image files (system temp if None).
        initial_state: PHD2 app state reported at start.
    """

    frame_width: int = 320
    frame_height: int = 240
    star_box: int = 32
    star_count: int = 12
    background: float = 1200.0
    noise: float = 40.0
    seed: int | None = 42
    save_dir: Path | None = None
    initial_state: str = "Guiding"

    def __post_init__(self) -> None:
        if not 0 < self.star_box <= min(self.frame_width, self.frame_height):
            raise ValueError(
                f"star_box must fit the {self.frame_width}x{self.frame_height} "
                f"frame, got {self.star_box}"
            )
        if self.save_dir is not None:
            self.save_dir = Path(self.save_dir)


class DigitalTwinPhd2Guider(Phd2Guider):
    """Simulated PHD2 answering calls in-process.

    Subclasses Phd2Guider so the bridge treats it as a compatible device;
    ``call`` never opens a socket.
    """

    name = "PHD2"

    def __init__(self, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(host="digital-twin", port=0)
        self.config = config or DigitalTwinConfig()
        self._rng = np.random.default_rng(self.config.seed)
        self._frame = self._synthesize_frame()
        self._state = self.config.initial_state
        self._exposure_ms = 1000
        self._frame_number = 0

    def __repr__(self) -> str:
        cfg = self.config
        return (
            f"DigitalTwinPhd2Guider({cfg.frame_width}x{cfg.frame_height}, "
            f"state={self._state!r})"
        )

    @property
    def connected(self) -> bool:
        return True

    @property
    def exposure_ms(self) -> int:
        """Exposure last set through ``set_exposure``."""
        return self._exposure_ms

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def call(self, method: str, params: Any = None) -> Any:
        """Dispatch a JSON-RPC method to the simulation.

        Raises:
            GuiderProtocolError: For unknown methods, bad parameters, or
                ``get_star_image`` while not looping/guiding.
        """
        handlers = {
            "get_app_state": self._get_app_state,
            "stop_capture": self._stop_capture,
            "set_exposure": self._set_exposure,
            "get_star_image": self._get_star_image,
            "save_image": self._save_image,
        }
        handler = handlers.get(method)
        if handler is None:
            raise GuiderProtocolError(
                f"method not found: {method}", code=_UNKNOWN_METHOD_ERROR
            )
        logger.debug("Twin PHD2 call", method=method)
        return handler(params)

    # --- Handlers ---

    def _get_app_state(self, params: Any) -> str:
        return self._state

    def _stop_capture(self, params: Any) -> int:
        self._state = "Stopped"
        return 0

    def _set_exposure(self, params: Any) -> int:
        if not isinstance(params, list | tuple) or len(params) != 1:
            raise GuiderProtocolError("expected exposure param", code=1)
        exposure = params[0]
        if not isinstance(exposure, int) or exposure <= 0:
            raise GuiderProtocolError(f"invalid exposure: {exposure}", code=1)
        self._exposure_ms = exposure
        return 0

    def _get_star_image(self, params: Any) -> dict[str, Any]:
        if self._state not in ("Guiding", "Looping", "Selected", "Calibrating"):
            raise GuiderProtocolError("no star selected", code=_NO_STAR_ERROR)

        self._frame_number += 1
        box = self.config.star_box
        star_y, star_x = np.unravel_index(np.argmax(self._frame), self._frame.shape)
        top = int(np.clip(star_y - box // 2, 0, self._frame.shape[0] - box))
        left = int(np.clip(star_x - box // 2, 0, self._frame.shape[1] - box))
        crop = self._noisy_frame()[top : top + box, left : left + box]

        return {
            "frame": self._frame_number,
            "width": box,
            "height": box,
            "star_pos": [float(star_x - left), float(star_y - top)],
            "pixels": base64.b64encode(encode_pixels(crop.ravel())).decode("ascii"),
        }

    def _save_image(self, params: Any) -> dict[str, str]:
        save_dir = self.config.save_dir or Path(tempfile.gettempdir())
        save_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            prefix="phd2_save_", suffix=".fit", dir=save_dir, delete=False
        ) as handle:
            path = Path(handle.name)

        hdu = fits.PrimaryHDU(self._noisy_frame())
        hdu.header["EXPOSURE"] = self._exposure_ms / 1000.0
        hdu.writeto(path, overwrite=True)
        logger.debug("Twin saved frame", path=str(path))
        return {"filename": str(path)}

    # --- Synthesis ---

    def _synthesize_frame(self) -> NDArray[np.float64]:
        """Noise-free sky with Gaussian stars."""
        cfg = self.config
        yy, xx = np.mgrid[0 : cfg.frame_height, 0 : cfg.frame_width]
        frame = np.full((cfg.frame_height, cfg.frame_width), cfg.background)

        margin = cfg.star_box // 2
        for _ in range(cfg.star_count):
            x = self._rng.uniform(margin, max(margin + 1, cfg.frame_width - margin))
            y = self._rng.uniform(margin, max(margin + 1, cfg.frame_height - margin))
            peak = self._rng.uniform(2_000.0, 40_000.0)
            sigma = self._rng.uniform(1.2, 2.5)
            frame += peak * np.exp(-((xx - x) ** 2 + (yy - y) ** 2) / (2 * sigma**2))
        return frame

    def _noisy_frame(self) -> NDArray[np.uint16]:
        """Current exposure: base frame plus fresh sky noise."""
        noise = self._rng.normal(0.0, self.config.noise, self._frame.shape)
        return np.clip(self._frame + noise, 0, 65535).astype(np.uint16)
