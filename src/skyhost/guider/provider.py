"""Guider selection.

Holds the guider device currently selected on the host and builds the
right device for the configured mode.
"""

from __future__ import annotations

import threading

from skyhost.config import GuiderMode, ServerConfig
from skyhost.guider.phd2 import Phd2Guider
from skyhost.guider.twin import DigitalTwinPhd2Guider
from skyhost.guider.types import GuiderDevice, NoGuider
from skyhost.observability import get_logger

logger = get_logger(__name__)

__all__ = ["GuiderProvider", "create_guider"]


class GuiderProvider:
    """Single-slot holder for the selected guider device.

    Example:
        >>> provider = GuiderProvider(Phd2Guider())
        >>> bridge = Phd2Bridge(provider.get_device)
        >>> provider.set_device(DirectGuider())  # bridge now reports
        ...                                      # "PHD2 not connected"
    """

    def __init__(self, device: GuiderDevice | None = None) -> None:
        self._device: GuiderDevice = device if device is not None else NoGuider()
        self._lock = threading.Lock()

    def get_device(self) -> GuiderDevice:
        """Return the selected device (NoGuider when none)."""
        with self._lock:
            return self._device

    def set_device(self, device: GuiderDevice | None) -> None:
        """Select a different device. None selects NoGuider."""
        with self._lock:
            self._device = device if device is not None else NoGuider()
        logger.info("Guider selected", device=repr(self._device))


def create_guider(config: ServerConfig) -> GuiderDevice:
    """Build the guider device for the configured mode.

    Args:
        config: Server configuration (mode, PHD2 address).

    Returns:
        DigitalTwinPhd2Guider in DIGITAL_TWIN mode, otherwise a
        Phd2Guider pointed at ``phd2_host:phd2_port``.
    """
    if config.guider_mode == GuiderMode.DIGITAL_TWIN:
        logger.info("Using DIGITAL_TWIN guider (simulated PHD2)")
        return DigitalTwinPhd2Guider()
    logger.info("Using PHD2 guider", host=config.phd2_host, port=config.phd2_port)
    return Phd2Guider(host=config.phd2_host, port=config.phd2_port)
