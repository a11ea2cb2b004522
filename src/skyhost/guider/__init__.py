"""Guider integration.

The host talks to the PHD2 autoguider over its JSON-RPC event server.
Key components:

- Phd2Bridge: type-checked, time-bounded PHD2 operations
- Phd2Guider: TCP JSON-RPC client
- DigitalTwinPhd2Guider: in-process PHD2 simulation
- GuiderProvider: the currently selected guider device
- DirectGuider / NoGuider: incompatible variants

Example:
    from skyhost.guider import GuiderProvider, Phd2Bridge, Phd2Guider

    provider = GuiderProvider(Phd2Guider("localhost", 4400))
    bridge = Phd2Bridge(provider.get_device, timeout=10.0)
    state = await bridge.get_state()
"""

# Import order: types first (avoid circular imports), then implementations
from skyhost.guider.types import (
    DirectGuider,
    GuiderDevice,
    GuiderResult,
    LiveFrameResult,
    NoGuider,
    SavedFrameResult,
    StarImage,
)
from skyhost.guider.phd2 import Phd2Guider
from skyhost.guider.twin import DigitalTwinConfig, DigitalTwinPhd2Guider
from skyhost.guider.bridge import DEFAULT_EXPOSURE_MS, Phd2Bridge
from skyhost.guider.provider import GuiderProvider, create_guider

__all__ = [
    # Results
    "GuiderResult",
    "LiveFrameResult",
    "SavedFrameResult",
    "StarImage",
    # Devices
    "GuiderDevice",
    "DirectGuider",
    "NoGuider",
    "Phd2Guider",
    "DigitalTwinConfig",
    "DigitalTwinPhd2Guider",
    # Bridge
    "DEFAULT_EXPOSURE_MS",
    "Phd2Bridge",
    "GuiderProvider",
    "create_guider",
]
