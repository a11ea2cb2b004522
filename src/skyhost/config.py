"""Server configuration and global settings.

Supports switching between the real PHD2 guider and a digital twin that
simulates it, so the HTTP surface and the image pipeline can be exercised
without a guide camera attached.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

# =============================================================================
# Constants
# =============================================================================

DEFAULT_HTTP_PORT = 5000

# PHD2 event server (JSON-RPC over TCP)
DEFAULT_PHD2_HOST = "localhost"
DEFAULT_PHD2_PORT = 4400
DEFAULT_RPC_TIMEOUT_S = 10.0

# Discovery broadcast. The identifier is what client apps filter on.
DISCOVERY_IDENTIFIER = "NINA-TouchNStars"
DISCOVERY_PORT = 37020
BROADCAST_ADDRESS = "255.255.255.255"
BROADCAST_INTERVAL_S = 5.0
BROADCAST_JOIN_TIMEOUT_S = 1.0

# Listener shutdown
LISTENER_JOIN_TIMEOUT_S = 5.0


class GuiderMode(Enum):
    """Guider backend selection."""

    PHD2 = "phd2"  # Real PHD2 instance over TCP
    DIGITAL_TWIN = "digital_twin"  # Simulated PHD2 for testing


def _default_static_dir() -> Path:
    """Get the bundled web app directory served at ``/``.

    Returns:
        Path to ``skyhost/web/static`` inside the installed package.
    """
    return Path(__file__).parent / "web" / "static"


@dataclass
class ServerConfig:
    """Configuration for the HTTP listener, guider and discovery broadcast.

    Attributes:
        host: Listener bind address (wildcard by default).
        port: HTTP port; also announced in discovery datagrams.
        static_dir: Web app directory served at ``/`` if it exists.
        guider_mode: PHD2 for a real guider, DIGITAL_TWIN for simulation.
        phd2_host: Host running PHD2.
        phd2_port: PHD2 event server port (4400 for instance #1).
        rpc_timeout: Seconds to wait for any single PHD2 call.
        discovery_identifier: First field of the discovery datagram.
        discovery_port: UDP port client apps listen on.
        broadcast_address: Destination of discovery datagrams.
        broadcast_interval: Seconds between discovery datagrams.
        broadcast_join_timeout: Upper bound for joining the broadcast thread.
        listener_join_timeout: Upper bound for joining the listener thread.
        log_level: Level for skyhost and uvicorn loggers.
    """

    host: str = "0.0.0.0"
    port: int = DEFAULT_HTTP_PORT
    static_dir: Path = field(default_factory=_default_static_dir)

    # Guider settings
    guider_mode: GuiderMode = GuiderMode.PHD2
    phd2_host: str = DEFAULT_PHD2_HOST
    phd2_port: int = DEFAULT_PHD2_PORT
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT_S

    # Discovery settings
    discovery_identifier: str = DISCOVERY_IDENTIFIER
    discovery_port: int = DISCOVERY_PORT
    broadcast_address: str = BROADCAST_ADDRESS
    broadcast_interval: float = BROADCAST_INTERVAL_S
    broadcast_join_timeout: float = BROADCAST_JOIN_TIMEOUT_S

    listener_join_timeout: float = LISTENER_JOIN_TIMEOUT_S
    log_level: str = "info"

    def __post_init__(self) -> None:
        """Validate ranges that would otherwise fail deep in a thread.

        Raises:
            ValueError: If a port is outside 0-65535 or a timeout or
                interval is not positive.
        """
        for name in ("port", "phd2_port", "discovery_port"):
            value = getattr(self, name)
            if not 0 <= value <= 65535:
                raise ValueError(f"{name} must be in range [0, 65535], got {value}")
        for name in (
            "rpc_timeout",
            "broadcast_interval",
            "broadcast_join_timeout",
            "listener_join_timeout",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        self.static_dir = Path(self.static_dir)


# =============================================================================
# Global Singleton
# =============================================================================
# Configure once at startup before the listener and broadcaster threads
# are started; both read the config only when they start.

_config: ServerConfig | None = None


def get_config() -> ServerConfig:
    """Get the global server configuration, creating defaults on first use.

    Returns:
        The ServerConfig singleton.

    Example:
        >>> get_config().port
        5000
    """
    global _config
    if _config is None:
        _config = ServerConfig()
    return _config


def configure(config: ServerConfig) -> None:
    """Replace the global server configuration.

    Args:
        config: New configuration. Components already started keep the
            values they were started with.
    """
    global _config
    _config = config


def use_digital_twin() -> None:
    """Switch the global configuration to the simulated guider."""
    configure(replace(get_config(), guider_mode=GuiderMode.DIGITAL_TWIN))


def use_phd2(host: str | None = None, port: int | None = None) -> None:
    """Switch the global configuration to a real PHD2 instance.

    Args:
        host: PHD2 host, or None to keep the current one.
        port: PHD2 port, or None to keep the current one.
    """
    current = get_config()
    configure(
        replace(
            current,
            guider_mode=GuiderMode.PHD2,
            phd2_host=host if host is not None else current.phd2_host,
            phd2_port=port if port is not None else current.phd2_port,
        )
    )
