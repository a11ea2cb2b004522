"""LAN discovery broadcaster.

Announces the host to mobile clients on the local network by sending a
UDP broadcast datagram every few seconds:

    NINA-TouchNStars|Port:5000|Host:observatory-pc|IP:192.168.1.20

The loop runs on one daemon thread owned by the server lifecycle; stop()
wakes the loop immediately and joins it with a bounded timeout.
"""

from __future__ import annotations

import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass

from skyhost.config import (
    BROADCAST_ADDRESS,
    BROADCAST_INTERVAL_S,
    BROADCAST_JOIN_TIMEOUT_S,
    DEFAULT_HTTP_PORT,
    DISCOVERY_IDENTIFIER,
    DISCOVERY_PORT,
)
from skyhost.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "BroadcastMessage",
    "DiscoveryBroadcaster",
    "local_ipv4_address",
]

SocketFactory = Callable[[], socket.socket]

_FALLBACK_ADDRESS = "127.0.0.1"


@dataclass(frozen=True)
class BroadcastMessage:
    """Discovery announcement payload."""

    identifier: str
    port: int
    hostname: str
    ip_address: str

    def __str__(self) -> str:
        return (
            f"{self.identifier}|Port:{self.port}"
            f"|Host:{self.hostname}|IP:{self.ip_address}"
        )

    def serialize(self) -> bytes:
        return str(self).encode("utf-8")


def local_ipv4_address() -> str:
    """Best-effort primary IPv4 address of this host.

    Connecting a UDP socket selects the outbound interface without
    sending anything. Falls back to 127.0.0.1 when no route exists.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("10.255.255.255", 1))
            return str(probe.getsockname()[0])
    except OSError:
        return _FALLBACK_ADDRESS


def _broadcast_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
    return sock


class DiscoveryBroadcaster:
    """Periodic UDP announcement of the HTTP port.

    Args:
        port: HTTP port advertised to clients.
        identifier: Fixed prefix clients filter on.
        discovery_port: UDP destination port.
        broadcast_address: UDP destination address.
        interval: Seconds between datagrams.
        join_timeout: Seconds stop() waits for the thread.
        socket_factory: Creates the sending socket (tests inject fakes).

    Example:
        >>> broadcaster = DiscoveryBroadcaster(port=5000)
        >>> broadcaster.start()
        >>> broadcaster.stop()  # returns within join_timeout
    """

    def __init__(
        self,
        port: int = DEFAULT_HTTP_PORT,
        identifier: str = DISCOVERY_IDENTIFIER,
        discovery_port: int = DISCOVERY_PORT,
        broadcast_address: str = BROADCAST_ADDRESS,
        interval: float = BROADCAST_INTERVAL_S,
        join_timeout: float = BROADCAST_JOIN_TIMEOUT_S,
        socket_factory: SocketFactory | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.port = port
        self.identifier = identifier
        self.destination = (broadcast_address, discovery_port)
        self.interval = interval
        self.join_timeout = join_timeout
        self._socket_factory = socket_factory or _broadcast_socket
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self.message: BroadcastMessage | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Capture host identity and start the broadcast thread."""
        if self.is_running:
            logger.warning("Discovery broadcaster already running")
            return

        self.message = BroadcastMessage(
            identifier=self.identifier,
            port=self.port,
            hostname=socket.gethostname(),
            ip_address=local_ipv4_address(),
        )
        self._cancel = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self.message, self._cancel),
            daemon=True,
            name=f"skyhost-discovery-{self.port}",
        )
        self._thread.start()
        logger.info(
            "Discovery broadcaster started",
            message=str(self.message),
            destination=f"{self.destination[0]}:{self.destination[1]}",
        )

    def cancel(self) -> None:
        """Ask the loop to exit without waiting for it."""
        self._cancel.set()

    def stop(self) -> None:
        """Cancel the loop and join the thread (bounded)."""
        self.cancel()
        thread = self._thread
        if thread is None:
            return
        thread.join(timeout=self.join_timeout)
        if thread.is_alive():
            logger.warning(
                "Discovery broadcaster did not stop in time",
                timeout=self.join_timeout,
            )
        else:
            logger.info("Discovery broadcaster stopped")
        self._thread = None

    def _run(self, message: BroadcastMessage, cancel: threading.Event) -> None:
        payload = message.serialize()
        while not cancel.is_set():
            try:
                with self._socket_factory() as sock:
                    sock.sendto(payload, self.destination)
                logger.debug("Discovery broadcast sent", bytes=len(payload))
            except OSError as e:
                logger.error("Discovery broadcast failed", error=str(e))
            cancel.wait(self.interval)
