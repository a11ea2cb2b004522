"""Server entry point: HTTP listener, discovery broadcast, guider wiring."""

from __future__ import annotations

import argparse
import signal
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import uvicorn

from skyhost.config import GuiderMode, ServerConfig, configure, get_config
from skyhost.discovery import DiscoveryBroadcaster
from skyhost.guider import GuiderProvider, Phd2Bridge, create_guider
from skyhost.observability import configure_logging, get_logger
from skyhost.pipeline import ImagePipeline, SavedFrameState
from skyhost.web.app import create_app

logger = get_logger(__name__)


class Monitor(Protocol):
    """Auxiliary background service started after the listener."""

    def start(self) -> None: ...

    def stop(self) -> None: ...


@dataclass
class ServerState:
    """Container for running server state.

    Holds the listener thread, the uvicorn server instance and the
    discovery broadcaster so stop() can shut them down in order.
    """

    thread: threading.Thread | None = field(default=None)
    server: uvicorn.Server | None = field(default=None)
    broadcaster: DiscoveryBroadcaster | None = field(default=None)
    monitors: list[Monitor] = field(default_factory=list)

    def clear(self) -> None:
        self.thread = None
        self.server = None
        self.broadcaster = None
        self.monitors = []


def _run_listener(server: uvicorn.Server, host: str, port: int) -> None:
    """Run the uvicorn server until ``should_exit`` is set.

    Bind failures are logged, not raised; the thread simply ends.
    """
    try:
        server.run()
    except OSError as e:
        logger.error(
            "HTTP listener failed to start", error=str(e), host=host, port=port
        )
    except Exception:
        logger.exception("Unexpected error in HTTP listener")


class ServerLifecycle:
    """Starts and stops the HTTP listener and the discovery broadcaster.

    Args:
        config: Listener, guider and discovery settings.
        provider: Selected guider device. Built from ``config`` when None.
        monitors: Auxiliary services started after the broadcaster and
            stopped after it.

    Example:
        >>> lifecycle = ServerLifecycle(ServerConfig(port=5000))
        >>> lifecycle.start()
        >>> lifecycle.is_running
        True
        >>> lifecycle.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        provider: GuiderProvider | None = None,
        monitors: Iterable[Monitor] = (),
    ) -> None:
        self.config = config or get_config()
        self.provider = provider or GuiderProvider(create_guider(self.config))
        self.saved_frame = SavedFrameState()
        self.pipeline = ImagePipeline(
            Phd2Bridge(self.provider.get_device, timeout=self.config.rpc_timeout),
            saved_frame=self.saved_frame,
        )
        self._monitors = list(monitors)
        self._state = ServerState()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        with self._lock:
            thread = self._state.thread
            return thread is not None and thread.is_alive()

    def start(self) -> None:
        """Start the listener thread, then the broadcaster, then monitors.

        A second start() while running is ignored with a warning; call
        stop() first to restart.
        """
        cfg = self.config
        with self._lock:
            if self._state.thread is not None:
                logger.warning(
                    "Server already started; call stop() before start()",
                    port=cfg.port,
                )
                return
            app = create_app(
                self.pipeline,
                static_dir=cfg.static_dir,
                describe_guider=lambda: repr(self.provider.get_device()),
            )
            server = uvicorn.Server(
                uvicorn.Config(
                    app, host=cfg.host, port=cfg.port, log_level=cfg.log_level
                )
            )
            thread = threading.Thread(
                target=_run_listener,
                args=(server, cfg.host, cfg.port),
                daemon=True,
                name=f"skyhost-api-{cfg.port}",
            )
            thread.start()
            logger.info("HTTP listener started", url=f"http://{cfg.host}:{cfg.port}")

            broadcaster = DiscoveryBroadcaster(
                port=cfg.port,
                identifier=cfg.discovery_identifier,
                discovery_port=cfg.discovery_port,
                broadcast_address=cfg.broadcast_address,
                interval=cfg.broadcast_interval,
                join_timeout=cfg.broadcast_join_timeout,
            )
            broadcaster.start()

            for monitor in self._monitors:
                monitor.start()

            self._state.thread = thread
            self._state.server = server
            self._state.broadcaster = broadcaster
            self._state.monitors = list(self._monitors)

    def stop(self) -> None:
        """Stop everything started by start(). Safe when not running."""
        with self._lock:
            state = self._state
            if state.broadcaster is not None:
                state.broadcaster.cancel()
            if state.server is not None:
                logger.info("Stopping HTTP listener")
                state.server.should_exit = True

            if state.broadcaster is not None:
                state.broadcaster.stop()
            if state.thread is not None:
                state.thread.join(timeout=self.config.listener_join_timeout)
                if state.thread.is_alive():
                    logger.warning(
                        "HTTP listener did not stop in time",
                        timeout=self.config.listener_join_timeout,
                    )

            for monitor in state.monitors:
                try:
                    monitor.stop()
                except Exception:
                    logger.exception("Monitor failed to stop", monitor=repr(monitor))

            state.clear()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        argparse.Namespace with host, port, static_dir, mode, phd2_host,
        phd2_port, rpc_timeout, discovery_port, broadcast_interval,
        log_level and json_logs.
    """
    defaults = ServerConfig()
    parser = argparse.ArgumentParser(
        description="SkyHost - PHD2 guide images and discovery for mobile clients"
    )
    parser.add_argument(
        "--host", default=defaults.host, help="Bind address (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=defaults.port,
        help=f"HTTP port, also announced by discovery (default: {defaults.port})",
    )
    parser.add_argument(
        "--static-dir",
        type=Path,
        default=None,
        help="Web app directory served at / (default: bundled app)",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in GuiderMode],
        default=defaults.guider_mode.value,
        help="Guider backend: 'phd2' (default) or 'digital_twin' for simulation",
    )
    parser.add_argument("--phd2-host", default=defaults.phd2_host)
    parser.add_argument("--phd2-port", type=int, default=defaults.phd2_port)
    parser.add_argument(
        "--rpc-timeout",
        type=float,
        default=defaults.rpc_timeout,
        help="Seconds to wait for a PHD2 reply (default: 10)",
    )
    parser.add_argument("--discovery-port", type=int, default=defaults.discovery_port)
    parser.add_argument(
        "--broadcast-interval", type=float, default=defaults.broadcast_interval
    )
    parser.add_argument(
        "--log-level",
        choices=["critical", "error", "warning", "info", "debug"],
        default=defaults.log_level,
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit logs as JSON lines"
    )
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Build a ServerConfig from parsed arguments."""
    overrides = {}
    if args.static_dir is not None:
        overrides["static_dir"] = args.static_dir
    return ServerConfig(
        host=args.host,
        port=args.port,
        guider_mode=GuiderMode(args.mode),
        phd2_host=args.phd2_host,
        phd2_port=args.phd2_port,
        rpc_timeout=args.rpc_timeout,
        discovery_port=args.discovery_port,
        broadcast_interval=args.broadcast_interval,
        log_level=args.log_level,
        **overrides,
    )


def main(argv: list[str] | None = None) -> None:
    """Run the host until SIGINT or SIGTERM."""
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_format=args.json_logs)

    config = config_from_args(args)
    configure(config)

    lifecycle = ServerLifecycle(config)
    shutdown = threading.Event()

    def _request_shutdown(signum: int, frame: object) -> None:
        logger.info("Shutdown requested", signal=signal.Signals(signum).name)
        shutdown.set()

    signal.signal(signal.SIGINT, _request_shutdown)
    signal.signal(signal.SIGTERM, _request_shutdown)

    lifecycle.start()
    try:
        shutdown.wait()
    finally:
        lifecycle.stop()
    logger.info("Server stopped")


if __name__ == "__main__":
    main()
