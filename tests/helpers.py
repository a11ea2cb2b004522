"""Test helpers for skyhost.

Provides scripted guider devices, fake encoders and fake sockets so the
pipeline, bridge and broadcaster can be tested without PHD2, OpenCV or
a network.

Example:
    from tests.helpers import ScriptedPhd2Guider

    guider = ScriptedPhd2Guider({"get_app_state": "Looping"})
    bridge = Phd2Bridge(lambda: guider)
"""

from __future__ import annotations

import base64
import json
import socket
import socketserver
import threading
from collections.abc import Callable
from typing import Any

import numpy as np

from skyhost.guider import Phd2Guider
from skyhost.imaging import encode_pixels

FAKE_PNG = b"\x89PNG\r\n\x1a\nfake"


class ScriptedPhd2Guider(Phd2Guider):
    """Phd2Guider whose calls are answered from a table.

    Each response is either a value returned as-is, an exception instance
    raised from the call, or a callable receiving ``params``.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        super().__init__(host="scripted", port=0)
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, Any]] = []

    async def call(self, method: str, params: Any = None) -> Any:
        self.calls.append((method, params))
        response = self.responses.get(method)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(params)
        return response


class FakeEncoder:
    """ImageEncoder returning fixed bytes and recording its inputs."""

    def __init__(self, result: bytes = FAKE_PNG) -> None:
        self.result = result
        self.images: list[np.ndarray] = []

    def encode_png(self, img: np.ndarray) -> bytes:
        self.images.append(img)
        return self.result


class FailingEncoder:
    """ImageEncoder that raises an unexpected error."""

    def encode_png(self, img: np.ndarray) -> bytes:
        raise RuntimeError("encoder exploded")


class FakeSocket:
    """Datagram socket stand-in recording every ``sendto``."""

    def __init__(self, sent: list[tuple[bytes, tuple[str, int]]]) -> None:
        self._sent = sent
        self.closed = False

    def __enter__(self) -> FakeSocket:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def sendto(self, payload: bytes, address: tuple[str, int]) -> int:
        self._sent.append((payload, address))
        return len(payload)

    def close(self) -> None:
        self.closed = True


def fake_socket_factory() -> tuple[Callable[[], FakeSocket], list]:
    """Return a socket factory and the shared list of sent datagrams."""
    sent: list[tuple[bytes, tuple[str, int]]] = []
    lock = threading.Lock()

    def factory() -> FakeSocket:
        with lock:
            return FakeSocket(sent)

    return factory, sent


def star_image_payload(pixels: np.ndarray, frame: int = 1) -> dict[str, Any]:
    """Build a ``get_star_image`` result for a 2-D uint16 array."""
    height, width = pixels.shape
    return {
        "frame": frame,
        "width": width,
        "height": height,
        "star_pos": [width / 2, height / 2],
        "pixels": base64.b64encode(encode_pixels(pixels.ravel())).decode("ascii"),
    }


class ThreadedPhd2Server:
    """Newline-JSON PHD2 stand-in on a real TCP port, served from a thread.

    Answers ``get_app_state`` with ``state`` and every other method with 0.
    Counts opened and closed client connections so tests can check that
    the server side saw a disconnect.

    Example:
        with ThreadedPhd2Server() as phd2:
            guider = Phd2Guider("127.0.0.1", phd2.port)
    """

    def __init__(self, state: str = "Guiding") -> None:
        self.state = state
        self.opened = 0
        self.closed = 0
        self._lock = threading.Lock()
        owner = self

        class Handler(socketserver.StreamRequestHandler):
            def handle(self) -> None:
                owner._count("opened")
                try:
                    self.wfile.write(b'{"Event": "Version"}\r\n')
                    for line in self.rfile:
                        request = json.loads(line)
                        result = (
                            owner.state
                            if request["method"] == "get_app_state"
                            else 0
                        )
                        reply = {"jsonrpc": "2.0", "result": result}
                        reply["id"] = request["id"]
                        self.wfile.write(json.dumps(reply).encode() + b"\r\n")
                except OSError:
                    pass
                finally:
                    owner._count("closed")

        self._server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), Handler)
        self._server.daemon_threads = True
        self._thread = threading.Thread(
            target=self._server.serve_forever, daemon=True, name="fake-phd2"
        )

    def _count(self, attribute: str) -> None:
        with self._lock:
            setattr(self, attribute, getattr(self, attribute) + 1)

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def __enter__(self) -> ThreadedPhd2Server:
        self._thread.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=2.0)


def free_tcp_port() -> int:
    """Return a TCP port on 127.0.0.1 that is free right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
