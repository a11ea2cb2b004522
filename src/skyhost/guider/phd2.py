"""PHD2 JSON-RPC client.

PHD2 exposes an event server on TCP port 4400 (4401, 4402, ... for
additional instances). Messages are newline-delimited JSON objects:

    -> {"method": "get_app_state", "id": 1}
    <- {"Event": "Version", "PHDVersion": "2.6.13", ...}     (event)
    <- {"jsonrpc": "2.0", "result": "Guiding", "id": 1}     (response)

Events are broadcast to every client at any time, so responses are found
by matching ``id`` and everything else on the stream is skipped.

Thread Safety:
    Not thread-safe. A connection belongs to the event loop that opened
    it; the first call from a different loop (a restarted listener) drops
    it and reconnects. Concurrent coroutines are serialized by an
    asyncio.Lock, one request in flight per connection.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any

from skyhost.exceptions import GuiderNotConnectedError, GuiderProtocolError
from skyhost.guider.types import GuiderDevice
from skyhost.observability import get_logger

logger = get_logger(__name__)

__all__ = ["Phd2Guider"]

DEFAULT_CONNECT_TIMEOUT_S = 5.0

# Star images and events can be long single lines
_STREAM_LIMIT = 64 * 1024 * 1024


class Phd2Guider(GuiderDevice):
    """Guider backed by a PHD2 instance.

    The TCP connection is opened on the first call and dropped on any
    transport failure; the next call reconnects.

    Example:
        >>> guider = Phd2Guider("localhost", 4400)
        >>> await guider.call("get_app_state")
        'Looping'
        >>> await guider.call("set_exposure", [2000])
        0
    """

    name = "PHD2"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 4400,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_S,
    ) -> None:
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._lock: asyncio.Lock | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"Phd2Guider(host={self.host!r}, port={self.port})"

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """Open the TCP connection if it is not open yet.

        Raises:
            GuiderNotConnectedError: If PHD2 is not reachable.
        """
        if self.connected:
            return
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=_STREAM_LIMIT),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "PHD2 unreachable", host=self.host, port=self.port, error=str(e)
            )
            raise GuiderNotConnectedError(self.name) from e
        logger.info("Connected to PHD2", host=self.host, port=self.port)

    async def disconnect(self) -> None:
        """Close the connection. Safe to call when not connected."""
        self._bind_loop()
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Error closing PHD2 connection", error=str(e))

    def _bind_loop(self) -> asyncio.Lock:
        """Return the call lock for the running loop.

        Streams and locks cannot cross event loops. When the loop changes
        the old connection is abandoned without awaiting its close, since
        its loop is no longer running.
        """
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._lock is None:
            if self._writer is not None:
                logger.info(
                    "Dropping PHD2 connection from a previous event loop",
                    host=self.host,
                    port=self.port,
                )
                transport = self._writer.transport
                self._writer = self._reader = None
                try:
                    transport.abort()
                except RuntimeError as e:
                    logger.debug("Stale PHD2 transport not aborted", error=str(e))
            self._loop = loop
            self._lock = asyncio.Lock()
        return self._lock

    async def call(self, method: str, params: Any = None) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Args:
            method: PHD2 method name, e.g. ``"get_star_image"``.
            params: Positional list or named dict, omitted when None.

        Returns:
            The ``result`` member of the response.

        Raises:
            GuiderNotConnectedError: If PHD2 is unreachable or the
                connection drops mid-call.
            GuiderProtocolError: If PHD2 answers with an ``error`` member
                or sends unparseable data.
        """
        async with self._bind_loop():
            await self.connect()
            assert self._reader is not None and self._writer is not None

            request_id = next(self._ids)
            request: dict[str, Any] = {"method": method, "id": request_id}
            if params is not None:
                request["params"] = params

            try:
                self._writer.write(json.dumps(request).encode() + b"\r\n")
                await self._writer.drain()
                response = await self._read_response(request_id)
            except (OSError, asyncio.IncompleteReadError, ConnectionError) as e:
                await self.disconnect()
                raise GuiderNotConnectedError(self.name) from e

        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise GuiderProtocolError(
                    str(error.get("message", "Unknown PHD2 error")),
                    code=error.get("code"),
                )
            raise GuiderProtocolError(str(error))
        return response.get("result")

    async def _read_response(self, request_id: int) -> dict[str, Any]:
        """Read lines until the response for ``request_id`` arrives."""
        assert self._reader is not None
        while True:
            line = await self._reader.readline()
            if not line:
                raise ConnectionError("PHD2 closed the connection")
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                raise GuiderProtocolError(f"Invalid JSON from PHD2: {e}") from e

            if not isinstance(message, dict) or "Event" in message:
                continue
            if message.get("id") != request_id:
                # Late answer to a request that timed out earlier
                logger.debug("Skipping stale PHD2 response", id=message.get("id"))
                continue
            return message
