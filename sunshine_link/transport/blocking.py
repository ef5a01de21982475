"""Blocking one-shot channel used by the companion asset decode path.

The async ChannelSession is callback driven. Asset fetches instead run on an
isolated worker thread that may block, but only for a bounded time: the
connect is capped by ``timeout`` and every receive by ``recv_timeout``.
A failed ``open`` does not clean up after itself, so callers close the
channel in a ``finally`` block.
"""

from __future__ import annotations

import json
import logging

from websockets.exceptions import WebSocketException
from websockets.sync.client import ClientConnection

from ..errors import LinkClientError, LinkTimeout, LinkUnavailable
from ..protocol import build_get_asset
from .ws import connect_websocket_blocking

_LOGGER = logging.getLogger(__name__)

DEFAULT_BLOCKING_TIMEOUT = 10.0


class BlockingChannel:
    """Synchronous single-use connection to the hub."""

    def __init__(
        self,
        node_id: str,
        host: str,
        port: int,
        *,
        path: str = "/link",
        recv_timeout: float = 10.0,
    ) -> None:
        self.node_id = node_id
        self.host = host
        self.port = port
        self.path = path
        self._recv_timeout = recv_timeout
        self._ws: ClientConnection | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        """True while a connection is held."""
        return self._ws is not None

    def open(self, timeout: float = DEFAULT_BLOCKING_TIMEOUT) -> None:
        """Connect, blocking for at most ``timeout`` seconds.

        Raises:
            LinkTimeout: The hub did not accept the connection in time.
            LinkUnavailable: The hub is unreachable or rejected the handshake.
        """
        if self._closed:
            raise LinkUnavailable("Channel already closed")
        _LOGGER.debug(
            "[%s] Blocking connect to %s:%s (timeout %.1fs)",
            self.node_id,
            self.host,
            self.port,
            timeout,
        )
        self._ws = connect_websocket_blocking(
            self.host, self.port, path=self.path, timeout=timeout
        )

    def fetch_asset(self, digest: str) -> bytes | None:
        """Request one asset by digest.

        Returns:
            Asset bytes, or None when the hub does not know the digest.
        """
        if self._ws is None:
            raise LinkUnavailable("Channel is not open")
        try:
            self._ws.send(json.dumps(build_get_asset(node_id=self.node_id, digest=digest)))
            reply = self._ws.recv(timeout=self._recv_timeout)
        except TimeoutError as err:
            raise LinkTimeout("Asset fetch timed out") from err
        except WebSocketException as err:
            raise LinkUnavailable("Asset fetch failed") from err

        if isinstance(reply, bytes):
            return reply

        try:
            message = json.loads(reply)
        except json.JSONDecodeError as err:
            raise LinkClientError("Unexpected text reply to get_asset") from err
        if isinstance(message, dict) and message.get("type") == "asset_missing":
            _LOGGER.warning("[%s] Requested an unknown asset %s", self.node_id, digest)
            return None
        raise LinkClientError(f"Unexpected reply to get_asset: {message!r}")

    def close(self) -> None:
        """Close the connection. Safe to call repeatedly or before open."""
        self._closed = True
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            ws.close()
        except (OSError, WebSocketException) as err:
            _LOGGER.debug("[%s] Blocking channel close failed: %s", self.node_id, err)
