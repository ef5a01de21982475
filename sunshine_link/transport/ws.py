"""WebSocket helpers for the Sunshine Link data-layer hub."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)
from websockets.sync.client import ClientConnection as SyncClientConnection
from websockets.sync.client import connect as sync_connect

from ..errors import (
    LinkHandshakeError,
    LinkTimeout,
    LinkUnavailable,
)


def hub_url(host: str, port: int, path: str = "/link") -> str:
    """Return the hub WebSocket URL."""
    return f"ws://{host}:{port}{path}"


async def connect_websocket(
    host: str,
    port: int,
    *,
    path: str = "/link",
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to the hub WebSocket endpoint.

    Args:
        host: Hub host
        port: Hub port
        path: WebSocket path (default: /link)
        ping_interval: Interval for ping frames
        timeout: Connection timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                hub_url(host, port, path),
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise LinkTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise LinkHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise LinkUnavailable("WebSocket connection failed") from err


def connect_websocket_blocking(
    host: str,
    port: int,
    *,
    path: str = "/link",
    timeout: float = 10.0,
) -> SyncClientConnection:
    """Connect to the hub, blocking the calling thread for at most ``timeout``.

    The bound covers TCP connect and the opening handshake.
    """
    try:
        return sync_connect(
            hub_url(host, port, path),
            open_timeout=timeout,
            close_timeout=2,
            max_size=None,
        )
    except TimeoutError as err:
        raise LinkTimeout(f"Blocking connect timed out after {timeout:.1f}s") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise LinkHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise LinkUnavailable("WebSocket connection failed") from err
