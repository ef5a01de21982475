"""Transport layer for Sunshine Link.

This package contains all IO and WebSocket handling.

Components:
- ws: async and blocking connect helpers
- ws_client: WebSocket message iteration
- blocking: one-shot synchronous channel for asset fetches
"""

from .blocking import DEFAULT_BLOCKING_TIMEOUT, BlockingChannel
from .ws import connect_websocket, connect_websocket_blocking, hub_url
from .ws_client import LinkWsClient, LinkWsMessage, LinkWsMessageType

__all__ = [
    "DEFAULT_BLOCKING_TIMEOUT",
    "BlockingChannel",
    "LinkWsClient",
    "LinkWsMessage",
    "LinkWsMessageType",
    "connect_websocket",
    "connect_websocket_blocking",
    "hub_url",
]
