"""WebSocket client wrapper for the Sunshine Link hub."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import LinkClientError, LinkUnavailable
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class LinkWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    BINARY = "binary"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class LinkWsMessage:
    """Normalized WebSocket message payload."""

    type: LinkWsMessageType
    data: str | bytes | None = None


class LinkWsClient:
    """Wrapper around websockets library for the data-layer hub."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(
        self,
        host: str,
        port: int,
        *,
        path: str = "/link",
        ping_interval: int = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the hub websocket."""
        self._ws = await connect_websocket(
            host,
            port,
            path=path,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket."""
        if self._ws is None:
            raise LinkUnavailable("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload, ensure_ascii=False))
        except WebSocketException as err:
            raise LinkUnavailable("WebSocket send failed") from err

    def __aiter__(self) -> AsyncIterator[LinkWsMessage]:
        if self._ws is None:
            raise LinkUnavailable("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[LinkWsMessage]:
        if self._ws is None:
            raise LinkUnavailable("WebSocket is not connected")

        try:
            async for msg in self._ws:
                yield self._normalize_message(msg)
        except ConnectionClosed:
            yield LinkWsMessage(type=LinkWsMessageType.CLOSED)
        except Exception:
            yield LinkWsMessage(type=LinkWsMessageType.ERROR)
        else:
            # Normal iteration completion means the hub closed gracefully.
            yield LinkWsMessage(type=LinkWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> LinkWsMessage:
        """Normalize backend frames into LinkWsMessage."""
        if isinstance(msg, bytes):
            return LinkWsMessage(LinkWsMessageType.BINARY, msg)
        if isinstance(msg, str):
            return LinkWsMessage(LinkWsMessageType.TEXT, msg)
        return LinkWsMessage(LinkWsMessageType.TEXT, str(msg))

    @staticmethod
    def decode_json(message: LinkWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into JSON."""
        if message.type is not LinkWsMessageType.TEXT:
            raise LinkClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise LinkClientError("Message data is not a string")
        result = json.loads(message.data)
        if not isinstance(result, dict):
            raise LinkClientError("Message is not a JSON object")
        return result
