"""Pytest configuration and fixtures for sunshine_link tests."""

from __future__ import annotations

import asyncio
import io
import json
from typing import Any

import pytest
from PIL import Image

from sunshine_link.config import FaceStyle
from sunshine_link.domains.weather import WeatherSnapshot
from sunshine_link.transport.ws_client import (
    LinkWsClient,
    LinkWsMessage,
    LinkWsMessageType,
)


class FakeLinkWs:
    """Stand-in for LinkWsClient that plays the hub side of the protocol.

    Args:
        answer_hello: Reply type for hello ("hello_ok", "hello_invalid"), or
            None to leave the hello unanswered
        ack_puts: put_data_result success flag, or None to never acknowledge
        connect_error: Raised from connect() when set
    """

    def __init__(
        self,
        *,
        answer_hello: str | None = "hello_ok",
        ack_puts: bool | None = True,
        connect_error: Exception | None = None,
    ) -> None:
        self.answer_hello = answer_hello
        self.ack_puts = ack_puts
        self.connect_error = connect_error
        self.send_error: Exception | None = None
        self.connect_args: tuple[Any, ...] | None = None
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[LinkWsMessage] = asyncio.Queue()

    async def connect(self, host: str, port: int, **kwargs: Any) -> None:
        self.connect_args = (host, port, kwargs)
        if self.connect_error is not None:
            raise self.connect_error

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)

        if payload["type"] == "hello" and self.answer_hello:
            self.push({"type": self.answer_hello, "body": {"message": "bad node"}})
        elif payload["type"] == "put_data" and self.ack_puts is not None:
            self.push(
                {
                    "type": "put_data_result",
                    "body": {"msg_id": payload["msg_id"], "success": self.ack_puts},
                }
            )

    def push(self, message: dict[str, Any]) -> None:
        """Queue a JSON frame as if the hub had sent it."""
        self._inbox.put_nowait(LinkWsMessage(LinkWsMessageType.TEXT, json.dumps(message)))

    def hang_up(self) -> None:
        """Simulate the hub closing the socket."""
        self._inbox.put_nowait(LinkWsMessage(LinkWsMessageType.CLOSED))

    def sent_of_type(self, msg_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame["type"] == msg_type]

    async def close(self) -> None:
        self.closed = True

    decode_json = staticmethod(LinkWsClient.decode_json)

    def __aiter__(self) -> Any:
        return self._iter()

    async def _iter(self) -> Any:
        while True:
            yield await self._inbox.get()


def png_bytes(
    color: tuple[int, int, int, int] = (255, 0, 0, 255), size: int = 8
) -> bytes:
    """Encode a solid RGBA square as PNG."""
    buffer = io.BytesIO()
    Image.new("RGBA", (size, size), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeWeatherStore:
    """Weather store holding one mutable snapshot."""

    def __init__(self, snapshot: WeatherSnapshot = WeatherSnapshot.UNKNOWN) -> None:
        self.snapshot = snapshot
        self.queries = 0

    def query_latest_snapshot(self) -> WeatherSnapshot:
        self.queries += 1
        return self.snapshot


class StaticIconResolver:
    """Icon resolver that returns a solid square and records lookups."""

    def __init__(self) -> None:
        self.resolved: list[int] = []

    def resolve(self, condition_id: int) -> Image.Image:
        self.resolved.append(condition_id)
        return Image.new("RGBA", (8, 8), (0, 128, 255, 255))


@pytest.fixture
def fake_ws() -> FakeLinkWs:
    """Create a fake hub connection that accepts hello and acks puts."""
    return FakeLinkWs()


@pytest.fixture
def face_style() -> FaceStyle:
    """Small face style that keeps renders fast."""
    return FaceStyle(width=120, height=120, icon_size=16, time_y_offset=30, content_y_offset=40)
