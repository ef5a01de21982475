"""Push transport for weather payloads.

Each payload becomes exactly one put_data frame, so the hub either receives
the whole record or nothing. Sends are fire-and-forget: callers get a future
and observe it instead of awaiting it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .protocol import (
    KEY_HIGH,
    KEY_IMAGE,
    KEY_LOW,
    PATH_WEATHER_IMAGE,
    PATH_WEATHER_INFO,
    Asset,
    DeliveryResult,
    encode_data_map,
)
from .session import ChannelSession

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class InfoPayload:
    """Pre-formatted high/low temperature strings."""

    high_display: str
    low_display: str

    path = PATH_WEATHER_INFO

    def to_data_map(self) -> dict[str, str | Asset]:
        return {KEY_HIGH: self.high_display, KEY_LOW: self.low_display}


@dataclass(frozen=True)
class ImagePayload:
    """PNG-encoded condition icon."""

    image_bytes: bytes

    path = PATH_WEATHER_IMAGE

    def to_data_map(self) -> dict[str, str | Asset]:
        return {KEY_IMAGE: Asset.from_bytes(self.image_bytes)}


class PushTransport:
    """Send weather payloads over a connected ChannelSession."""

    def __init__(self, session: ChannelSession) -> None:
        self._session = session

    @property
    def session(self) -> ChannelSession:
        return self._session

    def send_info(
        self, payload: InfoPayload, *, urgent: bool = True
    ) -> asyncio.Future[DeliveryResult]:
        """Push the temperature record."""
        _LOGGER.info(
            "[%s] Pushing weather info high=%s low=%s",
            self._session.node_id,
            payload.high_display,
            payload.low_display,
        )
        return self._session.put_data_item(
            payload.path, encode_data_map(payload.to_data_map()), urgent=urgent
        )

    def send_image(
        self, payload: ImagePayload, *, urgent: bool = True
    ) -> asyncio.Future[DeliveryResult]:
        """Push the condition icon."""
        _LOGGER.info(
            "[%s] Pushing weather image (%d bytes)",
            self._session.node_id,
            len(payload.image_bytes),
        )
        return self._session.put_data_item(
            payload.path, encode_data_map(payload.to_data_map()), urgent=urgent
        )


def observe_delivery(
    future: asyncio.Future[DeliveryResult], label: str, *, node_id: str = ""
) -> None:
    """Log a push result once it resolves, without awaiting it."""

    def _done(fut: asyncio.Future[DeliveryResult]) -> None:
        if fut.cancelled():
            _LOGGER.debug("[%s] %s push cancelled", node_id, label)
            return
        result = fut.result()
        if result is DeliveryResult.SUCCESS:
            _LOGGER.debug("[%s] %s sent", node_id, label)
        else:
            _LOGGER.warning("[%s] Could not send %s: %s", node_id, label, result.value)

    future.add_done_callback(_done)
