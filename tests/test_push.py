"""Tests for weather payloads and the push transport."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from sunshine_link.protocol import Asset, DeliveryResult, decode_data_map
from sunshine_link.push import ImagePayload, InfoPayload, PushTransport, observe_delivery


def _resolved(loop: asyncio.AbstractEventLoop, result: DeliveryResult) -> asyncio.Future:
    future = loop.create_future()
    future.set_result(result)
    return future


class TestPayloads:
    """Tests for InfoPayload and ImagePayload."""

    def test_info_payload(self):
        """Test the info payload maps to the high/low keys."""
        payload = InfoPayload(high_display="25°", low_display="18°")
        assert payload.path == "/weather-info"
        assert payload.to_data_map() == {"high": "25°", "low": "18°"}

    def test_image_payload(self):
        """Test the image payload carries the PNG as an inline asset."""
        payload = ImagePayload(image_bytes=b"\x89PNG")
        assert payload.path == "/weather-image"
        asset = payload.to_data_map()["image"]
        assert isinstance(asset, Asset)
        assert asset.data == b"\x89PNG"


class TestPushTransport:
    """Tests for PushTransport sends."""

    @pytest.mark.asyncio
    async def test_send_info(self):
        """Test send_info issues one put for the info path."""
        loop = asyncio.get_running_loop()
        session = MagicMock(node_id="phone")
        session.put_data_item.return_value = _resolved(loop, DeliveryResult.SUCCESS)

        future = PushTransport(session).send_info(InfoPayload("25°", "18°"), urgent=False)

        assert await future is DeliveryResult.SUCCESS
        path, data = session.put_data_item.call_args.args
        assert path == "/weather-info"
        assert decode_data_map(data) == {"high": "25°", "low": "18°"}
        assert session.put_data_item.call_args.kwargs == {"urgent": False}

    @pytest.mark.asyncio
    async def test_send_image(self):
        """Test send_image issues one urgent put for the image path."""
        loop = asyncio.get_running_loop()
        session = MagicMock(node_id="phone")
        session.put_data_item.return_value = _resolved(loop, DeliveryResult.NOT_CONNECTED)

        future = PushTransport(session).send_image(ImagePayload(b"png"))

        assert await future is DeliveryResult.NOT_CONNECTED
        path, data = session.put_data_item.call_args.args
        assert path == "/weather-image"
        assert decode_data_map(data)["image"] == Asset.from_bytes(b"png")
        assert session.put_data_item.call_args.kwargs == {"urgent": True}


class TestObserveDelivery:
    """Tests for observe_delivery logging."""

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, caplog):
        """Test a failed delivery logs a warning naming the payload."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        with caplog.at_level(logging.DEBUG, logger="sunshine_link.push"):
            observe_delivery(future, "weather info", node_id="phone")
            future.set_result(DeliveryResult.NOT_CONNECTED)
            await asyncio.sleep(0)

        assert "Could not send weather info: not_connected" in caplog.text

    @pytest.mark.asyncio
    async def test_success_is_quiet(self, caplog):
        """Test a successful delivery logs no warning."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        with caplog.at_level(logging.WARNING, logger="sunshine_link.push"):
            observe_delivery(future, "weather image")
            future.set_result(DeliveryResult.SUCCESS)
            await asyncio.sleep(0)

        assert caplog.text == ""
