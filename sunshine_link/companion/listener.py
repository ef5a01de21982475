"""Companion listener: applies inbound weather pushes to the display state.

Each path is handled on its own. A bad image push never blocks a
temperature push and pushes may arrive in any order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from PIL import Image

from ..errors import LinkClientError, MalformedPayload, PayloadDecodeError
from ..protocol import (
    KEY_HIGH,
    KEY_IMAGE,
    KEY_LOW,
    PATH_WEATHER_IMAGE,
    PATH_WEATHER_INFO,
    Asset,
    ChangeType,
    PushEvent,
    decode_data_map,
    normalize_path,
)
from .assets import decode_bitmap
from .display import DisplayStateHolder

_LOGGER = logging.getLogger(__name__)

AssetLoader = Callable[[Asset], Image.Image | None]


class CompanionListener:
    """Route data item changes to DisplayState and request redraws."""

    def __init__(
        self,
        display: DisplayStateHolder,
        asset_loader: AssetLoader,
        *,
        node_id: str = "companion",
    ) -> None:
        """Initialize listener.

        Args:
            display: Display state this listener owns for writing
            asset_loader: Blocking loader for assets sent by reference; it is
                always run on a worker thread
            node_id: Identifier used in log messages
        """
        self.node_id = node_id
        self._display = display
        self._asset_loader = asset_loader
        self._updated_callback: Callable[[], None] | None = None
        self._image_seq = 0
        self._loads: set[asyncio.Task[None]] = set()

    def on_updated(self, callback: Callable[[], None]) -> None:
        """Register the redraw request fired after every successful write."""
        self._updated_callback = callback

    def on_push(self, event: PushEvent) -> None:
        """Handle one inbound change event."""
        if event.change_type is ChangeType.DELETED:
            _LOGGER.debug("[%s] Ignoring deletion of %s", self.node_id, event.path)
            return

        path = normalize_path(event.path)
        try:
            if path == PATH_WEATHER_INFO:
                self._apply_info(event.payload)
            elif path == PATH_WEATHER_IMAGE:
                self._apply_image(event.payload)
            else:
                _LOGGER.debug("[%s] Ignoring unknown path %s", self.node_id, path)
        except PayloadDecodeError as err:
            _LOGGER.warning("[%s] Dropping %s push: %s", self.node_id, path, err)

    @property
    def pending_loads(self) -> int:
        """Asset fetches still in flight."""
        return len(self._loads)

    async def close(self) -> None:
        """Cancel asset fetches still in flight."""
        loads = list(self._loads)
        self._loads.clear()
        for task in loads:
            task.cancel()
        for task in loads:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _apply_info(self, payload: bytes) -> None:
        data = decode_data_map(payload)
        high, low = data.get(KEY_HIGH), data.get(KEY_LOW)
        if not isinstance(high, str) or not isinstance(low, str):
            raise MalformedPayload("weather-info needs string 'high' and 'low'")

        self._display.set_temperatures(high, low)
        _LOGGER.info("[%s] Weather info updated: %s / %s", self.node_id, high, low)
        self._notify_updated()

    def _apply_image(self, payload: bytes) -> None:
        data = decode_data_map(payload)
        asset = data.get(KEY_IMAGE)
        if not isinstance(asset, Asset):
            raise MalformedPayload("weather-image needs an 'image' asset")

        self._image_seq += 1
        seq = self._image_seq

        if asset.data is not None:
            self._set_icon(seq, decode_bitmap(asset.data))
            return

        task = asyncio.get_running_loop().create_task(self._load_remote(seq, asset))
        self._loads.add(task)
        task.add_done_callback(self._loads.discard)

    async def _load_remote(self, seq: int, asset: Asset) -> None:
        try:
            icon = await asyncio.to_thread(self._asset_loader, asset)
        except LinkClientError as err:
            _LOGGER.warning(
                "[%s] Could not load asset %s: %s", self.node_id, asset.digest, err
            )
            return
        if icon is not None:
            self._set_icon(seq, icon)

    def _set_icon(self, seq: int, icon: Image.Image) -> None:
        if seq != self._image_seq:
            _LOGGER.debug("[%s] Dropping superseded weather image", self.node_id)
            return
        self._display.set_icon(icon)
        _LOGGER.info("[%s] Weather image updated", self.node_id)
        self._notify_updated()

    def _notify_updated(self) -> None:
        if self._updated_callback is None:
            return
        try:
            self._updated_callback()
        except Exception as err:
            _LOGGER.exception("[%s] Redraw request failed: %s", self.node_id, err)
