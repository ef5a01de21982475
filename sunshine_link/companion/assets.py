"""Bitmap decoding for weather image assets."""

from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError

from ..errors import MalformedPayload, UnsupportedFormat
from ..protocol import Asset
from ..transport.blocking import DEFAULT_BLOCKING_TIMEOUT, BlockingChannel

_LOGGER = logging.getLogger(__name__)


def decode_bitmap(data: bytes) -> Image.Image:
    """Decode PNG (or any Pillow-readable) bytes into a loaded bitmap.

    Raises:
        UnsupportedFormat: If Pillow cannot read the bytes.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            return image.copy()
    except (UnidentifiedImageError, OSError, ValueError) as err:
        raise UnsupportedFormat(f"Cannot decode bitmap: {err}") from err


def load_bitmap_from_asset(
    asset: Asset,
    host: str,
    port: int,
    *,
    node_id: str,
    path: str = "/link",
    timeout: float = DEFAULT_BLOCKING_TIMEOUT,
) -> Image.Image | None:
    """Fetch an asset over a one-shot blocking channel and decode it.

    Blocks the calling thread; run it on a worker thread. The connect is
    bounded by ``timeout``.

    Returns:
        The bitmap, or None when the hub does not know the asset.

    Raises:
        LinkTimeout: The hub did not accept the connection within ``timeout``.
        LinkUnavailable: The hub is unreachable.
        UnsupportedFormat: The asset bytes are not a readable bitmap.
    """
    if asset.data is not None:
        return decode_bitmap(asset.data)
    if not asset.digest:
        raise MalformedPayload("Asset must carry a digest")

    channel = BlockingChannel(node_id, host, port, path=path)
    try:
        channel.open(timeout=timeout)
        data = channel.fetch_asset(asset.digest)
    finally:
        channel.close()

    if data is None:
        return None
    _LOGGER.debug("[%s] Fetched asset %s (%d bytes)", node_id, asset.digest, len(data))
    return decode_bitmap(data)
