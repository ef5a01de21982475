"""Protocol helpers for Sunshine Link data-layer frames.

This module defines the wire contract shared by the primary node and the
companion node: data item paths and keys, JSON envelopes exchanged with the
data-layer hub, and the data map codec carried inside ``put_data`` and
``data_changed`` frames.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import MalformedPayload

SUPPORTED_PROTOCOL_VERSIONS: tuple[int, ...] = (1,)

PATH_WEATHER_INFO = "/weather-info"
PATH_WEATHER_IMAGE = "/weather-image"

KEY_HIGH = "high"
KEY_LOW = "low"
KEY_IMAGE = "image"

_ASSET_MARKER = "$asset"


class ChangeType(Enum):
    """Kinds of data item change events delivered by the hub."""

    ADDED = "added"
    CHANGED = "changed"
    DELETED = "deleted"


class DeliveryResult(Enum):
    """Outcome of a single push."""

    SUCCESS = "success"
    NOT_CONNECTED = "not_connected"
    TRANSPORT_FAILURE = "transport_failure"


@dataclass(frozen=True)
class Asset:
    """Binary blob attached to a data item.

    Attributes:
        digest: Content digest ("sha256:<hex>") used to fetch the blob.
        data: Blob bytes when carried inline, None for a bare reference.
    """

    digest: str
    data: bytes | None = None

    @classmethod
    def from_bytes(cls, data: bytes) -> Asset:
        """Create an inline asset and compute its digest."""
        return cls(digest=f"sha256:{hashlib.sha256(data).hexdigest()}", data=data)


@dataclass(frozen=True)
class PushEvent:
    """Inbound data item change as handed to data listeners."""

    path: str
    payload: bytes
    change_type: ChangeType


def normalize_path(path: str) -> str:
    """Return the data item path with exactly one leading slash."""
    return "/" + path.lstrip("/")


def build_envelope(
    *,
    node_id: str,
    msg_type: str,
    body: dict[str, Any],
    msg_id: str | None = None,
    timestamp_ms: int | None = None,
) -> dict[str, Any]:
    """Build a canonical envelope for hub messages.

    Args:
        node_id: Identifier of the sending node.
        msg_type: Message type (e.g., "hello", "put_data").
        body: JSON-serializable body.
        msg_id: Optional caller-supplied identifier. Generated when omitted.
        timestamp_ms: Optional epoch milliseconds override.
    """
    return {
        "v": 1,
        "type": msg_type,
        "msg_id": msg_id or str(uuid.uuid4()),
        "node_id": node_id,
        "ts": timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        "body": body,
    }


def build_hello(*, node_id: str) -> dict[str, Any]:
    """Construct the hello frame opening a session."""
    return build_envelope(
        node_id=node_id,
        msg_type="hello",
        body={"protocol_versions": list(SUPPORTED_PROTOCOL_VERSIONS)},
    )


def build_put_data(
    *,
    node_id: str,
    path: str,
    payload: bytes,
    urgent: bool = False,
) -> dict[str, Any]:
    """Construct a put_data frame carrying one encoded data map."""
    return build_envelope(
        node_id=node_id,
        msg_type="put_data",
        body={
            "path": normalize_path(path),
            "urgent": urgent,
            "data": base64.b64encode(payload).decode("ascii"),
        },
    )


def build_get_asset(*, node_id: str, digest: str) -> dict[str, Any]:
    """Construct a get_asset frame for the one-shot asset channel."""
    return build_envelope(node_id=node_id, msg_type="get_asset", body={"digest": digest})


def parse_data_changed(message: dict[str, Any]) -> PushEvent:
    """Extract a PushEvent from a data_changed frame.

    Raises:
        ValueError: If path, change_type or data are missing or invalid.
    """
    body = message.get("body")
    if not isinstance(body, dict):
        raise ValueError("data_changed frame has no body")

    path = body.get("path")
    if not isinstance(path, str) or not path:
        raise ValueError("data_changed frame has no path")

    change_type = ChangeType(body.get("change_type", ChangeType.CHANGED.value))

    raw = body.get("data", "")
    if not isinstance(raw, str):
        raise ValueError("data_changed data must be base64 text")
    try:
        payload = base64.b64decode(raw, validate=True)
    except binascii.Error as err:
        raise ValueError("data_changed data is not valid base64") from err

    return PushEvent(path=normalize_path(path), payload=payload, change_type=change_type)


def encode_data_map(values: Mapping[str, str | Asset]) -> bytes:
    """Serialize a data map of strings and assets to bytes."""
    encoded: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, Asset):
            asset: dict[str, Any] = {"digest": value.digest}
            if value.data is not None:
                asset["data"] = base64.b64encode(value.data).decode("ascii")
            encoded[key] = {_ASSET_MARKER: asset}
        elif isinstance(value, str):
            encoded[key] = value
        else:
            raise TypeError(
                f"Data map value for {key!r} must be str or Asset, "
                f"got {type(value).__name__}"
            )
    return json.dumps(encoded, ensure_ascii=False, sort_keys=True).encode("utf-8")


def decode_data_map(payload: bytes) -> dict[str, str | Asset]:
    """Parse data map bytes produced by encode_data_map.

    Raises:
        MalformedPayload: If the bytes are not a JSON object of strings and
            asset records.
    """
    try:
        raw = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise MalformedPayload("Data map is not valid UTF-8 JSON") from err

    if not isinstance(raw, dict):
        raise MalformedPayload("Data map must be a JSON object")

    result: dict[str, str | Asset] = {}
    for key, value in raw.items():
        if isinstance(value, str):
            result[key] = value
        elif isinstance(value, dict) and _ASSET_MARKER in value:
            result[key] = _decode_asset(key, value[_ASSET_MARKER])
        else:
            raise MalformedPayload(f"Unsupported value for key {key!r}")
    return result


def _decode_asset(key: str, record: Any) -> Asset:
    if not isinstance(record, dict):
        raise MalformedPayload(f"Asset record for {key!r} must be an object")

    digest = record.get("digest")
    if not isinstance(digest, str) or not digest:
        raise MalformedPayload(f"Asset for {key!r} has no digest")

    data = record.get("data")
    if data is None:
        return Asset(digest=digest)
    if not isinstance(data, str):
        raise MalformedPayload(f"Asset data for {key!r} must be base64 text")
    try:
        return Asset(digest=digest, data=base64.b64decode(data, validate=True))
    except binascii.Error as err:
        raise MalformedPayload(f"Asset data for {key!r} is not valid base64") from err
