"""Weather sync between a primary device and its companion watch.

The primary side runs a diff-triggered sync job that pushes changed weather
to the data-layer hub; the companion side applies those pushes and renders
the watch face.
"""

__version__ = "0.1.0"

from .config import ConfigLoadError, FaceStyle, LinkConfig, load_config
from .errors import (
    LinkClientError,
    LinkConnectError,
    LinkHandshakeError,
    LinkTimeout,
    LinkUnavailable,
    MalformedPayload,
    PayloadDecodeError,
    UnsupportedFormat,
)
from .protocol import (
    SUPPORTED_PROTOCOL_VERSIONS,
    Asset,
    ChangeType,
    DeliveryResult,
    PushEvent,
    decode_data_map,
    encode_data_map,
)
from .push import ImagePayload, InfoPayload, PushTransport
from .session import ChannelSession, SessionState

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "Asset",
    "ChangeType",
    "ChannelSession",
    "ConfigLoadError",
    "DeliveryResult",
    "FaceStyle",
    "ImagePayload",
    "InfoPayload",
    "LinkClientError",
    "LinkConfig",
    "LinkConnectError",
    "LinkHandshakeError",
    "LinkTimeout",
    "LinkUnavailable",
    "MalformedPayload",
    "PayloadDecodeError",
    "PushEvent",
    "PushTransport",
    "SessionState",
    "UnsupportedFormat",
    "__version__",
    "decode_data_map",
    "encode_data_map",
    "load_config",
]
