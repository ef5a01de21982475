"""Client error types for Sunshine Link node interactions."""

from __future__ import annotations


class LinkClientError(Exception):
    """Base error for Sunshine Link client failures."""


class LinkConnectError(LinkClientError):
    """A channel session to the data-layer hub could not be established."""


class LinkUnavailable(LinkConnectError):
    """The hub or the paired peer is unreachable."""


class LinkHandshakeError(LinkUnavailable):
    """WebSocket or hello handshake was rejected."""


class LinkTimeout(LinkConnectError):
    """Timeout while connecting to the hub."""


class PayloadDecodeError(LinkClientError):
    """An inbound push could not be decoded."""


class MalformedPayload(PayloadDecodeError):
    """Payload bytes are not a valid data map for their path."""


class UnsupportedFormat(PayloadDecodeError):
    """Payload decoded but its bitmap format is not readable."""
