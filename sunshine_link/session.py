"""Channel session to the Sunshine Link data-layer hub.

This module owns the lifecycle of one logical connection between a node and
the hub. It handles:
- Connection state machine (disconnected, connecting, connected, failed)
- Hello handshake ("await-ready")
- Named callback slots for connection and data events
- put_data delivery tracking by msg_id
- Deterministic teardown

A session is never retried here: the owner decides whether to open it again
on its next cycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import LinkConfig
from .errors import (
    LinkClientError,
    LinkConnectError,
    LinkHandshakeError,
    LinkTimeout,
    LinkUnavailable,
)
from .protocol import (
    DeliveryResult,
    PushEvent,
    build_hello,
    build_put_data,
    parse_data_changed,
)
from .transport.ws_client import LinkWsClient, LinkWsMessageType

_LOGGER = logging.getLogger(__name__)

MAX_PENDING_DELIVERIES = 32


class SessionState(Enum):
    """Connection states of a ChannelSession."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(slots=True)
class _PendingDelivery:
    """Track an outstanding put_data acknowledgement."""

    path: str
    future: asyncio.Future[DeliveryResult]
    sent_at: float
    expiry: asyncio.TimerHandle | None = None


class ChannelSession:
    """Session manager for one node's connection to the hub.

    Usage:
        session = ChannelSession(node_id="watch", host="127.0.0.1", port=8765)
        session.on_connected(my_connected_handler)
        session.on_connection_failed(my_failure_handler)
        session.add_data_listener(listener.on_push)
        session.open()
        ...
        future = session.put_data_item("/weather-info", payload, urgent=True)
        await session.close()
    """

    def __init__(
        self,
        node_id: str,
        host: str,
        port: int,
        *,
        path: str = "/link",
        connect_timeout: float = 15.0,
        delivery_timeout: float = 30.0,
        ping_interval: int = 20,
    ):
        """Initialize session.

        Args:
            node_id: Identifier of this node
            host: Hub hostname or IP
            port: Hub port
            path: Hub WebSocket path
            connect_timeout: Budget for socket connect and hello round trip (seconds)
            delivery_timeout: How long a push waits for its result (seconds)
            ping_interval: Keepalive ping interval (seconds)
        """
        self.node_id = node_id
        self.host = host
        self.port = port
        self.path = path

        self._connect_timeout = connect_timeout
        self._delivery_timeout = delivery_timeout
        self._ping_interval = ping_interval

        # Connection state
        self._ws: LinkWsClient | None = None
        self._state = SessionState.DISCONNECTED
        self._connect_task: asyncio.Task[bool] | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None

        # Delivery tracking
        self._pending: dict[str, _PendingDelivery] = {}
        self._send_tasks: set[asyncio.Task[None]] = set()

        # Callbacks
        self._connected_callback: Callable[[], None] | None = None
        self._disconnected_callback: Callable[[], None] | None = None
        self._failed_callback: Callable[[LinkConnectError], None] | None = None
        self._state_callback: Callable[[SessionState], None] | None = None
        self._data_listeners: list[Callable[[PushEvent], None]] = []

    @classmethod
    def from_config(cls, config: LinkConfig) -> ChannelSession:
        """Create a session for the node, hub and timings in ``config``."""
        return cls(
            config.node_id,
            config.hub.host,
            config.hub.port,
            path=config.hub.path,
            connect_timeout=config.session.connect_timeout,
            delivery_timeout=config.session.delivery_timeout,
            ping_interval=config.session.ping_interval,
        )

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """Start connecting in the background.

        Returns immediately; the outcome is reported through the connected
        or connection-failed callbacks. Must be called from a running loop.
        """
        if self.is_connected or self._connect_in_flight:
            return
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())

    async def connect(self) -> bool:
        """Connect and wait until the hub acknowledges the hello.

        Joins an attempt already started by open().

        Returns:
            True if the session is connected, False otherwise
        """
        if self.is_connected:
            return True
        task = self._connect_task
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._connect())
            self._connect_task = task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                # Session closed while connecting
                return False
            raise

    async def close(self) -> None:
        """Close the session. Idempotent and safe on a never-opened session."""
        if (
            self._state is SessionState.DISCONNECTED
            and self._ws is None
            and self._connect_task is None
            and self._listen_task is None
        ):
            return

        _LOGGER.info("[%s] Closing session", self.node_id)
        was_connected = self.is_connected
        ws, self._ws = self._ws, None

        current = asyncio.current_task()
        for task in (self._connect_task, self._listen_task, *self._send_tasks):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._connect_task = None
        self._listen_task = None
        self._send_tasks.clear()

        if self._ready is not None and not self._ready.done():
            self._ready.cancel()
        self._ready = None

        self._settle_all(DeliveryResult.TRANSPORT_FAILURE)

        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.node_id)

        self._set_state(SessionState.DISCONNECTED)
        if was_connected:
            self._notify(self._disconnected_callback)

    @property
    def is_connected(self) -> bool:
        """Check if the hub acknowledged this session."""
        return self._state is SessionState.CONNECTED

    @property
    def state(self) -> SessionState:
        """Get current connection state."""
        return self._state

    @property
    def pending_deliveries(self) -> int:
        """Number of pushes still waiting for a result."""
        return len(self._pending)

    @property
    def _connect_in_flight(self) -> bool:
        return self._connect_task is not None and not self._connect_task.done()

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_connected(self, callback: Callable[[], None]) -> None:
        """Register callback fired once the hub acknowledges the hello."""
        self._connected_callback = callback

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        """Register callback fired when a connected session ends."""
        self._disconnected_callback = callback

    def on_connection_failed(self, callback: Callable[[LinkConnectError], None]) -> None:
        """Register callback for connect failures.

        Callback receives LinkTimeout, LinkUnavailable or LinkHandshakeError.
        """
        self._failed_callback = callback

    def on_state_changed(self, callback: Callable[[SessionState], None]) -> None:
        """Register callback for every state transition."""
        self._state_callback = callback

    def add_data_listener(self, listener: Callable[[PushEvent], None]) -> None:
        """Register a listener for inbound data item changes."""
        if listener not in self._data_listeners:
            self._data_listeners.append(listener)

    def remove_data_listener(self, listener: Callable[[PushEvent], None]) -> None:
        """Unregister a data listener. Unknown listeners are ignored."""
        with contextlib.suppress(ValueError):
            self._data_listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Public API: Data Items
    # -------------------------------------------------------------------------

    def put_data_item(
        self, path: str, payload: bytes, *, urgent: bool = False
    ) -> asyncio.Future[DeliveryResult]:
        """Send one data item without waiting for delivery.

        Args:
            path: Data item path (e.g., "/weather-info")
            payload: Encoded data map
            urgent: Ask the hub for expedited delivery (advisory)

        Returns:
            Future resolving to the DeliveryResult. Already resolved with
            NOT_CONNECTED when the session is not connected.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[DeliveryResult] = loop.create_future()

        ws = self._ws
        if not self.is_connected or ws is None:
            _LOGGER.debug("[%s] Put %s skipped: not connected", self.node_id, path)
            future.set_result(DeliveryResult.NOT_CONNECTED)
            return future

        if len(self._pending) >= MAX_PENDING_DELIVERIES:
            _LOGGER.warning(
                "[%s] Put %s blocked: %d pending deliveries",
                self.node_id,
                path,
                len(self._pending),
            )
            future.set_result(DeliveryResult.TRANSPORT_FAILURE)
            return future

        frame = build_put_data(
            node_id=self.node_id, path=path, payload=payload, urgent=urgent
        )
        msg_id: str = frame["msg_id"]
        pending = _PendingDelivery(
            path=frame["body"]["path"], future=future, sent_at=time.time()
        )
        pending.expiry = loop.call_later(
            self._delivery_timeout, self._expire_delivery, msg_id
        )
        self._pending[msg_id] = pending

        task = loop.create_task(self._send_put(ws, msg_id, frame))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)
        return future

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    async def _connect(self) -> bool:
        """Open the socket, send hello and wait for the hub's answer."""
        self._set_state(SessionState.CONNECTING)
        _LOGGER.info(
            "[%s] Connecting to ws://%s:%s%s",
            self.node_id,
            self.host,
            self.port,
            self.path,
        )

        ws = LinkWsClient()
        try:
            await ws.connect(
                self.host,
                self.port,
                path=self.path,
                ping_interval=self._ping_interval,
                timeout=self._connect_timeout,
            )
        except LinkConnectError as err:
            self._fail(err)
            return False

        loop = asyncio.get_running_loop()
        self._ws = ws
        ready: asyncio.Future[None] = loop.create_future()
        self._ready = ready
        self._listen_task = loop.create_task(self._listen(ws))

        failure: LinkConnectError
        try:
            await ws.send_json(build_hello(node_id=self.node_id))
            await asyncio.wait_for(asyncio.shield(ready), timeout=self._connect_timeout)
        except TimeoutError:
            failure = LinkTimeout("Hub did not answer hello in time")
        except LinkConnectError as err:
            failure = err
        else:
            return True

        await self._drop_connection(ws)
        self._fail(failure)
        return False

    def _set_state(self, state: SessionState) -> None:
        """Update connection state and notify callback."""
        if self._state is not state:
            _LOGGER.debug(
                "[%s] State: %s → %s", self.node_id, self._state.value, state.value
            )
            self._state = state
            self._notify(self._state_callback, state)

    def _fail(self, err: LinkConnectError) -> None:
        _LOGGER.warning("[%s] Connection failed: %s", self.node_id, err)
        self._set_state(SessionState.FAILED)
        self._notify(self._failed_callback, err)

    async def _drop_connection(self, ws: LinkWsClient) -> None:
        """Release a socket that never reached the connected state."""
        if self._ws is ws:
            self._ws = None
        listen_task, self._listen_task = self._listen_task, None
        if listen_task is not None and listen_task is not asyncio.current_task():
            listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listen_task
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()
        self._ready = None
        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self.node_id)

    async def _handle_connection_lost(self, ws: LinkWsClient) -> None:
        """Hub side ended the socket: settle pending work and report."""
        was_connected = self.is_connected
        self._ws = None
        self._listen_task = None
        self._settle_all(DeliveryResult.TRANSPORT_FAILURE)

        ready = self._ready
        if ready is not None and not ready.done():
            # Still connecting; _connect reports the failure.
            ready.set_exception(LinkUnavailable("Hub closed the connection"))
            return

        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self.node_id)

        if was_connected:
            self._set_state(SessionState.DISCONNECTED)
            self._notify(self._disconnected_callback)

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws: LinkWsClient) -> None:
        """Listen for frames from the hub."""
        message_count = 0
        try:
            async for msg in ws:
                message_count += 1

                if msg.type is LinkWsMessageType.TEXT:
                    try:
                        self._handle_message(ws.decode_json(msg))
                    except (ValueError, KeyError, LinkClientError) as err:
                        _LOGGER.warning("[%s] Invalid message: %s", self.node_id, err)

                elif msg.type is LinkWsMessageType.BINARY:
                    _LOGGER.debug("[%s] Ignoring binary frame", self.node_id)

                elif msg.type is LinkWsMessageType.CLOSED:
                    _LOGGER.info("[%s] WebSocket closed by hub", self.node_id)
                    break

                elif msg.type is LinkWsMessageType.ERROR:
                    _LOGGER.error("[%s] WebSocket error", self.node_id)
                    break

        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self.node_id, message_count
            )
            raise
        except LinkClientError as err:
            _LOGGER.warning("[%s] Client error: %s", self.node_id, err)
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self.node_id, err)

        if self._ws is ws:
            await self._handle_connection_lost(ws)

    def _handle_message(self, data: dict[str, Any]) -> None:
        msg_type = data.get("type")

        if msg_type == "hello_ok":
            self._handle_hello_ok()
        elif msg_type == "hello_invalid":
            self._handle_hello_invalid(data)
        elif msg_type == "put_data_result":
            self._handle_put_data_result(data)
        elif msg_type == "data_changed":
            self._handle_data_changed(data)
        else:
            _LOGGER.debug("[%s] Unknown message type: %s", self.node_id, msg_type)

    # -------------------------------------------------------------------------
    # Internal: Protocol Handlers
    # -------------------------------------------------------------------------

    def _handle_hello_ok(self) -> None:
        ready = self._ready
        if ready is None or ready.done():
            return
        ready.set_result(None)
        self._set_state(SessionState.CONNECTED)
        _LOGGER.info("[%s] Connected", self.node_id)
        self._notify(self._connected_callback)

    def _handle_hello_invalid(self, data: dict[str, Any]) -> None:
        message = data.get("body", {}).get("message", "rejected")
        _LOGGER.error("[%s] Hello rejected: %s", self.node_id, message)
        ready = self._ready
        if ready is not None and not ready.done():
            ready.set_exception(LinkHandshakeError(f"Hello rejected: {message}"))

    def _handle_put_data_result(self, data: dict[str, Any]) -> None:
        body = data.get("body", {})
        msg_id = body.get("msg_id")
        pending = self._pending.get(msg_id) if msg_id else None
        if pending is None:
            return

        latency = time.time() - pending.sent_at
        if body.get("success"):
            _LOGGER.debug(
                "[%s] Put %s delivered (%.2fs)", self.node_id, pending.path, latency
            )
            self._settle(msg_id, DeliveryResult.SUCCESS)
        else:
            _LOGGER.warning(
                "[%s] Put %s failed: %s",
                self.node_id,
                pending.path,
                body.get("message", "no reason given"),
            )
            self._settle(msg_id, DeliveryResult.TRANSPORT_FAILURE)

    def _handle_data_changed(self, data: dict[str, Any]) -> None:
        event = parse_data_changed(data)
        for listener in list(self._data_listeners):
            try:
                listener(event)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Data listener error for %s: %s", self.node_id, event.path, err
                )

    # -------------------------------------------------------------------------
    # Internal: Delivery Tracking
    # -------------------------------------------------------------------------

    async def _send_put(
        self, ws: LinkWsClient, msg_id: str, frame: dict[str, Any]
    ) -> None:
        try:
            await ws.send_json(frame)
        except LinkClientError as err:
            _LOGGER.warning("[%s] Failed to send put_data: %s", self.node_id, err)
            self._settle(msg_id, DeliveryResult.TRANSPORT_FAILURE)
        else:
            _LOGGER.debug(
                "[%s] Put %s sent (urgent=%s)",
                self.node_id,
                frame["body"]["path"],
                frame["body"]["urgent"],
            )

    def _expire_delivery(self, msg_id: str) -> None:
        pending = self._pending.get(msg_id)
        if pending is None:
            return
        _LOGGER.warning(
            "[%s] Put %s unacknowledged after %.0fs",
            self.node_id,
            pending.path,
            self._delivery_timeout,
        )
        self._settle(msg_id, DeliveryResult.TRANSPORT_FAILURE)

    def _settle(self, msg_id: str, result: DeliveryResult) -> None:
        pending = self._pending.pop(msg_id, None)
        if pending is None:
            return
        if pending.expiry is not None:
            pending.expiry.cancel()
        if not pending.future.done():
            pending.future.set_result(result)

    def _settle_all(self, result: DeliveryResult) -> None:
        for msg_id in list(self._pending):
            self._settle(msg_id, result)

    def _notify(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as err:
            _LOGGER.exception("[%s] Session callback error: %s", self.node_id, err)
