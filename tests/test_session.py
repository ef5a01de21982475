"""Test ChannelSession connection and delivery handling."""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import MagicMock, patch

import pytest

from sunshine_link import ChannelSession, DeliveryResult, SessionState
from sunshine_link.config import parse_config
from sunshine_link.errors import LinkHandshakeError, LinkTimeout, LinkUnavailable
from sunshine_link.protocol import ChangeType
from sunshine_link.session import MAX_PENDING_DELIVERIES

from .conftest import FakeLinkWs

_WS_CLIENT = "sunshine_link.session.LinkWsClient"


def make_session(**kwargs) -> ChannelSession:
    return ChannelSession(node_id="phone", host="127.0.0.1", port=8765, **kwargs)


@pytest.mark.asyncio
async def test_session_creation():
    """Test ChannelSession can be created."""
    session = make_session()

    assert session.node_id == "phone"
    assert session.host == "127.0.0.1"
    assert session.port == 8765
    assert session.path == "/link"
    assert session.state is SessionState.DISCONNECTED
    assert not session.is_connected


def test_session_from_config():
    """Test sessions pick up hub address and timings from config."""
    config = parse_config(
        {
            "node_id": "watch",
            "hub": {"host": "10.0.0.2", "port": 9000, "path": "/dl"},
            "session": {"connect_timeout": 3.0},
        }
    )

    session = ChannelSession.from_config(config)

    assert session.node_id == "watch"
    assert (session.host, session.port, session.path) == ("10.0.0.2", 9000, "/dl")
    assert session._connect_timeout == 3.0


class TestConnect:
    """Tests for the hello handshake."""

    @pytest.mark.asyncio
    async def test_connect_success(self, fake_ws: FakeLinkWs):
        """Test connect resolves after hello_ok."""
        connected = MagicMock()
        states: list[SessionState] = []

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            session.on_connected(connected)
            session.on_state_changed(states.append)

            assert await session.connect() is True
            await session.close()

        assert connected.call_count == 1
        assert states[:2] == [SessionState.CONNECTING, SessionState.CONNECTED]
        hello = fake_ws.sent_of_type("hello")[0]
        assert hello["node_id"] == "phone"
        assert hello["body"] == {"protocol_versions": [1]}
        assert fake_ws.connect_args == (
            "127.0.0.1",
            8765,
            {"path": "/link", "ping_interval": 20, "timeout": 15.0},
        )

    @pytest.mark.asyncio
    async def test_open_then_connect_joins_attempt(self, fake_ws: FakeLinkWs):
        """Test connect() joins the attempt started by open()."""
        with patch(_WS_CLIENT, return_value=fake_ws) as ws_cls:
            session = make_session()
            session.open()
            session.open()

            assert await session.connect() is True
            await session.close()

        assert ws_cls.call_count == 1

    @pytest.mark.asyncio
    async def test_hello_rejected(self):
        """Test hello_invalid fails the connect with a handshake error."""
        fake_ws = FakeLinkWs(answer_hello="hello_invalid")
        failed = MagicMock()

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            session.on_connection_failed(failed)

            assert await session.connect() is False

        assert session.state is SessionState.FAILED
        err = failed.call_args.args[0]
        assert isinstance(err, LinkHandshakeError)
        assert "bad node" in str(err)
        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_hello_unanswered_times_out(self):
        """Test an unanswered hello fails with LinkTimeout."""
        fake_ws = FakeLinkWs(answer_hello=None)
        failed = MagicMock()

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session(connect_timeout=0.05)
            session.on_connection_failed(failed)

            assert await session.connect() is False

        assert isinstance(failed.call_args.args[0], LinkTimeout)
        assert session.state is SessionState.FAILED

    @pytest.mark.asyncio
    async def test_socket_connect_failure(self):
        """Test an unreachable hub is reported once and not retried."""
        fake_ws = FakeLinkWs(connect_error=LinkUnavailable("refused"))
        failed = MagicMock()

        with patch(_WS_CLIENT, return_value=fake_ws) as ws_cls:
            session = make_session()
            session.on_connection_failed(failed)

            assert await session.connect() is False
            await asyncio.sleep(0.01)

        failed.assert_called_once()
        assert ws_cls.call_count == 1
        assert not fake_ws.sent

    @pytest.mark.asyncio
    async def test_connect_after_failure_starts_new_attempt(self, fake_ws: FakeLinkWs):
        """Test connect() starts a fresh attempt once the previous one finished."""
        refused = FakeLinkWs(connect_error=LinkUnavailable("refused"))

        with patch(_WS_CLIENT, side_effect=[refused, fake_ws]) as ws_cls:
            session = make_session()

            assert await session.connect() is False
            assert await session.connect() is True
            await session.close()

        assert ws_cls.call_count == 2
        assert len(fake_ws.sent_of_type("hello")) == 1

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self, fake_ws: FakeLinkWs):
        """Test a raising callback does not break the connect."""
        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            session.on_connected(MagicMock(side_effect=RuntimeError("boom")))

            assert await session.connect() is True
            await session.close()


class TestPutDataItem:
    """Tests for put_data delivery tracking."""

    @pytest.mark.asyncio
    async def test_put_not_connected(self):
        """Test put_data_item resolves NOT_CONNECTED without a session."""
        session = make_session()

        result = await session.put_data_item("/weather-info", b"{}")

        assert result is DeliveryResult.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_put_success(self, fake_ws: FakeLinkWs):
        """Test put_data frame contents and SUCCESS result."""
        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            await session.connect()

            result = await session.put_data_item("weather-info", b'{"high": "25"}', urgent=True)
            await session.close()

        assert result is DeliveryResult.SUCCESS
        frame = fake_ws.sent_of_type("put_data")[0]
        assert frame["body"]["path"] == "/weather-info"
        assert frame["body"]["urgent"] is True
        assert base64.b64decode(frame["body"]["data"]) == b'{"high": "25"}'
        assert session.pending_deliveries == 0

    @pytest.mark.asyncio
    async def test_put_rejected_by_hub(self):
        """Test an unsuccessful put_data_result maps to TRANSPORT_FAILURE."""
        fake_ws = FakeLinkWs(ack_puts=False)

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            await session.connect()

            result = await session.put_data_item("/weather-info", b"{}")
            await session.close()

        assert result is DeliveryResult.TRANSPORT_FAILURE

    @pytest.mark.asyncio
    async def test_put_unacknowledged_expires(self):
        """Test a put with no result expires as TRANSPORT_FAILURE."""
        fake_ws = FakeLinkWs(ack_puts=None)

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session(delivery_timeout=0.05)
            await session.connect()

            result = await session.put_data_item("/weather-info", b"{}")
            await session.close()

        assert result is DeliveryResult.TRANSPORT_FAILURE

    @pytest.mark.asyncio
    async def test_put_send_failure(self, fake_ws: FakeLinkWs):
        """Test a failed socket send maps to TRANSPORT_FAILURE."""
        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            await session.connect()
            fake_ws.send_error = LinkUnavailable("WebSocket send failed")

            result = await session.put_data_item("/weather-info", b"{}")
            await session.close()

        assert result is DeliveryResult.TRANSPORT_FAILURE

    @pytest.mark.asyncio
    async def test_pending_limit(self):
        """Test puts beyond the pending limit fail immediately."""
        fake_ws = FakeLinkWs(ack_puts=None)

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            await session.connect()

            futures = [
                session.put_data_item("/weather-info", b"{}")
                for _ in range(MAX_PENDING_DELIVERIES)
            ]
            overflow = session.put_data_item("/weather-info", b"{}")

            assert overflow.result() is DeliveryResult.TRANSPORT_FAILURE
            assert session.pending_deliveries == MAX_PENDING_DELIVERIES

            await session.close()

        assert all(f.result() is DeliveryResult.TRANSPORT_FAILURE for f in futures)


class TestDataChanged:
    """Tests for inbound data_changed frames."""

    @pytest.mark.asyncio
    async def test_listeners_receive_push_events(self, fake_ws: FakeLinkWs):
        """Test data_changed is decoded and fanned out to every listener."""
        failing = MagicMock(side_effect=RuntimeError("listener bug"))
        received = []

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            session.add_data_listener(failing)
            session.add_data_listener(received.append)
            await session.connect()

            fake_ws.push(
                {
                    "type": "data_changed",
                    "body": {
                        "path": "weather-info",
                        "change_type": "changed",
                        "data": base64.b64encode(b'{"high": "75"}').decode(),
                    },
                }
            )
            await asyncio.sleep(0.01)
            await session.close()

        assert failing.call_count == 1
        assert len(received) == 1
        assert received[0].path == "/weather-info"
        assert received[0].payload == b'{"high": "75"}'
        assert received[0].change_type is ChangeType.CHANGED

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, fake_ws: FakeLinkWs):
        """Test remove_data_listener stops delivery."""
        listener = MagicMock()

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            session.add_data_listener(listener)
            session.remove_data_listener(listener)
            session.remove_data_listener(listener)
            await session.connect()

            fake_ws.push(
                {"type": "data_changed", "body": {"path": "/weather-info", "data": ""}}
            )
            await asyncio.sleep(0.01)
            await session.close()

        listener.assert_not_called()


class TestTeardown:
    """Tests for hub hang-up and close."""

    @pytest.mark.asyncio
    async def test_hub_hang_up(self):
        """Test hub closing the socket disconnects and fails pending puts."""
        fake_ws = FakeLinkWs(ack_puts=None)
        disconnected = MagicMock()

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            session.on_disconnected(disconnected)
            await session.connect()
            future = session.put_data_item("/weather-info", b"{}")
            await asyncio.sleep(0)

            fake_ws.hang_up()
            result = await future
            await asyncio.sleep(0.01)

        assert result is DeliveryResult.TRANSPORT_FAILURE
        assert session.state is SessionState.DISCONNECTED
        disconnected.assert_called_once()
        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_ws: FakeLinkWs):
        """Test close twice fires the disconnected callback once."""
        disconnected = MagicMock()

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            session.on_disconnected(disconnected)
            await session.connect()

            await session.close()
            await session.close()

        disconnected.assert_called_once()
        assert session.state is SessionState.DISCONNECTED
        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_close_never_opened(self):
        """Test closing a never-opened session is a no-op."""
        session = make_session()
        await session.close()
        assert session.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_while_connecting(self):
        """Test close during the hello wait makes connect() return False."""
        fake_ws = FakeLinkWs(answer_hello=None)

        with patch(_WS_CLIENT, return_value=fake_ws):
            session = make_session()
            connect = asyncio.ensure_future(session.connect())
            await asyncio.sleep(0.01)

            await session.close()

            assert await connect is False
        assert session.state is SessionState.DISCONNECTED
