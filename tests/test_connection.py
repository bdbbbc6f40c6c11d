"""Tests for the connection lifecycle: reconnect, terminal failure, events and close."""

import logging
import os
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import pytest

from pyfield_modbus.config import ClientSettings, TcpSettings
from pyfield_modbus.connection import ConnectionManager
from pyfield_modbus.errors import ClientClosedError, ConnectionFailedError
from pyfield_modbus.types import ConnectionState

from .conftest import FakeLink

SRC_DIR = Path(__file__).resolve().parent.parent / "src"


def manager(link: FakeLink, **settings) -> ConnectionManager:
    settings.setdefault("retry_interval", 0.01)
    return ConnectionManager(link.factory, ClientSettings(**settings), name="test")


def record_events(conn: ConnectionManager) -> list[str]:
    events: list[str] = []
    conn.connected.subscribe(lambda _sender: events.append("connected"))
    conn.disconnected.subscribe(lambda _sender: events.append("disconnected"))
    return events


def lose_link(conn: ConnectionManager) -> None:
    def broken(_transport):
        raise ConnectionResetError("peer reset")

    with pytest.raises(ConnectionResetError):
        conn.exchange(broken)


class TestReconnect:
    """Connecting and retrying."""

    def test_connect(self, link: FakeLink) -> None:
        conn = manager(link)
        events = record_events(conn)
        assert conn.state is ConnectionState.DISCONNECTED
        conn.reconnect()
        assert conn.state is ConnectionState.CONNECTED
        assert conn.is_connected and conn.was_connected
        assert events == ["connected"]
        # already connected: no new attempt
        conn.reconnect()
        assert link.opens == 1
        conn.close()

    def test_retries_until_open(self, link: FakeLink) -> None:
        link.open_errors = [ConnectionRefusedError("refused"), TimeoutError("slow")]
        conn = manager(link)
        conn.reconnect()
        assert link.opens == 3
        assert conn.is_connected
        # failed attempts are closed before the next one
        assert link.transports[0].closed and link.transports[1].closed
        conn.close()

    def test_retry_log_keeps_interval_precision(self, link: FakeLink, caplog: pytest.LogCaptureFixture) -> None:
        link.open_errors = [ConnectionRefusedError("refused")]
        conn = manager(link, retry_interval=0.01)
        with caplog.at_level(logging.WARNING, logger="pyfield_modbus.connection"):
            conn.reconnect()
        assert "retrying in 0.01s" in caplog.text
        conn.close()

    def test_tcp_connect_timeouts_grow(self) -> None:
        settings = TcpSettings(host="plc")
        timeouts = settings.connect_timeouts()
        assert [next(timeouts) for _ in range(10)] == [4, 6, 8, 10, 12, 14, 16, 18, 20, 20]

    def test_settings_apply_on_next_connect(self, link: FakeLink) -> None:
        conn = manager(link)
        conn.reconnect()
        conn.settings = ClientSettings(receive_timeout=5.0)
        assert link.transports[0].settings.receive_timeout == 1.0
        lose_link(conn)
        conn.reconnect()
        assert link.transports[1].settings.receive_timeout == 5.0
        conn.close()


class TestTerminalFailure:
    """Giving up after reconnect_timeout."""

    def test_never_connected(self, link: FakeLink) -> None:
        link.refuse = True
        conn = manager(link, reconnect_timeout=0.05)
        with pytest.raises(ConnectionFailedError, match="Could not connect") as exc_info:
            conn.reconnect()
        assert not exc_info.value.was_connected
        assert conn.state is ConnectionState.FAILED
        assert link.opens >= 2

        attempts = link.opens
        with pytest.raises(ConnectionFailedError):
            conn.exchange(lambda transport: transport.write(b"\x00"))
        with pytest.raises(ConnectionFailedError):
            conn.reconnect()
        assert link.opens == attempts
        assert link.written == []
        conn.close()
        assert conn.state is ConnectionState.FAILED

    def test_lost_connection(self, link: FakeLink) -> None:
        conn = manager(link, reconnect_timeout=0.05)
        events = record_events(conn)
        conn.reconnect()
        lose_link(conn)
        assert conn.state is ConnectionState.CONNECTING

        link.refuse = True
        with pytest.raises(ConnectionFailedError, match="Server connection lost") as exc_info:
            conn.reconnect()
        assert exc_info.value.was_connected
        assert events == ["connected", "disconnected"]
        conn.close()

    def test_unexpected_open_error_fails_at_once(self, link: FakeLink) -> None:
        link.open_errors = [RuntimeError("driver missing")]
        conn = manager(link)
        with pytest.raises(ConnectionFailedError) as exc_info:
            conn.reconnect()
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert link.opens == 1
        conn.close()


class TestEvents:
    """connected/disconnected notifications."""

    def test_order_across_reconnect(self, link: FakeLink) -> None:
        link.open_errors = []
        conn = manager(link)
        events = record_events(conn)
        conn.reconnect()
        lose_link(conn)
        link.open_errors = [ConnectionRefusedError("refused")] * 2
        conn.reconnect()
        assert events == ["connected", "disconnected", "connected"]
        conn.close()
        assert events == ["connected", "disconnected", "connected", "disconnected"]

    def test_failing_listener_does_not_stop_others(self, link: FakeLink) -> None:
        conn = manager(link)
        seen = []

        @conn.connected.subscribe
        def broken(_sender):
            raise RuntimeError("boom")

        conn.connected.subscribe(seen.append)
        conn.reconnect()
        assert seen == [conn]
        conn.connected.unsubscribe(broken)
        assert len(conn.connected) == 1
        conn.close()

    def test_disconnect_then_exchange_reconnects(self, link: FakeLink) -> None:
        conn = manager(link)
        events = record_events(conn)
        conn.reconnect()
        conn.disconnect()
        assert conn.state is ConnectionState.DISCONNECTED
        assert link.transports[0].closed
        conn.exchange(lambda transport: transport.write(b"\x01"))
        assert link.opens == 2
        assert events == ["connected", "disconnected", "connected"]
        conn.close()

    def test_disconnected_listener_can_exchange(self, link: FakeLink) -> None:
        conn = manager(link)
        conn.reconnect()
        lose_link(conn)

        @conn.disconnected.subscribe
        def resend(_sender):
            conn.exchange(lambda transport: transport.write(b"\x01"))

        conn.reconnect_in_background().result(timeout=2.0)
        assert conn.state is ConnectionState.CONNECTED
        assert b"\x01" in link.written
        assert link.opens == 2
        conn.disconnected.unsubscribe(resend)
        conn.close()

    def test_connected_listener_can_reconnect(self, link: FakeLink) -> None:
        conn = manager(link)
        conn.connected.subscribe(lambda _sender: conn.reconnect())
        conn.reconnect_in_background().result(timeout=2.0)
        assert conn.is_connected
        assert link.opens == 1
        conn.close()


class TestClose:
    """Disposal."""

    def test_close_is_idempotent(self, link: FakeLink) -> None:
        conn = manager(link)
        events = record_events(conn)
        conn.reconnect()
        conn.close()
        conn.close()
        assert conn.is_closed
        assert link.transports[0].closed
        assert events == ["connected", "disconnected"]

    def test_closed_rejects_calls(self, link: FakeLink) -> None:
        conn = manager(link)
        conn.close()
        with pytest.raises(ClientClosedError):
            conn.reconnect()
        with pytest.raises(ClientClosedError):
            conn.exchange(lambda transport: None)
        with pytest.raises(ClientClosedError):
            conn.reconnect_in_background()
        assert link.opens == 0

    def test_close_interrupts_retry_sleep(self, link: FakeLink) -> None:
        link.refuse = True
        conn = manager(link, retry_interval=10.0)
        future = conn.reconnect_in_background()
        assert conn.connecting_task is future
        deadline = time.monotonic() + 2.0
        while link.opens == 0 and time.monotonic() < deadline:
            time.sleep(0.005)
        started = time.monotonic()
        conn.close()
        with pytest.raises(ClientClosedError):
            future.result(timeout=2.0)
        assert time.monotonic() - started < 2.0

    def test_running_background_reconnect_is_reused(self, link: FakeLink) -> None:
        link.refuse = True
        conn = manager(link, retry_interval=10.0)
        future = conn.reconnect_in_background()
        assert conn.reconnect_in_background() is future
        conn.close()
        with pytest.raises(ClientClosedError):
            future.result(timeout=2.0)

    def test_unclosed_manager_does_not_block_exit(self) -> None:
        script = textwrap.dedent(
            """
            from pyfield_modbus.config import ClientSettings
            from pyfield_modbus.connection import ConnectionManager
            from pyfield_modbus.transport import Transport

            class Refusing(Transport):
                is_open = False

                def open(self, timeout=None):
                    raise ConnectionRefusedError("refused")

                def close(self):
                    pass

                def write(self, data):
                    pass

                def read(self, size):
                    return b""

            conn = ConnectionManager(lambda settings: Refusing(), ClientSettings(retry_interval=0.05))
            conn.reconnect_in_background()
            print("started")
            """
        )
        env = dict(os.environ, PYTHONPATH=str(SRC_DIR))
        result = subprocess.run(
            [sys.executable, "-c", script], env=env, capture_output=True, text=True, timeout=20
        )
        assert result.returncode == 0, result.stderr
        assert "started" in result.stdout
