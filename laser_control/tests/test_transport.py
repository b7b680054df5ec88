"""Tests for the TCP transport.

Verifies:
    - Connect retries and their spacing with a failing resolver
    - Success on a later attempt
    - Watchdog bound independent of the attempt count, including a hung
      connect attempt
    - Acknowledgement decoding (accept, reject, short read, timeout)
    - Short-write detection and closed-connection guards
"""

from __future__ import annotations

import socket
import time
from typing import Any
from unittest.mock import MagicMock

import pytest

from laser_control.configs.loader import ConnectionConfig
from laser_control.hardware.transport import (
    LPD_PORT,
    ConnectionClosedError,
    ConnectTimeout,
    Connection,
    LaserConnectionError,
    ResolutionError,
    ShortWrite,
    Transport,
)


def _failing_resolver(calls: list[float]):
    def resolve(*args: Any) -> list[tuple[Any, ...]]:
        calls.append(time.monotonic())
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    return resolve


@pytest.fixture()
def listener():
    """Listening socket on localhost; connects complete via the backlog."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(4)
    yield server
    server.close()


@pytest.fixture()
def pair():
    """Connected socket pair: (Connection, raw peer socket)."""
    a, b = socket.socketpair()
    conn = Connection(a, peer="pair")
    yield conn, b
    b.close()
    if not conn.closed:
        conn.close()


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------


class TestConnect:
    def test_retries_spaced_by_interval(self) -> None:
        calls: list[float] = []
        transport = Transport(
            port=515, retry_interval_s=0.1, resolver=_failing_resolver(calls),
        )

        with pytest.raises(ConnectTimeout) as exc_info:
            transport.connect("nowhere.invalid", attempts=3)

        assert len(calls) == 3
        gaps = [b - a for a, b in zip(calls, calls[1:])]
        assert all(gap >= 0.09 for gap in gaps)
        assert isinstance(exc_info.value, ResolutionError)
        assert exc_info.value.host == "nowhere.invalid"

    def test_succeeds_on_second_attempt(self, listener: socket.socket) -> None:
        calls: list[float] = []
        address = listener.getsockname()

        def resolve(*args: Any) -> list[tuple[Any, ...]]:
            calls.append(time.monotonic())
            if len(calls) == 1:
                raise socket.gaierror(socket.EAI_AGAIN, "Temporary failure")
            return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", address)]

        transport = Transport(
            port=address[1], retry_interval_s=0.01, resolver=resolve,
        )
        conn = transport.connect("laser.local", attempts=5)
        try:
            assert len(calls) == 2
            assert not conn.closed
            assert conn.peer == address
        finally:
            conn.close()

    def test_refused_is_timeout_not_resolution(self) -> None:
        unused = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        unused.bind(("127.0.0.1", 0))
        address = unused.getsockname()
        unused.close()

        transport = Transport(
            port=address[1],
            retry_interval_s=0.01,
            resolver=lambda *a: [(socket.AF_INET, socket.SOCK_STREAM, 6, "", address)],
        )
        with pytest.raises(ConnectTimeout) as exc_info:
            transport.connect("127.0.0.1", attempts=2)
        assert not isinstance(exc_info.value, ResolutionError)

    def test_watchdog_bounds_attempts(self) -> None:
        calls: list[float] = []
        transport = Transport(
            port=515,
            connect_attempts=1000,
            watchdog_s=0.3,
            retry_interval_s=0.05,
            resolver=_failing_resolver(calls),
        )

        start = time.monotonic()
        with pytest.raises(ConnectTimeout):
            transport.connect("nowhere.invalid")
        elapsed = time.monotonic() - start

        assert elapsed < 2.0
        assert 1 <= len(calls) < 1000

    def test_watchdog_stops_hung_attempt(self) -> None:
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(0)
        address = server.getsockname()

        # Fill the accept queue so further SYNs go unanswered
        fillers = []
        for _ in range(8):
            filler = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            filler.setblocking(False)
            filler.connect_ex(address)
            fillers.append(filler)

        transport = Transport(
            port=address[1],
            attempt_timeout_s=30.0,
            watchdog_s=0.5,
            resolver=lambda *a: [(socket.AF_INET, socket.SOCK_STREAM, 6, "", address)],
        )
        start = time.monotonic()
        try:
            with pytest.raises(ConnectTimeout) as exc_info:
                transport.connect("127.0.0.1", attempts=1)
        finally:
            for filler in fillers:
                filler.close()
            server.close()
        elapsed = time.monotonic() - start

        assert not isinstance(exc_info.value, ResolutionError)
        assert elapsed < 5.0

    def test_from_config(self) -> None:
        cfg = ConnectionConfig(port=9100, connect_attempts=3, ack_timeout_s=2.5)
        transport = Transport.from_config(cfg)
        assert transport.port == 9100
        assert transport.connect_attempts == 3
        assert transport.ack_timeout_s == 2.5

    def test_printer_service_port(self) -> None:
        assert Transport(port="printer")._service_port() == LPD_PORT


# ---------------------------------------------------------------------------
# Acknowledgements
# ---------------------------------------------------------------------------


class TestReadAck:
    def test_accepted(self, pair) -> None:
        conn, peer = pair
        peer.sendall(b"\x00")
        ack = Transport(ack_timeout_s=1.0).read_ack(conn)
        assert ack.ok
        assert ack.value == 0

    def test_rejected(self, pair) -> None:
        conn, peer = pair
        peer.sendall(b"\x05")
        ack = Transport(ack_timeout_s=1.0).read_ack(conn)
        assert not ack
        assert ack.value == 5
        assert ack.detail == "rejected 0x05"

    def test_peer_closed(self, pair) -> None:
        conn, peer = pair
        peer.close()
        ack = Transport(ack_timeout_s=1.0).read_ack(conn)
        assert not ack.ok
        assert ack.value is None
        assert ack.detail == "short read"

    def test_timeout(self, pair) -> None:
        conn, _peer = pair
        ack = Transport(ack_timeout_s=0.1).read_ack(conn)
        assert not ack.ok
        assert ack.detail.startswith("read error")


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class TestConnection:
    def test_write_single_send(self) -> None:
        sock = MagicMock()
        sock.send.side_effect = len
        conn = Connection(sock)
        assert conn.write(b"IN;") == 3
        sock.send.assert_called_once_with(b"IN;")

    def test_short_write(self) -> None:
        sock = MagicMock()
        sock.send.return_value = 2
        conn = Connection(sock)
        with pytest.raises(ShortWrite) as exc_info:
            conn.write(b"PD0,0;")
        assert (exc_info.value.requested, exc_info.value.written) == (6, 2)

    def test_socket_error_wrapped(self) -> None:
        sock = MagicMock()
        sock.send.side_effect = BrokenPipeError("broken pipe")
        with pytest.raises(LaserConnectionError):
            Connection(sock).write(b"x")

    def test_closed_guards(self) -> None:
        conn = Connection(MagicMock())
        conn.close()
        assert conn.closed
        with pytest.raises(ConnectionClosedError):
            conn.write(b"x")
        with pytest.raises(ConnectionClosedError):
            conn.read(1)
        with pytest.raises(ConnectionClosedError):
            conn.close()

    def test_disconnect_reports_result(self) -> None:
        transport = Transport()
        conn = Connection(MagicMock())
        assert transport.disconnect(conn) is True
        assert transport.disconnect(conn) is False

    def test_disconnect_close_error(self) -> None:
        sock = MagicMock()
        sock.close.side_effect = OSError("bad fd")
        conn = Connection(sock)
        assert Transport().disconnect(conn) is False
        assert conn.closed

    def test_read_restores_timeout(self, pair) -> None:
        conn, peer = pair
        peer.sendall(b"\x00")
        assert conn.read(1, timeout=0.5) == b"\x00"
        assert conn._sock.gettimeout() is None
