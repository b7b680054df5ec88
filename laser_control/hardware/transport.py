"""TCP transport to the laser's line-printer port.

Handles:
    - Name resolution through an injectable resolver (``getaddrinfo``)
    - Bounded connect retries spaced by ``retry_interval_s``
    - A **watchdog** timer that abandons the whole connect operation after
      a wall-clock bound, even if one attempt hangs
    - Single-call frame writes with short-write detection
    - Single-byte LPD acknowledgements (``0x00`` = accepted)

The attempt count and the watchdog bound are separate parameters.  By
default the watchdog equals the attempt count in seconds, so with a one
second retry interval both bounds describe the same window.

All bounds come from ``LaserConfig.connection``.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from laser_control.configs.loader import ConnectionConfig

logger = logging.getLogger(__name__)

# RFC 1179 well-known port, used when the ``printer`` service is not listed
# in the local services database.
LPD_PORT = 515

ACK_OK = 0

Resolver = Callable[..., Sequence[tuple[Any, ...]]]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class LaserError(Exception):
    """Base exception for all laser job errors."""

    pass


class LaserConnectionError(LaserError):
    """Socket-level failure (connect, read or write)."""

    pass


class ConnectError(LaserConnectionError):
    """No connection to *host* could be established."""

    def __init__(self, host: str, message: str | None = None) -> None:
        self.host = host
        super().__init__(message or f"Cannot connect to {host}")


class ConnectTimeout(ConnectError):
    """No attempt succeeded within the attempt count or watchdog bound."""

    pass


class ResolutionError(ConnectTimeout):
    """The host never resolved to a usable address during the window."""

    pass


class ShortWrite(LaserConnectionError):
    """The socket accepted fewer bytes than one frame.

    The device parser cannot resynchronise after a truncated escape
    sequence, so the job is over.
    """

    def __init__(self, requested: int, written: int) -> None:
        self.requested = requested
        self.written = written
        super().__init__(
            f"Short write: {written} of {requested} bytes accepted"
        )


class ConnectionClosedError(LaserConnectionError):
    """Read, write or close on a connection that is already closed."""

    pass


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AckResult:
    """Outcome of one acknowledgement read.

    Only ``ok`` drives control flow; ``value`` and ``detail`` are for
    diagnostics (short read vs. socket error vs. non-zero code).
    """

    ok: bool
    value: int | None = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class Connection:
    """One open byte stream to the device.

    Parameters
    ----------
    sock : socket.socket
        Connected stream socket.  The connection owns it from now on.
    peer : Any
        Remote address, for log messages.
    """

    def __init__(self, sock: socket.socket, peer: Any = None) -> None:
        self._sock = sock
        self.peer = peer
        self._closed = False

    @property
    def closed(self) -> bool:
        """``True`` once ``close()`` has been called."""
        return self._closed

    def _require_open(self) -> None:
        if self._closed:
            raise ConnectionClosedError(f"Connection to {self.peer} is closed")

    def write(self, data: bytes) -> int:
        """Send *data* with a single ``send`` call.

        Raises
        ------
        ShortWrite
            If the socket accepted fewer bytes than requested.
        LaserConnectionError
            On socket errors or timeouts.
        """
        self._require_open()
        try:
            written = self._sock.send(data)
        except OSError as exc:
            raise LaserConnectionError(
                f"Write to {self.peer} failed: {exc}"
            ) from exc
        if written != len(data):
            raise ShortWrite(len(data), written)
        return written

    def read(self, size: int, timeout: float | None = None) -> bytes:
        """Receive up to *size* bytes; ``b""`` means the peer closed.

        A *timeout* applies to this call only.  Socket errors propagate as
        ``OSError`` (``TimeoutError`` on expiry).
        """
        self._require_open()
        if timeout is None:
            return self._sock.recv(size)
        previous = self._sock.gettimeout()
        self._sock.settimeout(timeout)
        try:
            return self._sock.recv(size)
        finally:
            self._sock.settimeout(previous)

    def close(self) -> None:
        """Close the socket.  A second call raises ``ConnectionClosedError``."""
        self._require_open()
        self._closed = True
        self._sock.close()

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *args: Any) -> None:
        if not self._closed:
            self.close()


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class Transport:
    """Connect to the laser and exchange acknowledgements.

    Parameters
    ----------
    port : int | str
        Port number or service name.  ``"printer"`` falls back to 515.
    connect_attempts : int
        Resolve/connect iterations before giving up.
    attempt_timeout_s : float
        Cap for a single ``connect()`` call.
    watchdog_s : float | None
        Wall-clock bound for the whole connect operation.  ``None`` uses
        the attempt count in seconds.
    retry_interval_s : float
        Pause between failed iterations.
    ack_timeout_s : float
        Timeout for one acknowledgement byte.
    io_timeout_s : float | None
        Socket timeout after connect.  ``None`` blocks indefinitely.
    resolver : callable | None
        ``getaddrinfo``-compatible callable.

    Examples
    --------
    >>> transport = Transport(port=515, connect_attempts=5)
    >>> conn = transport.connect("192.168.3.4")
    >>> conn.write(b"\\x02lp\\n")
    >>> transport.read_ack(conn).ok
    True
    """

    def __init__(
        self,
        port: int | str = "printer",
        connect_attempts: int = 60,
        attempt_timeout_s: float = 10.0,
        watchdog_s: float | None = None,
        retry_interval_s: float = 1.0,
        ack_timeout_s: float = 10.0,
        io_timeout_s: float | None = None,
        resolver: Resolver | None = None,
    ) -> None:
        self.port = port
        self.connect_attempts = connect_attempts
        self.attempt_timeout_s = attempt_timeout_s
        self.watchdog_s = watchdog_s
        self.retry_interval_s = retry_interval_s
        self.ack_timeout_s = ack_timeout_s
        self.io_timeout_s = io_timeout_s
        self.resolver: Resolver = resolver or socket.getaddrinfo

        self._lock = threading.Lock()
        self._inflight: socket.socket | None = None

    @classmethod
    def from_config(
        cls, cfg: ConnectionConfig, resolver: Resolver | None = None,
    ) -> Transport:
        """Build a transport from ``LaserConfig.connection``."""
        return cls(
            port=cfg.port,
            connect_attempts=cfg.connect_attempts,
            attempt_timeout_s=cfg.attempt_timeout_s,
            watchdog_s=cfg.watchdog_s,
            retry_interval_s=cfg.retry_interval_s,
            ack_timeout_s=cfg.ack_timeout_s,
            io_timeout_s=cfg.io_timeout_s,
            resolver=resolver,
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, host: str, attempts: int | None = None) -> Connection:
        """Open a stream connection to *host*.

        Parameters
        ----------
        host : str
            Host name or address.
        attempts : int | None
            Override for ``connect_attempts``.  Also sets the watchdog
            bound when ``watchdog_s`` is ``None``.

        Raises
        ------
        ResolutionError
            If *host* never resolved during the window.
        ConnectTimeout
            If no candidate accepted a connection in time.
        """
        attempts = self.connect_attempts if attempts is None else attempts
        bound = self.watchdog_s if self.watchdog_s is not None else float(attempts)
        deadline = time.monotonic() + bound

        expired = threading.Event()
        watchdog = threading.Timer(bound, self._on_watchdog, args=(host, expired))
        watchdog.daemon = True
        watchdog.start()

        resolved = False
        try:
            for attempt in range(1, attempts + 1):
                if expired.is_set():
                    break
                logger.info(
                    "Connecting to %s (attempt %d/%d)",
                    host,
                    attempt,
                    attempts,
                )
                candidates = self._resolve(host)
                resolved = resolved or bool(candidates)

                for candidate in candidates:
                    sock = self._try_connect(candidate, deadline, expired)
                    if sock is not None:
                        watchdog.cancel()
                        peer = candidate[4]
                        logger.info("Connected to %s at %s", host, peer)
                        return Connection(sock, peer)

                if attempt < attempts and expired.wait(self.retry_interval_s):
                    break
        finally:
            watchdog.cancel()

        logger.error("Cannot connect to %s", host)
        if not resolved:
            raise ResolutionError(
                host, f"Cannot resolve {host} after {attempts} attempts",
            )
        raise ConnectTimeout(
            host,
            f"Cannot connect to {host} within {attempts} attempts "
            f"/ {bound:.1f}s",
        )

    def disconnect(self, conn: Connection) -> bool:
        """Close *conn*.  Logs instead of raising; returns success."""
        if conn.closed:
            logger.warning("Connection to %s already closed", conn.peer)
            return False
        try:
            conn.close()
        except OSError as exc:
            logger.error("Close failed: %s", exc)
            return False
        logger.info("Disconnected from %s", conn.peer)
        return True

    # ------------------------------------------------------------------
    # Acknowledgements
    # ------------------------------------------------------------------

    def read_ack(self, conn: Connection) -> AckResult:
        """Read one acknowledgement byte; ``0x00`` means accepted."""
        logger.debug("Waiting for ack from %s", conn.peer)
        try:
            data = conn.read(1, timeout=self.ack_timeout_s)
        except OSError as exc:
            logger.error("Printer read failed: %s", exc)
            return AckResult(ok=False, detail=f"read error: {exc}")

        if len(data) != 1:
            logger.error("Printer read failed: connection closed before ack")
            return AckResult(ok=False, detail="short read")

        value = data[0]
        logger.debug("Ack value=%d", value)
        if value == ACK_OK:
            return AckResult(ok=True, value=value, detail="accepted")

        logger.error("Printer returned failure code %02x", value)
        return AckResult(ok=False, value=value, detail=f"rejected 0x{value:02x}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _service_port(self) -> int:
        if isinstance(self.port, int):
            return self.port
        try:
            return socket.getservbyname(self.port, "tcp")
        except OSError:
            if self.port == "printer":
                return LPD_PORT
            raise

    def _resolve(self, host: str) -> list[tuple[Any, ...]]:
        """Return stream-capable candidates, or ``[]`` on failure."""
        try:
            port = self._service_port()
            return list(
                self.resolver(host, port, socket.AF_UNSPEC, socket.SOCK_STREAM)
            )
        except (OSError, UnicodeError) as exc:
            logger.warning("Cannot resolve %s: %s", host, exc)
            return []

    def _try_connect(
        self,
        candidate: tuple[Any, ...],
        deadline: float,
        expired: threading.Event,
    ) -> socket.socket | None:
        family, socktype, proto, _canonname, sockaddr = candidate
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None

        logger.info("Trying to connect to %s", sockaddr)
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as exc:
            logger.warning("Cannot create socket for %s: %s", sockaddr, exc)
            return None

        with self._lock:
            self._inflight = sock
        try:
            sock.settimeout(min(self.attempt_timeout_s, remaining))
            sock.connect(sockaddr)
        except OSError as exc:
            logger.warning("Connect to %s failed: %s", sockaddr, exc)
            with self._lock:
                self._inflight = None
            sock.close()
            return None

        with self._lock:
            self._inflight = None
            abandoned = expired.is_set()
        if abandoned:
            sock.close()
            return None

        sock.settimeout(self.io_timeout_s)
        return sock

    def _on_watchdog(self, host: str, expired: threading.Event) -> None:
        """Timer callback: abandon the connect operation."""
        with self._lock:
            expired.set()
            sock = self._inflight
            self._inflight = None
        logger.warning("Connect watchdog expired for %s", host)
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # not connected yet
            sock.close()
