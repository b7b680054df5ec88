"""Shared fixtures: a mock LPD laser device and test configurations."""

from __future__ import annotations

import socket
import threading

import pytest

from laser_control.configs.loader import (
    ConnectionConfig,
    JobConfig,
    LaserConfig,
    VectorDefaults,
)

# Terminator of each handshake frame, in order
HANDSHAKE_TERMINATORS = (b"\n", b"\n", b"\0", b"\n")


# ---------------------------------------------------------------------------
# Mock TCP device
# ---------------------------------------------------------------------------


class MockLaserDevice:
    """Minimal LPD-speaking laser on ``127.0.0.1``.

    Acknowledges the four handshake frames with the scripted ``acks``
    (``None`` closes the connection instead of answering), then captures
    everything else as the data file until the client closes.
    """

    def __init__(self, acks: list[int | None] | None = None) -> None:
        self.acks = list(acks) if acks is not None else [0, 0, 0, 0]
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind(("127.0.0.1", 0))
        self._server.listen(1)
        self._server.settimeout(5.0)
        self.port: int = self._server.getsockname()[1]
        self._thread: threading.Thread | None = None

        self.frames: list[bytes] = []
        self.data = b""
        self.connections = 0
        self.eof_count = 0
        self.done = threading.Event()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            conn, _ = self._server.accept()
        except OSError:
            return
        self.connections += 1
        conn.settimeout(5.0)
        try:
            self._handle_connection(conn)
        finally:
            conn.close()
            self.done.set()

    def _handle_connection(self, conn: socket.socket) -> None:
        buf = bytearray()

        def fill() -> None:
            chunk = conn.recv(65536)
            if not chunk:
                raise EOFError
            buf.extend(chunk)

        try:
            for stage, terminator in enumerate(HANDSHAKE_TERMINATORS):
                while terminator not in buf:
                    fill()
                end = buf.index(terminator) + len(terminator)
                self.frames.append(bytes(buf[:end]))
                del buf[:end]

                ack = self.acks[stage]
                if ack is None:
                    return
                conn.sendall(bytes([ack]))
                if ack != 0:
                    break

            while True:
                fill()
        except EOFError:
            self.eof_count += 1
        except OSError:
            pass
        finally:
            self.data = bytes(buf)

    def wait(self, timeout: float = 5.0) -> None:
        assert self.done.wait(timeout), "device never saw the client close"

    def stop(self) -> None:
        self._server.close()
        if self._thread:
            self._thread.join(timeout=3.0)


@pytest.fixture()
def device():
    """Running mock device that accepts every frame."""
    dev = MockLaserDevice()
    dev.start()
    yield dev
    dev.stop()


@pytest.fixture()
def job() -> JobConfig:
    return JobConfig(host="127.0.0.1", queue="lp", client_host="testhost")


@pytest.fixture()
def make_config(job: JobConfig):
    """Build a fast-failing config pointed at *port*."""

    def _make(port: int, **job_changes: object) -> LaserConfig:
        fields = {
            "host": job.host,
            "queue": job.queue,
            "client_host": job.client_host,
        }
        fields.update(job_changes)
        return LaserConfig(
            connection=ConnectionConfig(
                port=port,
                connect_attempts=2,
                attempt_timeout_s=2.0,
                retry_interval_s=0.05,
                ack_timeout_s=2.0,
            ),
            job=JobConfig(**fields),
            vector=VectorDefaults(frequency=5000, power=100, speed=5),
        )

    return _make
