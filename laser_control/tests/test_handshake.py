"""Tests for the LPD submission handshake.

Uses a scripted in-memory connection to verify:
    - Exact frames in order
    - Strict write/ack alternation
    - Abort on rejection at every stage, with no further frames
    - Terminal-state guards
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from laser_control.configs.loader import JobConfig
from laser_control.hardware.handshake import (
    Handshake,
    HandshakeRejected,
    HandshakeState,
    HandshakeStateError,
    control_announce_frame,
    control_file,
    queue_frame,
)
from laser_control.hardware.transport import LaserConnectionError, Transport

EXPECTED_FRAMES = [
    b"\x02lp\n",
    b"\x0210 cfAlive.pdftesthost\n",
    b"Htesthost\n\x00",
    b"\x031048576 dfAlive.pdftesthost\n",
]

STAGES = ["queue_select", "control_announce", "control_payload", "data_announce"]


class ScriptedConnection:
    """Records writes and answers reads from a list of ack bytes."""

    def __init__(self, acks: list[bytes]) -> None:
        self.acks = list(acks)
        self.events: list[tuple[str, bytes]] = []
        self.peer = "scripted"
        self.closed = False
        self.fail_writes = False

    @property
    def writes(self) -> list[bytes]:
        return [data for kind, data in self.events if kind == "write"]

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise LaserConnectionError("broken pipe")
        self.events.append(("write", data))
        return len(data)

    def read(self, size: int, timeout: float | None = None) -> bytes:
        reply = self.acks.pop(0) if self.acks else b""
        self.events.append(("read", reply))
        return reply


@pytest.fixture()
def transport() -> Transport:
    return Transport(port=515, ack_timeout_s=0.5)


def _handshake(transport: Transport, conn: ScriptedConnection, job: JobConfig) -> Handshake:
    return Handshake(transport, conn, job)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


class TestFrames:
    def test_control_file(self, job: JobConfig) -> None:
        assert control_file(job) == b"Htesthost\n"

    def test_announce_length_tracks_host(self, job: JobConfig) -> None:
        job = replace(job, client_host="a")
        assert control_announce_frame(job) == b"\x023 cfAlive.pdfa\n"

    def test_empty_queue(self, job: JobConfig) -> None:
        assert queue_frame(replace(job, queue="")) == b"\x02\n"


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestHandshake:
    def test_full_sequence(self, transport: Transport, job: JobConfig) -> None:
        conn = ScriptedConnection([b"\x00"] * 4)
        hs = _handshake(transport, conn, job)
        hs.run()

        assert hs.ready
        assert hs.state is HandshakeState.READY
        assert conn.writes == EXPECTED_FRAMES

    def test_write_ack_alternation(
        self, transport: Transport, job: JobConfig,
    ) -> None:
        conn = ScriptedConnection([b"\x00"] * 4)
        _handshake(transport, conn, job).run()
        assert [kind for kind, _ in conn.events] == ["write", "read"] * 4

    def test_advance_steps_states(
        self, transport: Transport, job: JobConfig,
    ) -> None:
        conn = ScriptedConnection([b"\x00"] * 4)
        hs = _handshake(transport, conn, job)
        states = [hs.advance() for _ in range(4)]
        assert states == [
            HandshakeState.QUEUE_SELECTED,
            HandshakeState.CONTROL_ANNOUNCED,
            HandshakeState.CONTROL_SENT,
            HandshakeState.READY,
        ]

    @pytest.mark.parametrize("stage", range(4))
    def test_rejection_aborts(
        self, transport: Transport, job: JobConfig, stage: int,
    ) -> None:
        acks = [b"\x00"] * stage + [b"\x01"] + [b"\x00"] * (3 - stage)
        conn = ScriptedConnection(acks)
        hs = _handshake(transport, conn, job)

        with pytest.raises(HandshakeRejected) as exc_info:
            hs.run()

        assert hs.state is HandshakeState.ABORTED
        assert conn.writes == EXPECTED_FRAMES[: stage + 1]
        assert exc_info.value.stage == STAGES[stage]
        assert exc_info.value.ack.value == 1
        assert "0x01" in str(exc_info.value)

    def test_missing_ack(self, transport: Transport, job: JobConfig) -> None:
        conn = ScriptedConnection([b"\x00"])
        hs = _handshake(transport, conn, job)

        with pytest.raises(HandshakeRejected) as exc_info:
            hs.run()

        assert exc_info.value.stage == "control_announce"
        assert exc_info.value.ack.value is None
        assert exc_info.value.ack.detail == "short read"
        assert len(conn.writes) == 2

    def test_write_failure_aborts(
        self, transport: Transport, job: JobConfig,
    ) -> None:
        conn = ScriptedConnection([])
        conn.fail_writes = True
        hs = _handshake(transport, conn, job)

        with pytest.raises(LaserConnectionError):
            hs.advance()
        assert hs.state is HandshakeState.ABORTED

    def test_no_transition_after_ready(
        self, transport: Transport, job: JobConfig,
    ) -> None:
        conn = ScriptedConnection([b"\x00"] * 5)
        hs = _handshake(transport, conn, job)
        hs.run()
        with pytest.raises(HandshakeStateError):
            hs.advance()
        assert len(conn.writes) == 4

    def test_no_transition_after_abort(
        self, transport: Transport, job: JobConfig,
    ) -> None:
        conn = ScriptedConnection([b"\x07", b"\x00"])
        hs = _handshake(transport, conn, job)
        with pytest.raises(HandshakeRejected):
            hs.advance()
        with pytest.raises(HandshakeStateError):
            hs.advance()
        assert len(conn.writes) == 1
