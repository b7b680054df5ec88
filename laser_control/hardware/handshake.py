"""LPD-style job submission handshake.

The device accepts a job the way a line-printer daemon does (RFC 1179,
"receive a printer job"): every frame is acknowledged with a single
``0x00`` byte before the next one may be sent.  There is no pipelining and
no retry -- a rejection at any stage ends the job.

State machine::

    IDLE --queue select--> QUEUE_SELECTED
         --control announce--> CONTROL_ANNOUNCED
         --control payload--> CONTROL_SENT
         --data announce--> READY

    any non-terminal state --rejected ack--> ABORTED

Frames (``<host>`` is the client host name from the job config)::

    \\x02<queue>\\n
    \\x02<len> cfA<job_name><host>\\n      <len> = len("H<host>\\n")
    H<host>\\n\\0
    \\x03<job_size> dfA<job_name><host>\\n

Once ``READY``, the data file itself (the PCL stream) follows on the same
connection.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from laser_control.configs.loader import JobConfig
from laser_control.hardware.transport import (
    AckResult,
    Connection,
    LaserError,
    Transport,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HandshakeError(LaserError):
    """Base class for handshake failures."""

    pass


class HandshakeRejected(HandshakeError):
    """The device did not acknowledge a frame.

    Attributes
    ----------
    stage : str
        Name of the transition that failed (e.g. ``"control_payload"``).
    ack : AckResult
        Raw acknowledgement outcome (value is ``None`` on read failure).
    """

    def __init__(self, stage: str, ack: AckResult) -> None:
        self.stage = stage
        self.ack = ack
        value = "none" if ack.value is None else f"0x{ack.value:02x}"
        super().__init__(
            f"Handshake rejected at {stage}: ack={value} ({ack.detail})"
        )


class HandshakeStateError(HandshakeError):
    """A transition was requested from a terminal state."""

    pass


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


def control_file(job: JobConfig) -> bytes:
    """Control-file body: the host line, without the trailing NUL."""
    return f"H{job.client_host}\n".encode("ascii")


def queue_frame(job: JobConfig) -> bytes:
    return f"\x02{job.queue}\n".encode("ascii")


def control_announce_frame(job: JobConfig) -> bytes:
    size = len(control_file(job))
    return f"\x02{size} cfA{job.job_name}{job.client_host}\n".encode("ascii")


def control_payload_frame(job: JobConfig) -> bytes:
    return control_file(job) + b"\0"


def data_announce_frame(job: JobConfig) -> bytes:
    return (
        f"\x03{job.job_size} dfA{job.job_name}{job.client_host}\n"
    ).encode("ascii")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class HandshakeState(Enum):
    """Handshake progress; each value names the last acknowledged frame."""

    IDLE = "idle"
    QUEUE_SELECTED = "queue_selected"
    CONTROL_ANNOUNCED = "control_announced"
    CONTROL_SENT = "control_sent"
    READY = "ready"
    ABORTED = "aborted"


# state -> (stage name, frame builder, next state)
_TRANSITIONS: dict[
    HandshakeState, tuple[str, Callable[[JobConfig], bytes], HandshakeState]
] = {
    HandshakeState.IDLE: (
        "queue_select", queue_frame, HandshakeState.QUEUE_SELECTED,
    ),
    HandshakeState.QUEUE_SELECTED: (
        "control_announce", control_announce_frame,
        HandshakeState.CONTROL_ANNOUNCED,
    ),
    HandshakeState.CONTROL_ANNOUNCED: (
        "control_payload", control_payload_frame, HandshakeState.CONTROL_SENT,
    ),
    HandshakeState.CONTROL_SENT: (
        "data_announce", data_announce_frame, HandshakeState.READY,
    ),
}


class Handshake:
    """Drive the submission handshake over one connection.

    Parameters
    ----------
    transport : Transport
        Provides ``read_ack``.
    conn : Connection
        Freshly opened connection.
    job : JobConfig
        Queue, job name, job size and client host.
    """

    def __init__(
        self,
        transport: Transport,
        conn: Connection,
        job: JobConfig,
    ) -> None:
        self._transport = transport
        self._conn = conn
        self._job = job
        self._state = HandshakeState.IDLE

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is HandshakeState.READY

    def advance(self) -> HandshakeState:
        """Send the next frame and wait for its acknowledgement.

        Returns
        -------
        HandshakeState
            The new state.

        Raises
        ------
        HandshakeRejected
            If the ack is missing or non-zero.  The state becomes
            ``ABORTED``.
        HandshakeStateError
            If called in ``READY`` or ``ABORTED``.
        """
        if self._state not in _TRANSITIONS:
            raise HandshakeStateError(
                f"No transition from {self._state.name}"
            )
        stage, build, next_state = _TRANSITIONS[self._state]
        frame = build(self._job)

        logger.debug("Handshake %s: sending %r", stage, frame)
        try:
            self._conn.write(frame)
        except LaserError:
            self._state = HandshakeState.ABORTED
            raise

        ack = self._transport.read_ack(self._conn)
        if not ack.ok:
            self._state = HandshakeState.ABORTED
            raise HandshakeRejected(stage, ack)

        self._state = next_state
        logger.debug("Handshake state -> %s", next_state.name)
        return next_state

    def run(self) -> None:
        """Run every remaining transition until ``READY``."""
        logger.info(
            "Submitting job %s to queue '%s'", self._job.job_name, self._job.queue,
        )
        while self._state is not HandshakeState.READY:
            self.advance()
        logger.info("Device ready for data file")
