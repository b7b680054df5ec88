"""Job driver -- one laser job from connect to disconnect.

Sequence::

    connect -> handshake -> header -> vector init + default params
            -> vector commands (one at a time, from the point source)
            -> vector end -> footer -> disconnect

Phases are recorded in order (``CONNECT, HANDSHAKE, HEADER, VECTOR,
FOOTER, DISCONNECT``).  Vector commands are accepted only in ``VECTOR``:
never before the device is in HP-GL/2 mode and never once the footer has
started.

The point source may run indefinitely.  The driver serializes each
command before pulling the next one.  ``cancel()`` stops pulling at the
next command boundary; the job still closes with vector end and footer.
The configuration is validated before connecting.  Any ``LaserError``
is fatal: the connection is closed and the error re-raised.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Iterable

from laser_control.configs.loader import ConfigError, LaserConfig, validate_config
from laser_control.hardware.handshake import Handshake
from laser_control.hardware.transport import Connection, LaserError, Transport
from laser_control.job_ir.operations import VectorCommand
from laser_control.pcl.serializer import (
    emit_command,
    emit_job_footer,
    emit_job_header,
    emit_vector_end,
    emit_vector_init,
    emit_vector_param,
)
from laser_control.utils.logging_config import pop_context, push_context

logger = logging.getLogger(__name__)


class JobStateError(LaserError):
    """A command was issued outside the phase that allows it."""

    pass


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class JobPhase(Enum):
    """Current job-driver phase."""

    IDLE = auto()
    CONNECT = auto()
    HANDSHAKE = auto()
    HEADER = auto()
    VECTOR = auto()
    FOOTER = auto()
    DISCONNECT = auto()
    DONE = auto()
    ERROR = auto()


@dataclass
class JobProgress:
    """Execution progress snapshot."""

    phase: JobPhase
    commands_sent: int = 0
    cancelled: bool = False
    message: str = ""
    history: list[JobPhase] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class JobDriver:
    """Run one job against the device.

    Parameters
    ----------
    config : LaserConfig
        Job, connection and vector defaults.
    transport : Transport | None
        Connection factory.  Defaults to one built from
        ``config.connection``.
    """

    def __init__(
        self,
        config: LaserConfig,
        transport: Transport | None = None,
    ) -> None:
        self._cfg = config
        self._transport = transport or Transport.from_config(config.connection)
        self._conn: Connection | None = None

        self._cancel_flag = threading.Event()
        self._progress_cb: Callable[[JobProgress], None] | None = None
        self._progress = JobProgress(phase=JobPhase.IDLE)

    # ------------------------------------------------------------------
    # Common
    # ------------------------------------------------------------------

    @property
    def phase(self) -> JobPhase:
        """Current phase."""
        return self._progress.phase

    @property
    def phase_history(self) -> list[JobPhase]:
        """Phases entered during the last run, in order."""
        return list(self._progress.history)

    def set_progress_callback(
        self, fn: Callable[[JobProgress], None],
    ) -> None:
        """Register a callback invoked on phase changes and commands."""
        self._progress_cb = fn

    def cancel(self) -> None:
        """Stop consuming the point source at the next command boundary."""
        self._cancel_flag.set()
        logger.info("Job cancel requested")

    def _notify(self, **kwargs: object) -> None:
        for k, v in kwargs.items():
            if hasattr(self._progress, k):
                setattr(self._progress, k, v)
        if self._progress_cb is not None:
            try:
                self._progress_cb(self._progress)
            except Exception as exc:  # noqa: BLE001
                logger.error("Progress callback error: %s", exc)

    def _enter(self, phase: JobPhase, message: str = "") -> None:
        self._progress.phase = phase
        self._progress.history.append(phase)
        logger.debug("Job phase -> %s", phase.name)
        self._notify(message=message or phase.name.lower())

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, commands: Iterable[VectorCommand]) -> JobProgress:
        """Execute the whole job.

        Parameters
        ----------
        commands : Iterable[VectorCommand]
            Point source.  Pulled lazily, one command at a time.

        Returns
        -------
        JobProgress
            Final snapshot (phase ``DONE``).

        Raises
        ------
        ConfigError
            If the configuration cannot be framed (e.g. a non-ASCII client
            host name).  Nothing is sent.
        LaserError
            Connect, handshake or write failure.  The connection is closed
            before the error propagates.
        """
        job = self._cfg.job
        self._cancel_flag.clear()
        self._progress = JobProgress(phase=JobPhase.IDLE)
        push_context(job=job.title, host=job.host)

        try:
            validate_config(self._cfg)

            self._enter(JobPhase.CONNECT, f"Connecting to {job.host}")
            self._conn = self._transport.connect(job.host)

            self._enter(JobPhase.HANDSHAKE)
            Handshake(self._transport, self._conn, job).run()

            self._enter(JobPhase.HEADER)
            emit_job_header(self._conn, job)

            self._enter(JobPhase.VECTOR)
            emit_vector_init(self._conn, job)
            v = self._cfg.vector
            emit_vector_param(self._conn, v.frequency, v.power, v.speed)
            self._stream(commands)
            emit_vector_end(self._conn)

            self._enter(JobPhase.FOOTER)
            emit_job_footer(self._conn)

            self._enter(JobPhase.DISCONNECT)
            self._close()
        except (LaserError, ConfigError) as exc:
            self._progress.phase = JobPhase.ERROR
            logger.error("Job %s failed: %s", job.title, exc)
            self._notify(message=str(exc))
            raise
        finally:
            # Also reached on KeyboardInterrupt from the point source
            self._close()
            pop_context(keys=["job", "host"])

        self._progress.phase = JobPhase.DONE
        self._notify(message="Complete")
        logger.info(
            "Job %s complete (%d commands)",
            job.title,
            self._progress.commands_sent,
        )
        return self._progress

    def send(self, command: VectorCommand) -> None:
        """Serialize one vector command.

        Raises
        ------
        JobStateError
            Outside the ``VECTOR`` phase.
        """
        if self.phase is not JobPhase.VECTOR or self._conn is None:
            raise JobStateError(
                f"Vector command {command!r} not allowed in phase "
                f"{self.phase.name}"
            )
        emit_command(self._conn, command)
        self._notify(commands_sent=self._progress.commands_sent + 1)

    def _stream(self, commands: Iterable[VectorCommand]) -> None:
        source = iter(commands)
        sent = 0
        while not self._cancel_flag.is_set():
            try:
                command = next(source)
            except StopIteration:
                return
            # The source may block; a cancel can arrive meanwhile
            if self._cancel_flag.is_set():
                break
            logger.info("Sending command %d: %s", sent, command)
            self.send(command)
            sent += 1
        logger.info("Vector stream cancelled after %d commands", sent)
        self._notify(cancelled=True, message="Cancelled")

    def _close(self) -> None:
        if self._conn is not None:
            if not self._conn.closed:
                self._transport.disconnect(self._conn)
            self._conn = None
