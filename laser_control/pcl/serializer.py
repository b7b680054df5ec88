"""PCL/HPGL serializer -- job framing and vector commands as bytes.

Byte layout of one job's data file::

    header       PJL job bracket, enter PCL, autofocus, registration,
                 resolution, cursor to origin
    vector init  re-enter PCL, raster geometry, switch to HP-GL/2 (IN;)
    vector ops   XR....;YP...;ZS...;  and  PD<x>,<y>; / PU<x>,<y>;
    vector end   leave HP-GL/2
    footer       reset, universal exit, PJL EOJ, 4096 NUL bytes

``format_*`` functions are pure and return the frame; ``emit_*`` functions
write it to a connection in a single ``write`` call.  A short write is
fatal: the device parser cannot resynchronise after a truncated escape
sequence, so ``ShortWrite`` propagates unchanged.

Field widths in ``XR``/``YP``/``ZS`` are fixed by the device firmware.
Values outside a field are clamped to its range rather than rejected, so
the output always matches ``XR\\d{4};YP\\d{3};ZS\\d{3};``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from laser_control.configs.loader import JobConfig, VectorDefaults
from laser_control.job_ir.operations import PenMove, VectorCommand, VectorParams

logger = logging.getLogger(__name__)

ESC = "\x1b"
UEL = f"{ESC}%-12345X"  # universal exit language
ENTER_PCL = f"{ESC}E@PJL ENTER LANGUAGE=PCL\r\n"

FOOTER_PAD_BYTES = 4096

FREQUENCY_DIGITS = 4
POWER_DIGITS = 3
SPEED_DIGITS = 3


class SerializerError(Exception):
    """Raised when a command cannot be serialized."""

    pass


class FrameSink(Protocol):
    """Anything frames can be written to (``Connection``, ``BufferConnection``)."""

    def write(self, data: bytes) -> int: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fixed(value: int, digits: int) -> str:
    """Zero-padded decimal clamped into a *digits*-wide field."""
    clamped = min(max(int(value), 0), 10 ** digits - 1)
    return f"{clamped:0{digits}d}"


def _send(conn: FrameSink, frame: str | bytes) -> None:
    data = frame.encode("ascii") if isinstance(frame, str) else frame
    logger.debug("sending %r", data[:80])
    conn.write(data)


# ---------------------------------------------------------------------------
# Frame formatting
# ---------------------------------------------------------------------------


def format_job_header(job: JobConfig) -> bytes:
    """PJL job bracket and PCL page setup."""
    return "".join([
        f"{UEL}@PJL JOB NAME={job.title}\r\n",
        ENTER_PCL,
        f"{ESC}&y{int(job.auto_focus)}A",
        # Left (long-edge) and top (short-edge) offset registration
        f"{ESC}&l0U",
        f"{ESC}&l0Z",
        f"{ESC}&u{job.resolution}D",
        f"{ESC}*p0X",
        f"{ESC}*p0Y",
        f"{ESC}*t{job.resolution}R",
    ]).encode("ascii")


def format_vector_init(job: JobConfig) -> bytes:
    """Raster geometry, then switch into HP-GL/2."""
    return "".join([
        ENTER_PCL,
        f"{ESC}*r0F",
        f"{ESC}*r{job.height}T",
        f"{ESC}*r{job.width}S",
        f"{ESC}*r1A",
        f"{ESC}*rC",
        f"{ESC}%1B",
        "IN;",
    ]).encode("ascii")


def format_vector_param(frequency: int, power: int, speed: int) -> bytes:
    """``XR<freq:4>;YP<power:3>;ZS<speed:3>;`` with clamped fields."""
    return (
        f"XR{_fixed(frequency, FREQUENCY_DIGITS)};"
        f"YP{_fixed(power, POWER_DIGITS)};"
        f"ZS{_fixed(speed, SPEED_DIGITS)};"
    ).encode("ascii")


def format_moveto(pen_down: bool, x: int, y: int) -> bytes:
    """``PD<x>,<y>;`` or ``PU<x>,<y>;`` in device units."""
    if x < 0 or y < 0:
        raise ValueError(f"Coordinates must be non-negative, got ({x}, {y})")
    return f"P{'D' if pen_down else 'U'}{int(x)},{int(y)};".encode("ascii")


def format_vector_end() -> bytes:
    return f"{ESC}%0B".encode("ascii")


def format_job_footer() -> bytes:
    """Reset, exit language, end job, then pad with NUL bytes."""
    text = f"{ESC}E{UEL}@PJL EOJ \r\n".encode("ascii")
    return text + bytes(FOOTER_PAD_BYTES)


def format_command(command: VectorCommand) -> bytes:
    """Format any vector command."""
    if isinstance(command, PenMove):
        return format_moveto(command.pen_down, command.x, command.y)
    if isinstance(command, VectorParams):
        return format_vector_param(
            command.frequency, command.power, command.speed,
        )
    raise SerializerError(
        f"Unsupported vector command: {type(command).__name__}"
    )


# ---------------------------------------------------------------------------
# Emission
# ---------------------------------------------------------------------------


def emit_job_header(conn: FrameSink, job: JobConfig) -> None:
    _send(conn, format_job_header(job))


def emit_vector_init(conn: FrameSink, job: JobConfig) -> None:
    _send(conn, format_vector_init(job))


def emit_vector_param(
    conn: FrameSink, frequency: int, power: int, speed: int,
) -> None:
    _send(conn, format_vector_param(frequency, power, speed))


def emit_moveto(conn: FrameSink, pen_down: bool, x: int, y: int) -> None:
    _send(conn, format_moveto(pen_down, x, y))


def emit_vector_end(conn: FrameSink) -> None:
    _send(conn, format_vector_end())


def emit_job_footer(conn: FrameSink) -> None:
    _send(conn, format_job_footer())


def emit_command(conn: FrameSink, command: VectorCommand) -> None:
    _send(conn, format_command(command))


# ---------------------------------------------------------------------------
# In-memory sink (dry runs)
# ---------------------------------------------------------------------------


class BufferConnection:
    """Frame sink that records every write in memory.

    Has the same ``write`` contract as ``Connection``: one call per frame,
    returns the number of bytes accepted.
    """

    def __init__(self) -> None:
        self.frames: list[bytes] = []

    def write(self, data: bytes) -> int:
        self.frames.append(bytes(data))
        return len(data)

    def getvalue(self) -> bytes:
        return b"".join(self.frames)


def render_job(
    job: JobConfig,
    commands: Iterable[VectorCommand],
    params: VectorDefaults | None = None,
) -> bytes:
    """Serialize the complete data file for *commands* without a device.

    Parameters
    ----------
    job : JobConfig
        Job settings (title, resolution, page size).
    commands : Iterable[VectorCommand]
        Vector commands in emission order.
    params : VectorDefaults | None
        Parameters emitted after vector init.  ``None`` uses the defaults.

    Returns
    -------
    bytes
        Header, vector init, parameters, commands, vector end and footer.
    """
    params = params or VectorDefaults()
    sink = BufferConnection()
    emit_job_header(sink, job)
    emit_vector_init(sink, job)
    emit_vector_param(sink, params.frequency, params.power, params.speed)
    for command in commands:
        emit_command(sink, command)
    emit_vector_end(sink)
    emit_job_footer(sink)
    return sink.getvalue()
