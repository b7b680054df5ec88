"""Vector commands -- the vocabulary between a point source and the wire.

Every vector action is an immutable, slotted dataclass.  Coordinates are
**device units** (integers, origin at the page corner) and are written to
the HPGL stream verbatim, so no scaling happens after this layer.

A point source produces a stream of these commands; the job driver
serializes each one before accepting the next.  Nothing is retained.
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from typing import Iterable

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Point = tuple[int, int]
"""One ``(x, y)`` coordinate pair in device units."""


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VectorCommand(ABC):
    """Base class for all vector commands."""

    pass


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PenMove(VectorCommand):
    """Move to an absolute position with the beam on or off.

    Parameters
    ----------
    pen_down : bool
        ``True`` cuts along the move (``PD``), ``False`` travels (``PU``).
    x, y : int
        Target position in device units.  Must be non-negative.
    """

    pen_down: bool
    x: int
    y: int

    def __post_init__(self) -> None:
        for axis, val in (("x", self.x), ("y", self.y)):
            if isinstance(val, bool) or not isinstance(val, int):
                raise TypeError(
                    f"PenMove {axis} must be an int, got {val!r}"
                )
            if val < 0:
                raise ValueError(
                    f"PenMove {axis} must be >= 0, got {val}"
                )


@dataclass(frozen=True, slots=True)
class VectorParams(VectorCommand):
    """Set vector frequency, power and speed.

    Out-of-range values are not rejected here; the serializer clamps them
    into the fixed-width wire fields.
    """

    frequency: int
    power: int
    speed: int


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def square(size: int = 1200, origin: Point = (0, 0)) -> list[Point]:
    """Corners of an axis-aligned square, counter-clockwise from *origin*.

    Parameters
    ----------
    size : int
        Edge length in device units (1200 = one inch at 1200 dpi).
    origin : Point
        Lower-left corner.

    Returns
    -------
    list[Point]
        Four corners; the path is closed by returning to the first.
    """
    if size <= 0:
        raise ValueError(f"square size must be > 0, got {size}")
    ox, oy = origin
    return [
        (ox, oy),
        (ox + size, oy),
        (ox + size, oy + size),
        (ox, oy + size),
    ]


def polyline(points: Iterable[Point], travel_first: bool = True) -> list[PenMove]:
    """Build moves that trace *points* in order.

    Parameters
    ----------
    points : Iterable[Point]
        Ordered vertices in device units.
    travel_first : bool
        If ``True``, the first vertex is reached with the pen up so the
        cut starts there; otherwise every move cuts.

    Returns
    -------
    list[PenMove]
    """
    moves: list[PenMove] = []
    for idx, (x, y) in enumerate(points):
        pen_down = not (travel_first and idx == 0)
        moves.append(PenMove(pen_down=pen_down, x=x, y=y))
    return moves
