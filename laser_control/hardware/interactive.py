"""Operator-paced point source.

Yields one ``PenMove`` at a time for the job driver.  The first point is
produced immediately; every later point waits for the operator (Enter by
default).  Typing ``q`` or closing stdin ends the stream, after which the
driver closes the job with vector end and footer.

Used for live alignment: the head steps around a shape corner by corner
while the operator watches.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterator, Sequence

from laser_control.job_ir.operations import PenMove, Point

logger = logging.getLogger(__name__)

QUIT_REPLIES = frozenset({"q", "quit", "exit"})


class StepPointSource:
    """Iterate over *points*, pausing for the operator between points.

    Parameters
    ----------
    points : Sequence[Point]
        Device-unit coordinates, in order.
    pen_down : bool
        Cut (``True``) or travel (``False``) to every point.
    wait : callable
        Called with a prompt before each point after the first; returns
        the operator's reply.  Defaults to ``input``.
    loop : bool
        Start over after the last point.
    max_points : int | None
        Stop after this many points.  ``None`` is unbounded.
    """

    def __init__(
        self,
        points: Sequence[Point],
        pen_down: bool = True,
        wait: Callable[[str], str] = input,
        loop: bool = True,
        max_points: int | None = None,
    ) -> None:
        if not points:
            raise ValueError("StepPointSource needs at least one point")
        self._points = list(points)
        self._pen_down = pen_down
        self._wait = wait
        self._loop = loop
        self._max_points = max_points
        self.produced = 0

    def __iter__(self) -> Iterator[PenMove]:
        idx = 0
        while self._max_points is None or self.produced < self._max_points:
            if idx >= len(self._points):
                if not self._loop:
                    return
                idx = 0

            if self.produced > 0 and not self._operator_continues():
                return

            x, y = self._points[idx]
            logger.debug("Point %d: (%d, %d)", idx, x, y)
            self.produced += 1
            yield PenMove(pen_down=self._pen_down, x=x, y=y)
            idx += 1

    def _operator_continues(self) -> bool:
        try:
            reply = self._wait("Enter for next point, q to finish: ")
        except EOFError:
            logger.info("Input closed; ending point stream")
            return False
        if reply.strip().lower() in QUIT_REPLIES:
            logger.info("Operator ended point stream")
            return False
        return True
