"""
Vector command module.

Defines the vector commands a point source may produce as immutable
dataclasses, plus helpers that turn coordinate lists into moves.

All coordinates are in device units.
"""

from laser_control.job_ir.operations import (
    PenMove,
    Point,
    VectorCommand,
    VectorParams,
    polyline,
    square,
)

__all__ = [
    "PenMove",
    "Point",
    "VectorCommand",
    "VectorParams",
    "polyline",
    "square",
]
