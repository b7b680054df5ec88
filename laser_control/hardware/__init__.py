"""
Hardware communication module.

Provides the TCP transport, the LPD-style submission handshake, the job
driver that sequences a complete laser job, and an operator-paced point
source.
"""

from laser_control.hardware.handshake import Handshake, HandshakeState
from laser_control.hardware.interactive import StepPointSource
from laser_control.hardware.job_driver import JobDriver, JobPhase
from laser_control.hardware.transport import Connection, Transport

__all__ = [
    "Connection",
    "Handshake",
    "HandshakeState",
    "JobDriver",
    "JobPhase",
    "StepPointSource",
    "Transport",
]
