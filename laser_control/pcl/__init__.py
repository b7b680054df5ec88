"""
PCL/HPGL serialization module.

Formats PJL job bracketing, PCL page setup and the HP-GL/2 vector stream
as byte frames and writes them to a connection.
"""

from laser_control.pcl.serializer import (
    BufferConnection,
    SerializerError,
    emit_command,
    emit_job_footer,
    emit_job_header,
    emit_moveto,
    emit_vector_end,
    emit_vector_init,
    emit_vector_param,
    render_job,
)

__all__ = [
    "BufferConnection",
    "SerializerError",
    "emit_command",
    "emit_job_footer",
    "emit_job_header",
    "emit_moveto",
    "emit_vector_end",
    "emit_vector_init",
    "emit_vector_param",
    "render_job",
]
