"""
Laser Control Package.

Drives a network-attached laser cutter over one TCP stream: an LPD-style
job submission handshake followed by a PJL/PCL framed HP-GL/2 vector
stream.

Subpackages:
    hardware: transport, handshake, job driver, operator-paced point source
    job_ir: vector commands and path helpers
    pcl: PJL/PCL/HP-GL byte serialization
    configs: job and connection configuration loading and validation
    utils: logging configuration and YAML/file helpers
"""

__all__ = ["hardware", "job_ir", "pcl", "configs", "utils"]
