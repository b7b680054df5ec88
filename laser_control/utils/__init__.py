"""Cross-cutting utilities (lowest dependency layer).

Provides:
    - YAML loading and atomic writes (fs)
    - Unified logging (logging_config)

No module in utils/ may import from upper layers (hardware, pcl, configs).
"""

from . import fs
from . import logging_config

__all__ = ["fs", "logging_config"]
