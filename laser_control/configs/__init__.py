"""Job and connection configuration loading and validation."""

from laser_control.configs.loader import (
    ConfigError,
    ConnectionConfig,
    JobConfig,
    LaserConfig,
    LoggingConfig,
    VectorDefaults,
    load_config,
    validate_config,
)

__all__ = [
    "ConfigError",
    "ConnectionConfig",
    "JobConfig",
    "LaserConfig",
    "LoggingConfig",
    "VectorDefaults",
    "load_config",
    "validate_config",
]
