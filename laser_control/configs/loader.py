"""Configuration loader for laser job control.

Loads and validates ``laser.yaml`` into typed, frozen dataclasses.
Every value that ends up on the wire (queue, job name, resolution, page
size) and every connection bound comes from the config -- nothing is
hardcoded in the protocol modules.

Usage::

    from laser_control.configs.loader import load_config
    cfg = load_config()                     # default path
    cfg = load_config("/custom/laser.yaml") # explicit path
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from laser_control.utils.fs import load_yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def short_hostname() -> str:
    """Return the local host name truncated at the first ``.``."""
    return socket.gethostname().split(".", 1)[0]


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """TCP connection and acknowledgement bounds.

    ``connect_attempts`` and ``watchdog_s`` are independent: the first is
    the number of resolve/connect iterations, the second a wall-clock
    bound on the whole connect operation.  ``watchdog_s=None`` uses
    ``connect_attempts`` seconds.
    """

    port: int | str = "printer"
    connect_attempts: int = 60
    attempt_timeout_s: float = 10.0
    watchdog_s: float | None = None
    retry_interval_s: float = 1.0
    ack_timeout_s: float = 10.0
    io_timeout_s: float | None = None

    @property
    def watchdog_bound_s(self) -> float:
        """Effective wall-clock bound for ``connect``."""
        if self.watchdog_s is None:
            return float(self.connect_attempts)
        return self.watchdog_s


@dataclass(frozen=True)
class JobConfig:
    """Per-job settings, immutable for the job's lifetime.

    ``job_name`` names the LPD control/data files (``cfA<job_name><host>``);
    ``title`` is the PJL ``JOB NAME``.  ``client_host`` is the host name
    announced in the control file.
    """

    host: str
    queue: str = ""
    user: str = "user"
    job_name: str = "live.pdf"
    title: str = "live-test"
    job_size: int = 1 << 20
    resolution: int = 1200
    width: int = 8
    height: int = 8
    auto_focus: bool = False
    client_host: str = field(default_factory=short_hostname)


@dataclass(frozen=True)
class VectorDefaults:
    """Vector parameters emitted right after entering vector mode."""

    frequency: int = 5000
    power: int = 100
    speed: int = 5


@dataclass(frozen=True)
class LoggingConfig:
    """Arguments for ``setup_logging``.

    ``rotate_max_bytes`` of 0 writes one unbounded log file; a positive
    value rolls the file over at that size, keeping ``rotate_backups``
    old copies.
    """

    level: str = "INFO"
    file: str | None = None
    json: bool = False
    color: bool = True
    rotate_max_bytes: int = 0
    rotate_backups: int = 5


@dataclass(frozen=True)
class LaserConfig:
    """Complete configuration loaded from ``laser.yaml``."""

    connection: ConnectionConfig
    job: JobConfig
    vector: VectorDefaults = field(default_factory=VectorDefaults)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Internal parsing helpers
# ---------------------------------------------------------------------------


def _parse_port(raw: Any) -> int | str:
    """Accept an integer port or a service name such as ``printer``."""
    if isinstance(raw, bool):
        raise ConfigError(f"connection.port must be int or str, got {raw!r}")
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if text.isdigit():
        return int(text)
    return text


def _section(
    data: dict[str, Any], name: str, required: bool = False,
) -> dict[str, Any]:
    """Return the mapping under *name*; absent optional sections are empty."""
    if name not in data or data[name] is None:
        if required:
            raise ConfigError(f"Missing required configuration key: '{name}'")
        return {}
    section = data[name]
    if not isinstance(section, dict):
        raise ConfigError(
            f"Section '{name}' must be a mapping, got {type(section).__name__}"
        )
    return section


def _optional_float(raw: Any) -> float | None:
    return None if raw is None else float(raw)


def _parse_connection(data: dict[str, Any]) -> ConnectionConfig:
    return ConnectionConfig(
        port=_parse_port(data.get("port", "printer")),
        connect_attempts=int(data.get("connect_attempts", 60)),
        attempt_timeout_s=float(data.get("attempt_timeout_s", 10.0)),
        watchdog_s=_optional_float(data.get("watchdog_s")),
        retry_interval_s=float(data.get("retry_interval_s", 1.0)),
        ack_timeout_s=float(data.get("ack_timeout_s", 10.0)),
        io_timeout_s=_optional_float(data.get("io_timeout_s")),
    )


def _parse_job(data: dict[str, Any]) -> JobConfig:
    client_host = data.get("client_host")
    return JobConfig(
        host=str(data["host"]),
        queue=str(data.get("queue", "") or ""),
        user=str(data.get("user", "user")),
        job_name=str(data.get("job_name", "live.pdf")),
        title=str(data.get("title", "live-test")),
        job_size=int(data.get("job_size", 1 << 20)),
        resolution=int(data.get("resolution", 1200)),
        width=int(data.get("width", 8)),
        height=int(data.get("height", 8)),
        auto_focus=bool(data.get("auto_focus", False)),
        client_host=str(client_host) if client_host else short_hostname(),
    )


def _parse_vector(data: dict[str, Any]) -> VectorDefaults:
    return VectorDefaults(
        frequency=int(data.get("frequency", 5000)),
        power=int(data.get("power", 100)),
        speed=int(data.get("speed", 5)),
    )


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    log_file = data.get("file")
    rotate = _section(data, "rotate")
    return LoggingConfig(
        level=str(data.get("level", "INFO")).upper(),
        file=str(log_file) if log_file else None,
        json=bool(data.get("json", False)),
        color=bool(data.get("color", True)),
        rotate_max_bytes=int(rotate.get("max_bytes", 0)),
        rotate_backups=int(rotate.get("backup_count", 5)),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_frame_field(name: str, value: str, *, allow_empty: bool) -> None:
    """Reject values that would corrupt an LPD or PJL frame."""
    if not value and not allow_empty:
        raise ConfigError(f"job.{name} must not be empty")
    if not value.isascii():
        raise ConfigError(f"job.{name} must be ASCII, got {value!r}")
    if any(ch.isspace() or ord(ch) < 0x20 for ch in value):
        raise ConfigError(
            f"job.{name} must not contain whitespace or control "
            f"characters, got {value!r}"
        )


def validate_config(cfg: LaserConfig) -> None:
    """Validate cross-field consistency.

    Raises
    ------
    ConfigError
        On any invalid combination.
    """
    # -- Connection bounds ---------------------------------------------------
    c = cfg.connection
    if c.connect_attempts < 1:
        raise ConfigError(
            f"connect_attempts must be >= 1, got {c.connect_attempts}"
        )
    if c.attempt_timeout_s <= 0:
        raise ConfigError(
            f"attempt_timeout_s must be > 0, got {c.attempt_timeout_s}"
        )
    if c.watchdog_s is not None and c.watchdog_s <= 0:
        raise ConfigError(f"watchdog_s must be > 0, got {c.watchdog_s}")
    if c.retry_interval_s < 0:
        raise ConfigError(
            f"retry_interval_s must be >= 0, got {c.retry_interval_s}"
        )
    if c.ack_timeout_s <= 0:
        raise ConfigError(f"ack_timeout_s must be > 0, got {c.ack_timeout_s}")
    if c.io_timeout_s is not None and c.io_timeout_s <= 0:
        raise ConfigError(f"io_timeout_s must be > 0, got {c.io_timeout_s}")
    if isinstance(c.port, int) and not 0 < c.port < 65536:
        raise ConfigError(f"port must be in 1..65535, got {c.port}")

    # -- Job naming goes verbatim into frames --------------------------------
    j = cfg.job
    if not j.host:
        raise ConfigError("job.host must not be empty")
    _check_frame_field("queue", j.queue, allow_empty=True)
    _check_frame_field("job_name", j.job_name, allow_empty=False)
    _check_frame_field("client_host", j.client_host, allow_empty=False)
    if not j.title.isascii() or "\n" in j.title or "\r" in j.title:
        raise ConfigError(
            f"job.title must be single-line ASCII, got {j.title!r}"
        )

    # -- Device geometry ----------------------------------------------------
    if j.job_size <= 0:
        raise ConfigError(f"job.job_size must be > 0, got {j.job_size}")
    for name in ("resolution", "width", "height"):
        value = getattr(j, name)
        if value <= 0:
            raise ConfigError(f"job.{name} must be > 0, got {value}")

    # -- Vector defaults ----------------------------------------------------
    v = cfg.vector
    for name in ("frequency", "power", "speed"):
        value = getattr(v, name)
        if value < 0:
            raise ConfigError(f"vector.{name} must be >= 0, got {value}")

    # -- Logging ------------------------------------------------------------
    lg = cfg.logging
    if lg.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"logging.level is not a log level: {lg.level!r}")
    if lg.rotate_max_bytes < 0:
        raise ConfigError(
            f"logging.rotate.max_bytes must be >= 0, got {lg.rotate_max_bytes}"
        )
    if lg.rotate_backups < 0:
        raise ConfigError(
            f"logging.rotate.backup_count must be >= 0, got {lg.rotate_backups}"
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> LaserConfig:
    """Load and validate laser configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``laser.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    LaserConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "laser.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    try:
        data = load_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigError(str(exc)) from exc
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")
    if not isinstance(data, dict):
        raise ConfigError(
            f"Top level of {path} must be a mapping, got {type(data).__name__}"
        )

    try:
        config = LaserConfig(
            connection=_parse_connection(_section(data, "connection")),
            job=_parse_job(_section(data, "job", required=True)),
            vector=_parse_vector(_section(data, "vector")),
            logging=_parse_logging(_section(data, "logging")),
        )
    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc

    validate_config(config)
    logger.info("Configuration loaded successfully")
    return config
