"""Log output for the live laser CLI.

Library modules only ever call ``logging.getLogger(__name__)``.  This
module decides where their records go:
    - stderr, one human-readable line per record (coloured on a TTY)
    - optionally a log file, human or JSON lines, rolled over by size
    - job fields pushed with ``push_context`` appended to every record

Line formats:
    Human: 2025-10-28T13:45:12.345Z | INFO     | job=live-test host=192.168.3.4 | Connected
    JSON:  {"t": "2025-10-28T13:45:12.345000+00:00", "lvl": "INFO", "job": "live-test", "msg": "Connected"}

Context lives in a ``contextvars.ContextVar`` so the connect watchdog
thread never sees a half-updated mapping.  Calling ``setup_logging`` again
replaces the handlers it installed earlier instead of stacking new ones.
"""

import contextvars
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


_context_var: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    'laser_log_context', default={}
)

# Handlers installed by the last setup_logging() call
_installed: List[logging.Handler] = []

_LEVEL_COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARNING': '\033[33m',
    'ERROR': '\033[31m',
    'CRITICAL': '\033[35m',
}
_RESET = '\033[0m'


class ContextFormatter(logging.Formatter):
    """Render a record with the current context fields.

    Parameters
    ----------
    fmt_mode : str
        ``"human"`` for pipe-separated lines, ``"json"`` for JSON lines.
    use_color : bool
        Colour the level name.  Callers decide whether the stream is a TTY.
    """

    def __init__(self, fmt_mode: str = "human", use_color: bool = False):
        super().__init__()
        if fmt_mode not in ("human", "json"):
            raise ValueError(f"Unknown log format: {fmt_mode}")
        self.fmt_mode = fmt_mode
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        fields = _context_var.get()

        if self.fmt_mode == "json":
            entry: Dict[str, Any] = {
                't': ts.isoformat(),
                'lvl': record.levelname,
                'name': record.name,
                'pid': os.getpid(),
            }
            entry.update(fields)
            entry['msg'] = record.getMessage()
            if record.exc_info:
                entry['exc'] = self.formatException(record.exc_info)
            return json.dumps(entry, default=str)

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(record.levelname, '')}{level}{_RESET}"
        stamp = ts.strftime('%Y-%m-%dT%H:%M:%S.') + f"{ts.microsecond // 1000:03d}Z"

        parts = [stamp, level]
        if fields:
            parts.append(' '.join(f"{k}={v}" for k, v in fields.items()))
        parts.append(record.getMessage())
        line = ' | '.join(parts)

        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    rotate_max_bytes: int = 0,
    rotate_backups: int = 5,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Route all records to stderr and, optionally, a log file.

    Parameters
    ----------
    log_level : str
        Root level name, e.g. ``"DEBUG"``.
    log_file : str, optional
        Also write records here.  Parent directories are created.
    json : bool
        JSON lines in the log file (stderr always stays human-readable).
    color : bool
        Colour level names on stderr when it is a TTY.
    rotate_max_bytes : int
        Roll the log file over at this size; 0 never rolls.
    rotate_backups : int
        Rolled-over files to keep.
    context : dict, optional
        Fields added to every record, e.g. ``{"app": "live_laser"}``.

    Returns
    -------
    dict
        ``{"handlers": [...]}`` -- the handlers now attached to the root.

    Examples
    --------
    >>> setup_logging("DEBUG", "logs/laser.log", rotate_max_bytes=1_000_000,
    ...               context={"app": "live_laser"})
    """
    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    root.setLevel(getattr(logging, log_level.upper()))

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        ContextFormatter("human", use_color=color and sys.stderr.isatty())
    )
    _installed.append(console)

    if log_file:
        _installed.append(
            _create_file_handler(log_file, json, rotate_max_bytes, rotate_backups)
        )

    for handler in _installed:
        root.addHandler(handler)

    if context:
        push_context(**context)

    # Python warnings (e.g. from PyYAML) go through the same handlers
    logging.captureWarnings(True)

    return {'handlers': list(_installed)}


def _create_file_handler(
    log_file: str,
    json_lines: bool,
    max_bytes: int,
    backups: int,
) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    if max_bytes > 0:
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backups, encoding='utf-8'
        )
    else:
        handler = logging.FileHandler(log_file, encoding='utf-8')
    handler.setFormatter(ContextFormatter("json" if json_lines else "human"))
    return handler


def push_context(**kwargs: Any) -> None:
    """Add fields to every subsequent record.

    >>> push_context(job="live-test", host="192.168.3.4")
    """
    _context_var.set({**_context_var.get(), **kwargs})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Drop the named fields, or all of them when *keys* is ``None``."""
    if keys is None:
        _context_var.set({})
        return
    _context_var.set(
        {k: v for k, v in _context_var.get().items() if k not in keys}
    )


def install_excepthook() -> None:
    """Send uncaught exceptions (except Ctrl+C) to the log before exit."""
    def log_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger(__name__).critical(
            "Uncaught exception",
            exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.excepthook = log_exception
