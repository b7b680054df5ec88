#!/usr/bin/env python3
"""
Live Laser Script.

Submit a live vector job and step the head around a square, one corner
per Enter key press.

Usage:
    python -m laser_control.scripts.live_laser 192.168.3.4
    python -m laser_control.scripts.live_laser 192.168.3.4 --count 8 --no-step
    python -m laser_control.scripts.live_laser --dry-run job.pcl --count 4
    python -m laser_control.scripts.live_laser --config my_laser.yaml -v
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace

from laser_control.configs.loader import (
    ConfigError,
    LaserConfig,
    VectorDefaults,
    load_config,
    validate_config,
)
from laser_control.hardware.interactive import StepPointSource
from laser_control.hardware.job_driver import JobDriver, JobProgress
from laser_control.hardware.transport import LaserError
from laser_control.job_ir.operations import PenMove, square
from laser_control.pcl.serializer import render_job
from laser_control.utils.fs import atomic_write_bytes
from laser_control.utils.logging_config import install_excepthook, setup_logging

logger = logging.getLogger(__name__)


def _positive_int(text: str) -> int:
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {value}")
    return value


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a live vector job on a network laser cutter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "host",
        nargs="?",
        help="Laser host name or address (default: job.host from config)",
    )
    parser.add_argument("--config", "-c", type=str, help="Configuration file path")
    parser.add_argument("--port", type=str, help="Port number or service name")
    parser.add_argument("--queue", "-q", type=str, help="LPD queue name")
    parser.add_argument("--title", "-t", type=str, help="PJL job title")

    # Path
    parser.add_argument(
        "--size",
        type=_positive_int,
        default=1200,
        help="Square edge length in device units",
    )
    parser.add_argument(
        "--count",
        "-n",
        type=int,
        help="Stop after this many points (default: until 'q' or EOF)",
    )
    parser.add_argument(
        "--no-step",
        action="store_true",
        help="Send points without waiting for Enter (requires --count)",
    )

    # Vector parameters
    parser.add_argument("--frequency", type=int, help="Vector frequency (XR)")
    parser.add_argument("--power", type=int, help="Vector power (YP)")
    parser.add_argument("--speed", type=int, help="Vector speed (ZS)")

    # Output
    parser.add_argument(
        "--dry-run",
        metavar="FILE",
        help="Write the PCL data file to FILE instead of connecting",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every frame (DEBUG)",
    )
    parser.add_argument("--log-file", type=str, help="Also log to this file")
    parser.add_argument(
        "--json-logs", action="store_true", help="JSON lines in the log file",
    )
    return parser.parse_args(argv)


def _apply_overrides(config: LaserConfig, args: argparse.Namespace) -> LaserConfig:
    """Return *config* with command-line overrides applied and validated."""
    job_changes = {
        key: value
        for key, value in (
            ("host", args.host),
            ("queue", args.queue),
            ("title", args.title),
        )
        if value is not None
    }
    vector = config.vector
    vector = VectorDefaults(
        frequency=vector.frequency if args.frequency is None else args.frequency,
        power=vector.power if args.power is None else args.power,
        speed=vector.speed if args.speed is None else args.speed,
    )
    connection = config.connection
    if args.port is not None:
        port = int(args.port) if args.port.isdigit() else args.port
        connection = replace(connection, port=port)

    config = replace(
        config,
        connection=connection,
        job=replace(config.job, **job_changes),
        vector=vector,
    )
    validate_config(config)
    return config


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    try:
        config = _apply_overrides(load_config(args.config), args)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    log_cfg = config.logging
    setup_logging(
        log_level="DEBUG" if args.verbose else log_cfg.level,
        log_file=args.log_file or log_cfg.file,
        json=args.json_logs or log_cfg.json,
        color=log_cfg.color,
        rotate_max_bytes=log_cfg.rotate_max_bytes,
        rotate_backups=log_cfg.rotate_backups,
        context={"app": "live_laser"},
    )
    install_excepthook()

    if args.no_step and args.count is None:
        print("Error: --no-step needs --count, the point stream would never end")
        sys.exit(1)

    points = square(args.size)

    if args.dry_run:
        count = len(points) if args.count is None else args.count
        moves = [
            PenMove(pen_down=True, x=x, y=y)
            for x, y in (points[i % len(points)] for i in range(count))
        ]
        stream = render_job(config.job, moves, config.vector)
        try:
            atomic_write_bytes(args.dry_run, stream)
        except (RuntimeError, OSError) as e:
            print(f"Error: {e}")
            sys.exit(1)
        print(f"Wrote {len(stream)} bytes to {args.dry_run}")
        return

    if args.no_step:
        source = StepPointSource(
            points, wait=lambda _prompt: "", max_points=args.count,
        )
    else:
        source = StepPointSource(points, max_points=args.count)

    def progress_callback(progress: JobProgress) -> None:
        logger.debug(
            "Phase %s, %d commands: %s",
            progress.phase.name,
            progress.commands_sent,
            progress.message,
        )

    driver = JobDriver(config)
    driver.set_progress_callback(progress_callback)

    try:
        progress = driver.run(source)
        print(f"Job completed: {progress.commands_sent} points sent.")
    except KeyboardInterrupt:
        print("\nJob interrupted.")
        sys.exit(1)
    except (LaserError, ConfigError) as e:
        print(f"\nError: {e}")
        logger.exception("Job failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
