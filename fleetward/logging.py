"""Logging configuration for fleetward.

Structured logging via loguru. The library stays silent by default; an
application opts in with :func:`setup_logging` and removes the sinks again
with :func:`teardown_logging`.

Example:
    from fleetward.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", file="fleetward.log"))
    ...
    teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Literal

from loguru import logger

# Disable by default (library behavior)
logger.disable("fleetward")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[provider]}</cyan> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[provider]} | "
    "{name}:{function}:{line} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
        file: Path to log file. If provided, logs are written to this file.
        console: Whether to log to stderr. Defaults to True.
        rotation: File rotation policy (e.g., "50 MB", "1 day"). Defaults to "50 MB".
        retention: Number of old log files to keep. Defaults to 10.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def _with_provider(record: dict) -> bool:
    record["extra"].setdefault("provider", "-")
    return record["name"] is not None and record["name"].startswith("fleetward")


def setup_logging(config: LogConfig) -> list[int]:
    """Enable fleetward logging and return handler IDs for cleanup."""
    logger.enable("fleetward")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter=_with_provider,
        ))

    if config.file:
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",  # File always captures everything
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,  # Don't expose credentials in tracebacks
            enqueue=True,
            filter=_with_provider,
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable logging again."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("fleetward")


__all__ = ["LogConfig", "LogLevel", "setup_logging", "teardown_logging"]
