"""Centralized logging configuration using loguru."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

# Remove default handler
logger.remove()

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

_console_level = "INFO"
_console_handler_id = logger.add(
    sys.stderr,
    level=_console_level,
    format=CONSOLE_FORMAT,
    colorize=True,
)


def set_console_level(level: str) -> None:
    """Replace the console handler with one at the given level."""
    global _console_handler_id, _console_level
    level = level.upper()
    if level == _console_level:
        return
    _console_level = level
    logger.remove(_console_handler_id)
    _console_handler_id = logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT,
        colorize=True,
    )


def configure_file_logging(log_dir: Path) -> List[int]:
    """Add rotating debug and error log files under log_dir.

    Args:
        log_dir: Directory for log files (created if missing)

    Returns:
        Handler ids, for callers that need to remove the sinks again
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    debug_id = logger.add(
        log_dir / "fisheye_{time}.log",
        rotation="50 MB",
        retention="10 days",
        level="DEBUG",
        format=FILE_FORMAT,
        enqueue=True,  # Thread-safe logging
    )

    # Add error-specific log file
    error_id = logger.add(
        log_dir / "errors_{time}.log",
        rotation="10 MB",
        retention="30 days",
        level="ERROR",
        format=FILE_FORMAT,
        enqueue=True,
    )
    return [debug_id, error_id]


def get_logger(name: Optional[str] = None):
    """Get a logger instance with the given name.

    Args:
        name: Module name for the logger (usually __name__)

    Returns:
        Configured logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


# Performance logging helper
def log_performance(operation: str, duration_ms: float, threshold_ms: float = 100.0) -> None:
    """Log performance metrics with warnings for slow operations.

    Args:
        operation: Description of the operation
        duration_ms: Duration in milliseconds
        threshold_ms: Threshold for warning (default: 100ms)
    """
    if duration_ms > threshold_ms:
        logger.warning(f"Slow operation: {operation} took {duration_ms:.2f}ms (threshold: {threshold_ms}ms)")
    else:
        logger.debug(f"Performance: {operation} took {duration_ms:.2f}ms")


# Export configured logger
__all__ = [
    "logger",
    "get_logger",
    "log_performance",
    "configure_file_logging",
    "set_console_level",
]
