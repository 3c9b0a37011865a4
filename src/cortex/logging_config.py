"""Loguru sinks for Cortex.

Modules log through ``from loguru import logger``; this module only decides
where the records go. Call ``setup_logging`` once per process.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
LOG_FILENAME = "cortex.log"

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpx", "watchdog")


def setup_logging(level: str = "INFO", log_dir: Path | None = None) -> Path | None:
    """Replace loguru's default sink with Cortex's console (and file) sinks.

    Args:
        level: Minimum level for the stderr sink.
        log_dir: When given, also log DEBUG and above to
            ``<log_dir>/cortex.log`` (rotated at 10 MB, kept 7 days).

    Returns:
        The log file path, or None when only stderr is used.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level.upper(),
        colorize=True,
        backtrace=False,
        diagnose=False,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILENAME
    logger.add(
        log_file,
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        encoding="utf-8",
        # Keep prompt text and file contents out of tracebacks on disk.
        diagnose=False,
    )
    return log_file
