"""Logging configuration for emcomm_isogen.

Log records go to two places: a rich console handler for the operator and
a plain-text file under the logs directory that survives the run, so a
failed build always leaves a complete, timestamped log behind.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_FILE_PREFIX = "build-etc-iso"

_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Marker attribute set on handlers installed by configure_logging()
_HANDLER_MARKER = "_emcomm_isogen_handler"


def build_log_path(logs_dir: Path, now: datetime | None = None) -> Path:
    """Return the timestamped log file path for a new run."""
    now = now or datetime.now()
    return logs_dir / f"{LOG_FILE_PREFIX}_{now:%Y%m%d_%H%M%S}.log"


def configure_logging(
    logs_dir: Path | None = None,
    level: str = "INFO",
    console: Console | None = None,
) -> Path | None:
    """Configure root logging for a CLI invocation.

    Calling this again replaces the handlers installed by a previous call
    instead of stacking duplicates.

    Args:
        logs_dir: Directory for the persistent log file (console only if None).
        level: Log level name.
        console: Rich console to log to (stderr console if not provided).

    Returns:
        Path of the log file, or None when no file handler was installed.
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        log_time_format="[%X]",
    )
    console_handler.setLevel(level)
    setattr(console_handler, _HANDLER_MARKER, True)
    root.addHandler(console_handler)

    if logs_dir is None:
        return None

    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = build_log_path(logs_dir)

    # The file always records DEBUG so a failed build can be diagnosed
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, _FILE_DATEFMT))
    file_handler.setLevel(logging.DEBUG)
    setattr(file_handler, _HANDLER_MARKER, True)
    root.addHandler(file_handler)
    root.setLevel(logging.DEBUG)

    # Keep HTTP client chatter out of the build log
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return log_path


__all__ = ["LOG_FILE_PREFIX", "build_log_path", "configure_logging"]
