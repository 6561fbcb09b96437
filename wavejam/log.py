"""Logging utilities for the wavejam server."""
import logging
import sys
import os
import threading
from typing import Optional


# Thread-safe lock for logger initialization
_logger_init_lock = threading.Lock()


class WavejamFormatter(logging.Formatter):
    """Custom formatter for wavejam logs.

    Format: [{level[0]} {time} {module_basename[:9]}] {message}
    Example: [I 14:23:45.123 server   ] Session 3f2a... connected
    """

    def format(self, record):
        level_char = record.levelname[0]

        # Module basename, truncated to 9 chars and right-padded
        module_name = record.name.split('.')[-1]
        module_padded = module_name[:9].ljust(9)

        timestamp = self.formatTime(record, "%H:%M:%S")
        msecs = f"{record.msecs:03.0f}"

        prefix = f"[{level_char} {timestamp}.{msecs} {module_padded}]"
        return f"{prefix} {record.getMessage()}"


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get logger for a wavejam component.

    Args:
        name: Component name (usually __name__)
        level: Optional level (DEBUG/INFO/WARNING/ERROR)
               Falls back to WAVEJAM_LOG_LEVEL env var, then INFO

    Returns:
        Configured logger instance

    Example:
        >>> from wavejam.log import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Drift engine started")
        [I 14:23:45.123 drift    ] Drift engine started
    """
    logger = logging.getLogger(name)

    # Set level from: parameter > env var > INFO default
    if level is None:
        level = os.getenv("WAVEJAM_LOG_LEVEL", "INFO")

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    with _logger_init_lock:
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(WavejamFormatter())
            logger.addHandler(handler)

    return logger


def set_level(level: str, namespace: str = "wavejam") -> None:
    """Re-level every logger already created under namespace.

    Module loggers are built at import time, before the CLI has parsed
    --log-level, so changing WAVEJAM_LOG_LEVEL afterwards isn't enough.
    """
    os.environ["WAVEJAM_LOG_LEVEL"] = level.upper()
    numeric = getattr(logging, level.upper(), logging.INFO)
    for name, logger in list(logging.root.manager.loggerDict.items()):
        if isinstance(logger, logging.Logger) and (
                name == namespace or name.startswith(namespace + ".")):
            logger.setLevel(numeric)
