"""Logging setup for the widget sync engine."""

import logging
import sys

from papercups_widget.core.pii_filter import PIIFilter

LOGGER_NAME = "papercups_widget"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the package logger.

    Debug mode lowers the level to DEBUG so join/leave outcomes, presence
    syncs and host events become visible. The handler is only installed once;
    later calls just adjust the level.

    Args:
        debug: Whether debug logging is enabled

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(PIIFilter())
        logger.addHandler(handler)
        logger.propagate = False

    return logger
