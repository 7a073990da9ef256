"""
Logging setup for the command-line shell.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached once to the package logger when a command starts.
"""

import logging
import sys
from pathlib import Path

from health_record_sync.utils.parameters import LoggingConfig

PACKAGE_LOGGER = "health_record_sync"


def setup_logging(config: LoggingConfig, logger_name: str = PACKAGE_LOGGER) -> logging.Logger:
    """
    Attach console and file handlers to the package logger.

    Handlers from an earlier call are replaced, so running several commands
    in one process does not duplicate output.
    """
    level = getattr(logging, config.level.upper())
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.handlers.clear()

    handlers: list[logging.Handler] = []
    if config.console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    formatter = logging.Formatter(config.format)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
