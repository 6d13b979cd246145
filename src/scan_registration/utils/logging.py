"""
Logging Utilities

This module sets up logging for the registration engine and provides a small
helper for timing pipeline stages.
"""

import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


PACKAGE_LOGGER = "scan_registration"


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


def set_package_level(level: int) -> None:
    """
    Apply a logging level to every logger created under the package namespace.

    Module loggers are created at import time with the default level, so the
    command line entry point calls this after reading the configuration.
    """
    manager = logging.Logger.manager
    for name, candidate in list(manager.loggerDict.items()):
        if not isinstance(candidate, logging.Logger):
            continue
        if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
            candidate.setLevel(level)
            for handler in candidate.handlers:
                handler.setLevel(level)


@contextmanager
def log_stage(logger: logging.Logger, stage: str) -> Iterator[None]:
    """
    Log the start and wall-clock duration of a pipeline stage.

    Failures are logged with the elapsed time and re-raised unchanged.
    """
    logger.info("%s started.", stage)
    start = time.time()
    try:
        yield
    except Exception as e:
        logger.warning("%s failed after %.3f s: %s", stage, time.time() - start, e)
        raise
    logger.info("%s finished in %.3f s.", stage, time.time() - start)
