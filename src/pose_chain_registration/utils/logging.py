"""
Logging Utilities

This module sets up logging for the harness. Every module obtains its
logger through ``setup_logger(__name__)`` so console and file output share
one format.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


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
        '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
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


def attach_log_file(log_file: str, level: int = logging.INFO) -> logging.Logger:
    """Write every record of this package to ``log_file`` as well.

    The handler sits on the package root logger; module loggers propagate to it.
    """
    package_logger = logging.getLogger(__name__.split(".")[0])
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    package_logger.addHandler(file_handler)
    return package_logger


def set_package_level(level: int) -> None:
    """Apply ``level`` to every already-created logger of this package.

    Module loggers are created at import time with the default INFO level;
    the command-line entry point calls this once the configured level is known.
    """
    prefix = __name__.split(".")[0]
    for name, candidate in logging.root.manager.loggerDict.items():
        if not isinstance(candidate, logging.Logger):
            continue
        if name == prefix or name.startswith(prefix + "."):
            candidate.setLevel(level)
            for handler in candidate.handlers:
                handler.setLevel(level)
