"""Logging configuration for pagesmith."""

from __future__ import annotations

import logging
import sys


def setup_logging(
    level: int = logging.INFO,
    logger_name: str = "pagesmith",
) -> logging.Logger:
    """Configure and return the package logger with consistent formatting.

    Calling it again only adjusts the level; handlers are installed once.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    logger.propagate = False

    return logger
