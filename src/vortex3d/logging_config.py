"""
Logging configuration for the ``vortex3d`` namespace.

Library modules only create module-level loggers; handlers are attached here,
on request of the calling application.
"""
from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO, log_file: str | None = None) -> logging.Logger:
    """Configure the ``vortex3d`` logger.

    Args:
        level: Logging level (e.g. ``logging.DEBUG`` for per-step messages).
        log_file: Optional path; when given, records are also written there.
    """
    logger = logging.getLogger("vortex3d")
    logger.setLevel(level)

    # Repeated calls (notebooks, test sessions) must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(_FORMAT, datefmt="%H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.info("Logging initialized.")
    return logger
