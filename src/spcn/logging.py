# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Logging helpers for the spcn package."""

import logging
import sys


def setup_logger(name: str = "spcn", level: str = "INFO") -> logging.Logger:
    """Configure and return a logger with a standard format.

    Intended for applications and scripts; the library itself never calls
    this on import.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))

    # Avoid adding handlers multiple times
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, level))
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance under the ``spcn`` hierarchy."""
    return logging.getLogger(f"spcn.{name}")
