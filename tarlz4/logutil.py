"""Central logging configuration utilities for tarlz4.

The library only emits through module loggers; front ends (the CLI, or an
embedding application) decide whether to call :func:`configure_logging`.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from .constants import LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL

_LEVEL_MAP = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def configure_logging(level: Union[str, int, None] = None, *, force: bool = False) -> None:
    """Configure the root logger.

    Order of precedence for level:
    1. Explicit `level` argument if given
    2. Environment variable `TARLZ4_LOG_LEVEL`
    3. Fallback to `WARNING`
    """
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)

    if isinstance(level, str):
        level = _LEVEL_MAP.get(level.upper(), logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=force,
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or "tarlz4")


__all__ = ["configure_logging", "get_logger"]
