# core/logging.py
from __future__ import annotations
import logging
import os
from typing import Optional

ROOT_LOGGER = "govqa"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str = ROOT_LOGGER, level: Optional[str] = None) -> logging.Logger:
    """Return a namespaced logger with a single stream handler attached."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(lvl)
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter(os.getenv("LOG_FORMAT", LOG_FORMAT)))
    logger.addHandler(h)
    logger.propagate = False
    return logger
