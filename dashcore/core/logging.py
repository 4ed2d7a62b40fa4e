"""
Structured logging for the card query core.

All loggers hang off the ``dashcore`` namespace and write one line per event
to stdout.  ``fields()`` renders ``key=value`` pairs so request summaries stay
grep-able: ``card.data | tenant=acme | card=7 | rows=12``.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

from dashcore.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        logger.addHandler(handler)
        # uvicorn / root handlers would otherwise print every line twice
        logger.propagate = False
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


def fields(**values: Any) -> str:
    """Render keyword pairs as ``k=v | k=v``; long values are truncated."""
    parts = []
    for key, val in values.items():
        text = str(val)
        if len(text) > 120:
            text = text[:117] + "..."
        parts.append(f"{key}={text}")
    return " | ".join(parts)
