"""Logging utilities with emoji level prefixes.

Usage:
    from .logging import get_logger
    logger = get_logger(__name__)

The level defaults to INFO and can be overridden with ``VISIONARY_LOG_LEVEL``.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Dict

_LEVEL_EMOJI: Dict[int, str] = {
    logging.DEBUG: "🔍",
    logging.INFO: "🟢",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "🔥",
}


class _EmojiFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - simple override
        record.emoji = _LEVEL_EMOJI.get(record.levelno, "▫️")
        return super().format(record)


def _env_level() -> int:
    name = os.environ.get("VISIONARY_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-level logger with emoji formatting applied once.

    Idempotent: calling multiple times won't duplicate handlers.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        fmt = _EmojiFormatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(emoji)s %(message)s", "%H:%M:%S"
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(_env_level())
        logger.propagate = False
    return logger
