"""Logging configuration for the reconcile and insert scripts."""

from __future__ import annotations

import logging
import sys


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.strip().upper())
    if isinstance(level, int):
        return level
    return logging.INFO


def configure_logging(level_name: str = "INFO") -> None:
    """Send log records to stderr so stdout stays free for JSON summaries."""
    level = _resolve_level(level_name)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
        return

    logging.basicConfig(level=level, stream=sys.stderr)
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)
