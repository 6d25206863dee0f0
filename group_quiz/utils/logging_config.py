"""Logging configuration helpers for the group quiz engine."""

from __future__ import annotations

import logging
from logging import Logger
import os

LOG_LEVEL_ENV = "GROUP_QUIZ_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def resolve_log_level(value: str | int | None) -> int:
    """Map a level name or number to a logging level, defaulting to INFO."""
    if value is None or value == "":
        return logging.INFO
    if isinstance(value, int):
        return value
    if value.strip().isdigit():
        return int(value)
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level {value!r}.")
    return level


def configure_logging(level: str | int | None = None) -> Logger:
    """Configure basic logging and return the package logger.

    Without an explicit level, ``GROUP_QUIZ_LOG_LEVEL`` decides.
    """
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV)
    logging.basicConfig(level=resolve_log_level(level), format=LOG_FORMAT)
    return logging.getLogger("group_quiz")
