"""Logging configuration helpers for the exam service."""

from __future__ import annotations

import logging
from logging import Logger

from examhub.config import settings


def configure_logging() -> Logger:
    """Configure basic logging for the application and return the package logger."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("examhub")
