"""Logging configuration helpers for the extraction engine."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional

from . import config


def configure_logging(level: Optional[str] = None) -> None:
    """Apply a consistent logging configuration for processes embedding the engine."""
    log_level = (level or config.LOG_LEVEL).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                },
            },
            "root": {"handlers": ["console"], "level": log_level},
            # HTTP client noise stays at WARNING unless explicitly debugging.
            "loggers": {
                "health_metrics": {"level": log_level},
                "urllib3": {"level": "WARNING" if log_level != "DEBUG" else "DEBUG"},
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured at %s level", log_level)
