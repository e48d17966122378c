"""Logging helpers for Tracewire."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional

from .config import get_settings


ROOT_LOGGER_NAME = "tracewire"

DEFAULT_LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "loggers": {
        ROOT_LOGGER_NAME: {
            "level": "WARNING",
            "handlers": ["console"],
            "propagate": False,
        }
    },
}


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the SDK logger using dictConfig.

    Only the ``tracewire`` logger tree is touched so host applications keep
    control over the root logger. ``level`` defaults to the configured
    ``log_level``.
    """

    if level is None:
        level = get_settings().log_level
    config = DEFAULT_LOGGING_CONFIG.copy()
    sdk_logger = {**config["loggers"][ROOT_LOGGER_NAME], "level": level.upper()}
    config = {**config, "loggers": {ROOT_LOGGER_NAME: sdk_logger}}
    dictConfig(config)


def component_logger(parent: Optional[logging.Logger], name: str) -> logging.Logger:
    """Derive the logger handed to a component from the client's logger."""

    base = parent if parent is not None else logging.getLogger(ROOT_LOGGER_NAME)
    return base.getChild(name)
