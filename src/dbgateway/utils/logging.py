"""Logging setup utilities for dbgateway.

Configures the 'dbgateway' logger from the logging section of the
settings, and builds a matching ``log_config`` for uvicorn so server and
gateway lines share one format.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

from dbgateway.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure logging for the dbgateway application.

    Sets up the 'dbgateway' logger with the specified level, format, and
    optional file handler. Calling it again replaces the handlers
    installed by the previous call.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    root_logger = logging.getLogger("dbgateway")
    root_logger.setLevel(_level(config))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (optional)
    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.info("Logging initialized at %s level", config.level)


def uvicorn_log_config(config: LoggingConfig | None = None) -> dict[str, Any]:
    """Build a ``logging.config.dictConfig`` mapping for uvicorn's loggers."""
    if config is None:
        config = LoggingConfig()

    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
        },
    }
    if config.file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": config.file,
        }

    level = logging.getLevelName(_level(config))
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": config.format}},
        "handlers": handlers,
        "loggers": {
            "uvicorn": {"handlers": list(handlers), "level": level, "propagate": False},
            "uvicorn.error": {"level": level},
            "uvicorn.access": {"handlers": list(handlers), "level": level, "propagate": False},
        },
    }


def _level(config: LoggingConfig) -> int:
    return getattr(logging, config.level.upper(), logging.INFO)
