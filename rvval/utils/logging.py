"""Structured logging setup."""
import logging
from typing import Optional

import structlog

from ..config import get_settings


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Configure structlog for the service.

    Args:
        level: Minimum log level name, defaults to LOG_LEVEL
        json_output: Render JSON lines instead of console output, defaults to LOG_JSON
    """
    config = get_settings()
    level_name = (level or config.LOG_LEVEL).upper()
    use_json = config.LOG_JSON if json_output is None else json_output

    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
    )


def get_logger(name: str):
    return structlog.get_logger(name)
