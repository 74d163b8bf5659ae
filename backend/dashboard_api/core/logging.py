"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog

from dashboard_api.core.config import get_settings

_configured = False


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    global _configured
    settings = get_settings()
    level_name = (level or settings.LOG_LEVEL).upper()
    use_json = settings.LOG_JSON if json_output is None else json_output

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_name)

    renderer: Any = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level_name)),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> Any:
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)
