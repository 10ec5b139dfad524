"""Structured logging configuration using structlog.

Human-readable colored output in development, JSON lines everywhere else
so execution trails can be shipped to a log aggregator. The engine binds
``workflow_id`` / ``execution_id`` as context variables for the length of
a run, so every event emitted during that run carries them.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import EventDict, WrappedLogger

from app.config import Settings, get_settings

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
    "celery": logging.INFO,
}


def _drop_color_message_key(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    # uvicorn duplicates its message as "color_message"
    event_dict.pop("color_message", None)
    return event_dict


def _add_service(settings: Settings):
    def processor(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", settings.APP_NAME)
        event_dict.setdefault("environment", settings.ENVIRONMENT)
        return event_dict

    return processor


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structured logging for the API process and Celery workers."""
    settings = settings or get_settings()
    text_output = settings.is_development or settings.LOG_FORMAT == "text"

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _drop_color_message_key,
    ]
    if not text_output:
        shared_processors.append(_add_service(settings))

    if text_output:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        exception_formatter = []
    else:
        renderer = structlog.processors.JSONRenderer()
        exception_formatter = [structlog.processors.format_exc_info]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *exception_formatter,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
