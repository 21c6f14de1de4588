"""Structured logging configuration using structlog.

JSON lines in production, colored console output in development.
Engine components log key/value events through ``structlog.get_logger``;
plain ``logging`` loggers (FastAPI, SQLAlchemy, httpx, Celery) are routed
through the same formatter so both end up in one stream.
"""

import logging
import sys
from typing import Optional

import structlog
from app.config import get_settings

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "celery": logging.INFO,
}


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Overrides ``LOG_LEVEL`` (used by the Celery worker entrypoint)
        log_format: ``"json"`` or ``"text"``; overrides ``LOG_FORMAT``
    """
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    log_format = log_format or settings.LOG_FORMAT

    shared = _shared_processors()
    if settings.is_development or log_format == "text":
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
