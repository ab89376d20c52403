"""Structured logging for Cronflow.

Engine and action modules log with ``structlog.get_logger(__name__)``;
services, triggers and third-party libraries log through stdlib
``logging``. Both end up in one handler on the root logger, rendered by
structlog as JSON lines (``LOG_FORMAT=json``) or console text
(``LOG_FORMAT=text``).
"""

import logging
import sys
from typing import Optional, TextIO

import structlog

from app.config import Settings, get_settings

# Third-party loggers and the level they are held at
_LIBRARY_LEVELS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}


class _CronflowHandler(logging.StreamHandler):
    """Marker type, so repeated setup replaces only its own handler."""


def _app_context(settings: Settings):
    def add_app_context(logger, method_name, event_dict):
        event_dict.setdefault("app", settings.APP_NAME)
        event_dict.setdefault("environment", settings.ENVIRONMENT)
        return event_dict

    return add_app_context


def build_renderer(settings: Settings, stream: TextIO):
    fmt = settings.LOG_FORMAT.lower()
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    if fmt in ("text", "console"):
        return structlog.dev.ConsoleRenderer(colors=stream.isatty())
    raise ValueError(f"Unknown LOG_FORMAT: {settings.LOG_FORMAT}")


def setup_logging(settings: Optional[Settings] = None, stream: Optional[TextIO] = None) -> None:
    """Route structlog and stdlib logging through one structlog-rendered handler."""
    settings = settings or get_settings()
    stream = stream or sys.stdout

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _app_context(settings),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = _CronflowHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                build_renderer(settings, stream),
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, _CronflowHandler)]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
