"""Logging configuration utilities."""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal, TextIO

import structlog

SERVICE_NAME = "trackerhub"

# Libraries that log every statement or HTTP call at INFO.
_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "openai")

Renderer = Literal["json", "console"]


def _add_service(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(
    level: int | str = logging.INFO,
    *,
    renderer: Renderer = "json",
    stream: TextIO | None = None,
) -> None:
    """Configure stdlib logging and structlog.

    The API renders JSON lines on stdout. The CLI passes ``renderer="console"``
    and stderr so its own Rich output stays readable.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    final_renderer = (
        structlog.dev.ConsoleRenderer(colors=False) if renderer == "console" else structlog.processors.JSONRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.UnicodeDecoder(),
            final_renderer,
        ]
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def bind_request_context(**values: Any) -> None:
    """Attach key/value pairs to every log line emitted in the current context."""

    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
