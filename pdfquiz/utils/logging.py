"""Structured logging for pdfquiz, built on structlog.

One processor chain is shared by every output path; only the final
renderer changes.  Development gets a coloured console, production
(``APP_ENV=production`` or ``json_output=True``) gets one JSON object per
line so log shippers can index ``document_id`` and ``stage`` directly.

The stdlib root logger is pointed at the same chain, which keeps uvicorn,
httpx and openai output in the same format as our own events.

Workers wrap each job in :func:`job_context` so that every event emitted
while a stage runs carries ``document_id``, ``owner_id``, ``stage`` and
``correlation_id`` without threading them through each call.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

import structlog

# Libraries that log every HTTP round-trip at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "openai")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Configure structlog and bridge stdlib logging into it.

    Parameters
    ----------
    log_level:
        Minimum level name (DEBUG, INFO, WARNING, ERROR).
    json_output:
        Force JSON rendering.  Otherwise JSON is used only when
        ``APP_ENV`` is ``"production"``.
    stream:
        Where log lines go; stdout by default.  The CLI passes stderr so
        its own output stays clean.

    Returns
    -------
    structlog.BoundLogger
        The root structlog logger.
    """
    level_name = log_level.upper()
    stream = stream or sys.stdout
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"

    processors = _shared_processors()
    renderer: structlog.types.Processor
    if use_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *processors,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level_name)

    if level_name != "DEBUG":
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger tagged with ``logger_name``.

    Configures logging with defaults on first use so modules can create
    their loggers at import time.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)


@contextmanager
def job_context(
    document_id: str,
    owner_id: str,
    stage: str,
    correlation_id: str,
) -> Iterator[None]:
    """Bind pipeline correlation fields for the duration of one job."""
    with structlog.contextvars.bound_contextvars(
        document_id=document_id,
        owner_id=owner_id,
        stage=stage,
        correlation_id=correlation_id,
    ):
        yield
