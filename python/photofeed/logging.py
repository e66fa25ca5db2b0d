"""Structured logging configuration using structlog.

Every entry carries the context of whatever produced it:
- request_id, path, method: set by RequestIDMiddleware for API requests
- task_name, task_id: set by detached jobs (album refresh, disk sweep,
  augmentation) via configure_task_logging()

Album tokens and upstream URLs are credentials. Event fields named after
them are replaced by a short fingerprint before rendering, so a stray
``logger.info("x", token=token)`` cannot leak one.

Usage:
    from photofeed.logging import get_logger

    logger = get_logger(__name__)
    logger.info("album_cache_miss", token_fp=fingerprint(token))
"""

import logging
import sys
from contextvars import ContextVar

import structlog

from photofeed.services.redact import fingerprint

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
path_var: ContextVar[str | None] = ContextVar("path", default=None)
method_var: ContextVar[str | None] = ContextVar("method", default=None)
task_name_var: ContextVar[str | None] = ContextVar("task_name", default=None)
task_id_var: ContextVar[str | None] = ContextVar("task_id", default=None)

_CONTEXT_FIELDS: tuple[tuple[str, ContextVar[str | None]], ...] = (
    ("request_id", request_id_var),
    ("path", path_var),
    ("method", method_var),
    ("task_name", task_name_var),
    ("task_id", task_id_var),
)

SENSITIVE_FIELDS = frozenset({"token", "canonical", "url", "media_url", "source_url"})

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "PIL")


def add_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Copy non-empty request/task context into the event."""
    for field, var in _CONTEXT_FIELDS:
        value = var.get()
        if value:
            event_dict.setdefault(field, value)
    return event_dict


def redact_sensitive_fields(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Replace token and URL fields with ``<field>_fp`` fingerprints."""
    for field in SENSITIVE_FIELDS.intersection(event_dict):
        value = event_dict.pop(field)
        event_dict[f"{field}_fp"] = fingerprint(value) if isinstance(value, str) else None
    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: JSON lines if True, coloured console output otherwise.
        level: Root log level.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_context,
        redact_sensitive_fields,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(request_id: str | None, path: str | None, method: str | None) -> None:
    """Bind request context for the current request's task."""
    request_id_var.set(request_id)
    path_var.set(path)
    method_var.set(method)


def clear_request_context() -> None:
    set_request_context(None, None, None)


def get_request_id() -> str | None:
    return request_id_var.get()


def configure_task_logging(task_name: str | None = None, task_id: str | None = None) -> None:
    """Bind job context at the start of a detached task.

    Tasks run in a copy of the spawning context, so the triggering
    request_id is kept for correlation while path and method are dropped.

    Args:
        task_name: Job name, e.g. "album_refresh" or "augmentation".
        task_id: Identifier of this run (a fingerprint or short random ID).
    """
    task_name_var.set(task_name)
    task_id_var.set(task_id)
    path_var.set(None)
    method_var.set(None)
