"""
Structured logging configuration using structlog.

Events are snake_case names with ids as fields. Request scoped fields
(``request_id``, then ``account_id`` and ``role`` once the credential is
resolved) live in structlog context vars and are merged into every event.
"""
import logging
import sys
from typing import Any, Dict, Optional

import structlog

from instivault.core.config import settings

# Driver loggers that are only useful when debugging queries
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncpg", "passlib")


def setup_logging() -> None:
    """
    Configure structlog and the stdlib root logger.

    Development gets a colored console renderer; every other environment
    emits one JSON object per line.
    """
    level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.DEBUG else logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.is_development:
        renderers = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_principal(account_id: Any, role: str) -> None:
    """Attach the authenticated account to every later event of the request."""
    structlog.contextvars.bind_contextvars(account_id=str(account_id), role=role)


def request_log_context(
    method: str,
    path: str,
    client_ip: Optional[str] = None,
) -> Dict[str, Any]:
    """Fields for the request started/completed events."""
    context: Dict[str, Any] = {"method": method, "path": path}
    if client_ip:
        context["client_ip"] = client_ip
    return context


def error_log_context(error: Exception, **kwargs: Any) -> Dict[str, Any]:
    """
    Fields for an unhandled error event.

    Args:
        error: The exception being reported
        **kwargs: Extra fields, such as path and method

    Returns:
        Context dictionary for logging
    """
    return {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **kwargs,
    }
