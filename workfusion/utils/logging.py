"""
Structured logging configuration for the Workfusion API.

Centralizes structlog setup: request-scoped context (request id, user id),
redaction of credentials before anything reaches a sink, and environment-specific
rendering (console in development, JSON elsewhere).
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor

request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "request_context", default=None
)

# Substrings of keys whose values are never written to logs
SENSITIVE_KEYS = (
    "password",
    "secret",
    "authorization",
    "access_token",
    "refresh_token",
    "public_token",
    "id_token",
    "api_key",
    "fernet_key",
    "service_account",
)


class RequestContextProcessor:
    """Add request-scoped fields (request_id, user_id, ...) to every entry."""

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        ctx = request_context.get()
        if ctx:
            for key, value in ctx.items():
                event_dict.setdefault(key, value)
        return event_dict


class EnvironmentProcessor:
    """Stamp entries with the deployment environment and version."""

    def __init__(self, app_env: str, app_version: str):
        self.app_env = app_env
        self.app_version = app_version

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict["env"] = self.app_env
        event_dict["version"] = self.app_version
        return event_dict


def filter_sensitive_data(
    logger: Any, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Mask credential-bearing fields.

    Long string values keep their first and last four characters so operators
    can still correlate entries; everything else is replaced outright.
    """
    for key in list(event_dict.keys()):
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            value = event_dict[key]
            if isinstance(value, str) and len(value) > 12:
                event_dict[key] = f"{value[:4]}...{value[-4:]}"
            else:
                event_dict[key] = "***REDACTED***"
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    app_env: str = "development",
    app_version: str = "0.1.0",
    json_format: Optional[bool] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        app_env: Application environment (development, staging, production, test)
        app_version: Application version for tracking
        json_format: Force JSON output (None = JSON outside development/test)
    """
    if json_format is None:
        json_format = app_env in ["staging", "production"]

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        RequestContextProcessor(),
        EnvironmentProcessor(app_env, app_version),
        filter_sensitive_data,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def set_request_context(**kwargs: Any) -> None:
    """
    Set request-scoped context that will be included in all logs.

    Example:
        set_request_context(request_id="123", user_id="uid-456")
    """
    ctx = dict(request_context.get() or {})
    ctx.update(kwargs)
    request_context.set(ctx)


def clear_request_context() -> None:
    """Clear the request context (called at the end of each request)."""
    request_context.set(None)
