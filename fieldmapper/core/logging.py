"""
FieldMapper Core Logging Module

Structured logging via structlog, with request-id propagation and optional
Sentry capture of error-level events.

Usage:
    from fieldmapper.core.logging import setup_logging, get_logger

    setup_logging(level="INFO", json_output=True)

    logger = get_logger(__name__)
    logger.info("mapping_responded", strategy="ai", source_count=3)
"""

from __future__ import annotations

import logging
import os
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, TextIO

import structlog
from pydantic import BaseModel, Field

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


class ErrorContext(BaseModel):
    """Structured record of a logged exception."""

    error_id: str = Field(..., description="Unique error identifier")
    error_type: str = Field(..., description="Exception class name")
    error_message: str = Field(..., description="Error message")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    module: str = Field(..., description="File where the error was raised")
    function: str = Field(..., description="Function where the error was raised")
    line_number: int | None = Field(None, description="Line number")
    context: dict[str, Any] = Field(default_factory=dict, description="Additional context")
    request_id: str | None = Field(None, description="Request ID if available")


class SentryIntegration:
    """Thin wrapper over sentry-sdk, inert until initialized."""

    _initialized: bool = False
    _sentry_sdk: Any = None

    @classmethod
    def initialize(cls, dsn: str, environment: str = "development") -> bool:
        """
        Initialize Sentry SDK.

        Returns:
            True if initialization succeeded
        """
        try:
            import sentry_sdk
            from sentry_sdk.integrations.logging import LoggingIntegration
        except ImportError:
            logging.warning("sentry-sdk not installed. Sentry integration disabled.")
            return False

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=os.environ.get("FIELDMAPPER_VERSION", "1.0.0"),
            integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
            send_default_pii=False,
        )
        cls._sentry_sdk = sentry_sdk
        cls._initialized = True
        return True

    @classmethod
    def capture_exception(
        cls,
        exception: BaseException,
        context: dict[str, Any] | None = None,
    ) -> str | None:
        """Send an exception to Sentry; returns the event id when captured."""
        if not cls._initialized:
            return None

        with cls._sentry_sdk.new_scope() as scope:
            for key, value in (context or {}).items():
                scope.set_extra(key, value)
            if request_id := request_id_var.get():
                scope.set_tag("request_id", request_id)
            return cls._sentry_sdk.capture_exception(exception)

    @classmethod
    def add_breadcrumb(cls, message: str, category: str = "log", data: dict[str, Any] | None = None) -> None:
        if cls._initialized:
            cls._sentry_sdk.add_breadcrumb(message=message, category=category, data=data or {})


def add_context_processor(
    logger: structlog.typing.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add the current request id to log events."""
    if request_id := request_id_var.get():
        event_dict.setdefault("request_id", request_id)
    return event_dict


def add_error_context_processor(
    logger: structlog.typing.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Forward error-level events that carry exc_info to Sentry."""
    if method_name not in ("error", "critical", "exception"):
        return event_dict

    exc_info = event_dict.get("exc_info")
    if isinstance(exc_info, tuple) and exc_info[1]:
        context = {k: v for k, v in event_dict.items() if k != "exc_info"}
        event_id = SentryIntegration.capture_exception(exc_info[1], context=context)
        if event_id:
            event_dict["sentry_event_id"] = event_id

    return event_dict


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    sentry_dsn: str | None = None,
    log_file: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure structured logging for FieldMapper.

    Environment overrides: FIELDMAPPER_LOG_LEVEL, FIELDMAPPER_LOG_JSON,
    FIELDMAPPER_LOG_FILE, SENTRY_DSN, FIELDMAPPER_ENV.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines instead of the console format
        sentry_dsn: Sentry DSN for error tracking
        log_file: Optional file receiving JSON lines
        stream: Console stream (default stdout)
    """
    log_level = os.environ.get("FIELDMAPPER_LOG_LEVEL", level).upper()
    json_output = json_output or os.environ.get("FIELDMAPPER_LOG_JSON", "false").lower() == "true"

    stream = stream or sys.stdout

    dsn = sentry_dsn or os.environ.get("SENTRY_DSN")
    if dsn:
        SentryIntegration.initialize(
            dsn=dsn,
            environment=os.environ.get("FIELDMAPPER_ENV", "development"),
        )

    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_context_processor,
        add_error_context_processor,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: structlog.typing.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )
    handlers: list[logging.Handler] = [handler]

    file_path = log_file or os.environ.get("FIELDMAPPER_LOG_FILE")
    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Quiet the HTTP stacks underneath the provider SDKs
    for noisy in ("httpx", "httpcore", "openai", "anthropic", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: BaseException,
    message: str | None = None,
    **context: Any,
) -> ErrorContext:
    """
    Log an exception with its origin and an error id, and capture it to Sentry.

    Returns:
        ErrorContext describing the logged error
    """
    tb = traceback.extract_tb(error.__traceback__)
    last_frame = tb[-1] if tb else None

    error_context = ErrorContext(
        error_id=str(uuid.uuid4()),
        error_type=type(error).__name__,
        error_message=str(error),
        timestamp=datetime.now(timezone.utc).isoformat(),
        module=last_frame.filename if last_frame else "unknown",
        function=last_frame.name if last_frame else "unknown",
        line_number=last_frame.lineno if last_frame else None,
        context=context,
        request_id=request_id_var.get(),
    )

    logger.error(
        message or error_context.error_message,
        error_id=error_context.error_id,
        error_type=error_context.error_type,
        exc_info=(type(error), error, error.__traceback__),
        **context,
    )

    return error_context


def set_request_context(request_id: str) -> None:
    """Bind a request id to every log event of the current task."""
    request_id_var.set(request_id)
    SentryIntegration.add_breadcrumb(
        message="Mapping request started",
        category="request",
        data={"request_id": request_id},
    )


def clear_request_context() -> None:
    """Forget the current request id."""
    request_id_var.set(None)


__all__ = [
    "setup_logging",
    "get_logger",
    "log_error",
    "set_request_context",
    "clear_request_context",
    "SentryIntegration",
    "ErrorContext",
]
