"""FieldMapper Core Module."""

from fieldmapper.core.logging import (
    ErrorContext,
    SentryIntegration,
    clear_request_context,
    get_logger,
    log_error,
    set_request_context,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_error",
    "set_request_context",
    "clear_request_context",
    "SentryIntegration",
    "ErrorContext",
]
