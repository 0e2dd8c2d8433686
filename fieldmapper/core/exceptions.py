"""FieldMapper exception hierarchy."""

from __future__ import annotations


class FieldMapperError(Exception):
    """Base exception for all FieldMapper errors."""


class RequestValidationError(FieldMapperError):
    """Inbound mapping request is malformed or incomplete."""

    status_code = 400


class ProviderNotConfiguredError(FieldMapperError):
    """No API key or provider settings available for an LLM client."""


class LLMProviderError(FieldMapperError):
    """An LLM provider call did not produce a usable completion."""


class LLMConnectionError(LLMProviderError):
    """The LLM provider could not be reached."""


class LLMStatusError(LLMProviderError):
    """The LLM provider answered with a non-OK HTTP status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"LLM provider returned HTTP {status_code}: {message}")


class FeedbackPersistenceError(FieldMapperError):
    """The feedback store was unreachable or rejected the write."""

    def __init__(self, store: str, message: str) -> None:
        self.store = store
        super().__init__(f"{store} feedback write failed: {message}")
