# src/pagepilot/core/errors.py

from __future__ import annotations


class PagePilotError(Exception):
    """Base class for errors raised by pagepilot components."""


class ValidationError(PagePilotError, ValueError):
    """
    Malformed task fields, bad website patterns or bad template variables.

    Carries every collected problem, not just the first one.
    """

    def __init__(self, errors: list[str] | str, *, field: str | None = None) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors: list[str] = list(errors)
        self.field = field
        super().__init__("; ".join(self.errors) or "validation failed")


class AIServiceError(PagePilotError):
    """Upstream AI provider failure."""

    def __init__(self, message: str, *, retryable: bool = False, code: str | None = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.code = code


class CacheError(PagePilotError):
    """Serialization problem inside the cache. Never reaches callers."""
