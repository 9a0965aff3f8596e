"""Boundary hardening utilities for the feedback service.

Provides retry logic for the enrichment call, user-friendly error
formatting for the HTTP layer, and sanitisation of user-provided text
before it reaches the record store. Core analytics never use these:
retries and validation belong to the boundaries.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Retry Logic
# ---------------------------------------------------------------------------

_DEFAULT_RETRYABLE = (TimeoutError, ConnectionError)


@dataclass
class RetryConfig:
    """Configuration for retry-with-backoff behavior.

    Attributes:
        max_attempts: Total number of attempts (including the first).
        base_delay: Initial delay in seconds before first retry.
        max_delay: Upper bound on delay between retries.
        exponential_backoff: Double delay on each retry when True.
        retryable_exceptions: Tuple of exception types that trigger a retry.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    exponential_backoff: bool = True
    retryable_exceptions: tuple[type[BaseException], ...] = _DEFAULT_RETRYABLE


class RetriesExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        last_error: The final exception that caused the failure.
        attempts: Total number of attempts made.
    """

    def __init__(self, last_error: Exception, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"All {attempts} attempts failed. Last error: {last_error}")


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    if config.exponential_backoff:
        delay = config.base_delay * (2**attempt)
    else:
        delay = config.base_delay
    return min(delay, config.max_delay)


def retry_with_backoff(
    func: Callable[..., Any],
    config: RetryConfig | None = None,
    *args: Any,
    sleep_func: Callable[[float], None] | None = None,
    **kwargs: Any,
) -> Any:
    """Call *func*, retrying transient failures with backoff.

    Only exceptions listed in ``config.retryable_exceptions`` are
    retried; anything else propagates on the first occurrence.

    Args:
        func: Callable to invoke.
        config: Retry configuration. Uses defaults when None.
        *args: Positional arguments forwarded to *func*.
        sleep_func: Injectable sleep for testing. Defaults to time.sleep.
        **kwargs: Keyword arguments forwarded to *func*.

    Returns:
        Whatever *func* returns on success.

    Raises:
        RetriesExhaustedError: When every attempt fails with a retryable error.
    """
    cfg = config or RetryConfig()
    do_sleep = sleep_func or time.sleep
    last_error: Exception | None = None

    for attempt in range(max(cfg.max_attempts, 1)):
        try:
            return func(*args, **kwargs)
        except cfg.retryable_exceptions as exc:
            last_error = exc
            if attempt < cfg.max_attempts - 1:
                delay = _compute_delay(attempt, cfg)
                logger.warning(
                    "Attempt %d/%d failed (%s). Retrying in %.1fs.",
                    attempt + 1,
                    cfg.max_attempts,
                    exc,
                    delay,
                )
                do_sleep(delay)

    raise RetriesExhaustedError(last_error, cfg.max_attempts)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# 2. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for dashboard users.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (intake, insights).
        error_code: Machine-readable identifier (e.g. "ENRICH_003").
        technical_detail: Debugging info for logs only, never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail)."""
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose internal
    paths, stack traces, or provider responses to the end user.
    """

    def format_enrichment_error(self, error: Exception) -> UserFriendlyError:
        """Format an enrichment failure (provider unreachable, bad reply).

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        if isinstance(error, RetriesExhaustedError):
            error = error.last_error
        return self._format(error, component="intake", code_prefix="ENRICH")

    def format_storage_error(self, error: Exception) -> UserFriendlyError:
        """Format a record-store error."""
        return self._format(error, component="intake", code_prefix="STOR")

    def format_analytics_error(self, error: Exception) -> UserFriendlyError:
        """Format an analytics failure (usually an unavailable store)."""
        return self._format(error, component="insights", code_prefix="INSIGHT")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        message, suggestion, code_suffix = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    if isinstance(error, sqlite3.OperationalError):
        return (
            "The feedback store is unavailable.",
            "Check that the database file exists and is writable.",
            "001",
        )
    if isinstance(error, sqlite3.IntegrityError):
        return (
            "That feedback item already exists.",
            "Use a new identifier or update the existing item.",
            "002",
        )
    if isinstance(error, (TimeoutError, ConnectionError)):
        return (
            "The enrichment provider timed out or could not be reached.",
            "Try again shortly. Items stay unenriched until it succeeds.",
            "003",
        )
    if isinstance(error, json.JSONDecodeError):
        return (
            "The provider returned a response that could not be read.",
            "Retry enrichment for this item.",
            "006",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "005",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 3. Input Validation
# ---------------------------------------------------------------------------


class ValidationError(Exception):
    """Raised when input validation fails."""


class InputValidator:
    """Validate and clean text at the intake boundary.

    Example::

        validator = InputValidator()
        content = validator.sanitize_string(raw_body, max_length=10_000)
    """

    def sanitize_string(
        self,
        value: str,
        *,
        max_length: int = 1000,
    ) -> str:
        """Sanitize a user-provided string.

        Strips control characters and surrounding whitespace, then truncates.

        Args:
            value: Raw user string.
            max_length: Maximum allowed length after sanitization.

        Returns:
            Cleaned string.
        """
        cleaned = _strip_control_chars(value)
        cleaned = cleaned.strip()
        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length]
        return cleaned

    def require_text(self, value: str | None, field_name: str, *, max_length: int = 1000) -> str:
        """Sanitize *value* and reject it when nothing is left.

        Args:
            value: Raw user string.
            field_name: Name used in the error message.
            max_length: Maximum allowed length after sanitization.

        Returns:
            Cleaned, non-empty string.

        Raises:
            ValidationError: If the value is missing or blank after cleaning.
        """
        cleaned = self.sanitize_string(value or "", max_length=max_length)
        if not cleaned:
            raise ValidationError(f"{field_name} must not be empty.")
        return cleaned


def _strip_control_chars(text: str) -> str:
    """Remove ASCII control characters except common whitespace."""
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
