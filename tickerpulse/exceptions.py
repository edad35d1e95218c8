"""Custom exception hierarchy for TickerPulse.

This module defines domain-specific exceptions that provide semantic clarity
and enable targeted error handling throughout the application. Each exception
includes contextual information to aid debugging and observability.

Severity:
    - AuthError and FetchError are soft: the last good snapshot is kept and
      the next refresh tick tries again.
    - FieldParseError and FilterConfigError are local: the caller degrades
      the single field or filter to a safe default.
    - LoggingInitializationError is the only startup-blocking error.
"""

from datetime import UTC, datetime
from typing import Any


class TickerPulseError(Exception):
    """Base exception for all TickerPulse errors.

    All custom exceptions inherit from this base, enabling blanket catches
    for application-specific errors while distinguishing from system errors.

    Attributes:
        message: Human-readable error description.
        context: Optional dictionary with additional debugging information.
        timestamp: UTC timestamp when the exception was raised.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(UTC)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format exception message with context for logging."""
        base = f"[{self.timestamp.isoformat()}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} | Context: {context_str}"
        return base


class AuthError(TickerPulseError):
    """Raised when the provider session cannot be established.

    Covers cookie or crumb retrieval failures after the bounded number of
    attempts, requests made during the backoff window, and 401/403 responses
    from the quote endpoint.
    """

    def __init__(self, reason: str, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(
            message=f"Provider authentication failed: {reason}",
            context={"url": url, "reason": reason, "status_code": status_code},
        )
        self.reason = reason
        self.status_code = status_code


class FetchError(TickerPulseError):
    """Raised when a quote or index request fails.

    This may indicate network issues, timeouts, non-success HTTP status,
    or an undecodable body. Includes the target URL for debugging.
    """

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(
            message=f"Fetch from '{url}' failed: {reason}",
            context={"url": url, "reason": reason, "status_code": status_code},
        )
        self.url = url
        self.reason = reason
        self.status_code = status_code


class RateLimitError(FetchError):
    """Raised when the provider returns HTTP 429.

    The refresh coordinator skips cycles until ``retry_after`` has elapsed.
    """

    def __init__(self, url: str, retry_after: float | None = None) -> None:
        super().__init__(url=url, reason="Rate limited by provider", status_code=429)
        self.context["retry_after_seconds"] = retry_after
        self.retry_after = retry_after


class ShapeMismatchError(FetchError):
    """Raised when a response decodes but does not have the expected shape.

    A missing ``quoteResponse.result`` list, or a batch where too many
    entries are malformed, means the provider contract has likely changed.

    Attributes:
        failure_ratio: The observed malformed-entry ratio, if applicable.
        threshold: The configured threshold that was exceeded, if applicable.
    """

    def __init__(
        self,
        url: str,
        reason: str,
        failure_ratio: float | None = None,
        threshold: float | None = None,
    ) -> None:
        super().__init__(url=url, reason=reason)
        self.context["failure_ratio"] = failure_ratio
        self.context["threshold"] = threshold
        self.failure_ratio = failure_ratio
        self.threshold = threshold


class FieldParseError(TickerPulseError):
    """Raised when a single numeric string does not match the number grammar.

    Callers on the record path catch this and degrade the field to zero
    or the empty string; it never aborts a record or a batch.
    """

    def __init__(self, value: Any, reason: str, field: str | None = None) -> None:
        super().__init__(
            message=f"Cannot parse numeric value {value!r}: {reason}",
            context={"value": value, "field": field, "reason": reason},
        )
        self.value = value
        self.field = field


class FilterConfigError(TickerPulseError):
    """Raised when a filter expression cannot be compiled.

    The filter engine falls back to the last valid predicate rather than
    halting the refresh loop.
    """

    def __init__(self, expression: str, reason: str, position: int | None = None) -> None:
        super().__init__(
            message=f"Invalid filter expression '{expression}': {reason}",
            context={"expression": expression, "reason": reason, "position": position},
        )
        self.expression = expression
        self.reason = reason
        self.position = position


class LoggingInitializationError(TickerPulseError):
    """Raised when the logging system fails to initialize.

    This is a startup-blocking error - the application cannot proceed
    without a functioning logging infrastructure.
    """

    def __init__(self, log_dir: str, reason: str) -> None:
        super().__init__(
            message=f"Failed to initialize logging at '{log_dir}': {reason}",
            context={"log_dir": log_dir, "reason": reason},
        )
