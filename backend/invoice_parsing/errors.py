"""Error taxonomy for invoice parsing with automatic classification.

Errors fall into four families:
- ProviderError: one adapter failed; the orchestrator records the attempt and moves on
- ConfigurationError: unknown strategy or missing credentials; surfaced to the caller
- BudgetExceededError: the cost guard rejected a provider attempt
- FatalProviderError: an unexpected exception escaped a provider; ends the walk

Usage:
    from invoice_parsing.errors import ProviderError

    try:
        response = provider.complete(prompt)
    except Exception as e:
        raise ProviderError.from_exception(e, provider_id="anthropic") from e
"""

import traceback
from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Error type classification for retry and debugging."""

    API_ERROR = "api_error"  # External API errors
    TIMEOUT = "timeout"  # Timeout errors (retryable)
    RATE_LIMIT = "rate_limit"  # API rate limiting (retryable)
    AUTH_ERROR = "auth_error"  # Authentication failures
    NETWORK = "network"  # Network connectivity issues
    PARSE_ERROR = "parse_error"  # Unparseable provider output
    BUDGET = "budget"  # Cost guard rejection
    CONFIGURATION = "configuration"  # Bad strategy or credentials
    CANCELLED = "cancelled"  # Caller aborted the parse
    UNKNOWN = "unknown"  # Uncategorized errors


class ParsingError(Exception):
    """Base class for invoice parsing errors.

    Attributes:
        message: Human-readable error message
        error_type: ErrorType classification
        provider_id: Provider the error relates to (if any)
        context: Additional context for logging
        is_retryable: Whether the same call may succeed on retry
    """

    default_type = ErrorType.UNKNOWN

    def __init__(
        self,
        message: str,
        error_type: ErrorType | None = None,
        provider_id: str | None = None,
        context: dict[str, Any] | None = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type or self.default_type
        self.provider_id = provider_id
        self.context = context or {}
        self.is_retryable = is_retryable


class ProviderError(ParsingError):
    """A single provider attempt failed; recoverable at orchestration level."""

    default_type = ErrorType.API_ERROR

    @classmethod
    def from_exception(
        cls, exception: Exception, provider_id: str | None = None
    ) -> "ProviderError":
        """Auto-classify a provider failure from the raised exception.

        Examines exception type and message to determine error type
        and retry strategy.
        """
        error_type, is_retryable = classify_exception(exception)
        return cls(
            f"{provider_id or 'provider'} error: {exception}",
            error_type=error_type,
            provider_id=provider_id,
            is_retryable=is_retryable,
        )


class ConfigurationError(ParsingError):
    """Unknown strategy name or missing provider credentials."""

    default_type = ErrorType.CONFIGURATION


class BudgetExceededError(ParsingError):
    """Cost guard rejected an attempt; fatal only to that provider attempt."""

    default_type = ErrorType.BUDGET


class FatalProviderError(ParsingError):
    """Unexpected exception raised by a provider client.

    cost carries any spend already incurred before the failure.
    """

    def __init__(
        self,
        message: str,
        provider_id: str | None = None,
        exception: Exception | None = None,
        cost: float = 0.0,
    ):
        super().__init__(message, provider_id=provider_id)
        self.exception = exception
        self.cost = cost
        self.stack_trace = None
        if exception:
            self.stack_trace = "".join(
                traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            )


class ParsingCancelledError(ParsingError):
    """The caller cancelled the parse."""

    default_type = ErrorType.CANCELLED


def classify_exception(exception: Exception) -> tuple[ErrorType, bool]:
    """Classify an exception into (ErrorType, is_retryable)."""
    error_str = str(exception).lower()
    exception_name = type(exception).__name__

    # Timeout errors (retryable)
    if "timeout" in error_str or exception_name in [
        "TimeoutError",
        "ReadTimeout",
        "APITimeoutError",
        "DeadlineExceeded",
    ]:
        return ErrorType.TIMEOUT, True

    # Rate limiting (retryable with backoff)
    if (
        exception_name in ["RateLimitError", "ResourceExhausted"]
        or "rate limit" in error_str
        or "429" in error_str
        or "quota" in error_str
    ):
        return ErrorType.RATE_LIMIT, True

    # Authentication errors (requires user intervention)
    if (
        exception_name in ["AuthenticationError", "PermissionDeniedError", "Unauthenticated"]
        or "401" in error_str
        or "unauthorized" in error_str
        or "api key" in error_str
    ):
        return ErrorType.AUTH_ERROR, False

    # Network errors (retryable)
    if (
        "connection" in error_str
        or "network" in error_str
        or exception_name in ["ConnectionError", "ConnectionResetError", "APIConnectionError"]
    ):
        return ErrorType.NETWORK, True

    # Unparseable output
    if exception_name in ["JSONDecodeError"] or "json" in error_str:
        return ErrorType.PARSE_ERROR, False

    return ErrorType.API_ERROR, False
