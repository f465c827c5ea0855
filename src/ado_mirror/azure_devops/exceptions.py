"""Azure DevOps client exceptions.

Every failure the client surfaces is one of these types. The
``retryable`` flag and ``retry_after`` hint are read by the resilience
executor when deciding whether and when to try again.
"""

from __future__ import annotations

from datetime import datetime


class AzureDevOpsError(Exception):
    """Base exception for Azure DevOps client errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after


class ConfigurationError(AzureDevOpsError):
    """Raised when required connection settings are missing or malformed."""


class AuthenticationError(AzureDevOpsError):
    """Raised when the credential is rejected (401)."""


class ValidationError(AzureDevOpsError):
    """Raised for caller mistakes: bad ids, empty text, malformed URLs, 400s."""


class InvalidQueryError(ValidationError):
    """Raised when the server rejects a WIQL query."""


class NotFoundError(AzureDevOpsError):
    """Raised when a resource is not found (404)."""


class WorkItemNotFoundError(NotFoundError):
    """Raised when a specific work item does not exist or is not visible."""

    def __init__(self, work_item_id: int | None, message: str | None = None) -> None:
        super().__init__(
            message or f"Work item {work_item_id} not found",
            status_code=404,
        )
        self.work_item_id = work_item_id


class RetryableError(AzureDevOpsError):
    """Base class for errors that should be retried with backoff.

    Subclasses of this exception are retried by the resilience executor
    and count toward the circuit breaker of the operation kind.
    """

    retryable = True


class RateLimitError(RetryableError):
    """Raised when the server throttles the caller (429)."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        reset_at: datetime | None = None,
    ) -> None:
        super().__init__(message, status_code=429, retry_after=retry_after)
        self.reset_at = reset_at


class RequestTimeoutError(RetryableError):
    """Raised when a request times out (408 or transport timeout)."""


class NetworkError(RetryableError):
    """Raised when the server cannot be reached."""


class ServerError(RetryableError):
    """Raised for 5xx responses."""


class UnknownError(RetryableError):
    """Raised for failures that map to no known category."""


class CircuitOpenError(AzureDevOpsError):
    """Raised without a network attempt while a circuit breaker is open."""

    def __init__(self, key: str, retry_in: float) -> None:
        super().__init__(f"Circuit '{key}' is open; next probe in {retry_in:.1f}s")
        self.key = key
        self.retry_in = retry_in


class RetryExhaustedError(AzureDevOpsError):
    """Raised when an operation failed on every attempt its policy allows."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
