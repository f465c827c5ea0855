"""Map transport and HTTP failures onto the client's error taxonomy.

Azure DevOps reports errors as JSON bodies whose message may live at
``message``, ``error.message`` or ``value.message`` depending on the
endpoint. Throttling is reported with 429 plus ``Retry-After`` and/or
``X-RateLimit-Reset`` headers.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from ado_mirror.logging import get_logger

from .exceptions import (
    AuthenticationError,
    AzureDevOpsError,
    InvalidQueryError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    RetryExhaustedError,
    ServerError,
    UnknownError,
    ValidationError,
    WorkItemNotFoundError,
)

logger = get_logger(__name__)

WORK_ITEM_URL_PATTERN = re.compile(r"/workitems/(\d+)", re.IGNORECASE)
QUERY_HINTS = ("query", "wiql")

BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0
MAX_SERVER_WAIT = 60.0


class ErrorClassifier:
    """Classifies failures into typed, retry-aware errors.

    Usage:
        classifier = ErrorClassifier()
        if response.is_error:
            raise classifier.from_response(response)

        try:
            ...
        except Exception as e:
            raise classifier.classify(e) from e
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def classify(self, error: BaseException) -> AzureDevOpsError:
        """Map any exception to an AzureDevOpsError.

        Already-typed errors pass through unchanged.
        """
        if isinstance(error, AzureDevOpsError):
            return error
        if isinstance(error, httpx.HTTPStatusError):
            return self.from_response(error.response)
        if isinstance(error, httpx.TimeoutException):
            return RequestTimeoutError(f"Request timed out: {error}")
        if isinstance(error, httpx.TransportError):
            return NetworkError(f"Network error: {error}")

        logger.error("Unmapped failure {}: {}", type(error).__name__, error)
        return UnknownError(f"Unexpected error ({type(error).__name__}): {error}")

    def from_response(self, response: httpx.Response) -> AzureDevOpsError:
        """Map an HTTP error response to an AzureDevOpsError."""
        status = response.status_code
        data = _safe_json(response)
        message = self.extract_message(data) or response.text or response.reason_phrase
        url = str(response.request.url) if _has_request(response) else ""

        if status == 400:
            if self.is_query_error(message, data):
                return InvalidQueryError(f"Invalid query: {message}", status_code=400)
            return ValidationError(f"Bad request: {message}", status_code=400)
        if status == 401:
            return AuthenticationError(
                "Authentication failed. Check that AZURE_DEVOPS_PAT is valid, not expired, "
                f"and has Work Items scope. Server said: {message}",
                status_code=status,
            )
        if status == 404:
            work_item_id = self.extract_work_item_id(url)
            if work_item_id is not None:
                return WorkItemNotFoundError(work_item_id)
            return NotFoundError(f"Not found: {message}", status_code=404)
        if status == 429:
            retry_after = self.extract_retry_after(response.headers)
            reset_at = (
                datetime.fromtimestamp(self._clock() + retry_after, tz=UTC)
                if retry_after is not None
                else None
            )
            return RateLimitError(
                f"Rate limit exceeded: {message}", retry_after=retry_after, reset_at=reset_at
            )
        if status == 408:
            return RequestTimeoutError(f"Request timeout: {message}", status_code=408)
        if status >= 500:
            return ServerError(f"Server error ({status}): {message}", status_code=status)
        if status == 403:
            return AuthenticationError(
                f"Access denied. The PAT lacks permission for this resource: {message}",
                status_code=403,
            )

        return ValidationError(f"Request failed ({status}): {message}", status_code=status)

    # -------------------------------------------------------------------------
    # Extraction helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def extract_message(data: Any) -> str | None:
        """Pull a human-readable message out of an error body."""
        if isinstance(data, str):
            return data or None
        if not isinstance(data, dict):
            return None
        if isinstance(data.get("message"), str):
            return data["message"]
        for key in ("error", "value"):
            nested = data.get(key)
            if isinstance(nested, dict) and isinstance(nested.get("message"), str):
                return nested["message"]
        return json.dumps(data) if data else None

    @staticmethod
    def is_query_error(message: str, data: Any) -> bool:
        type_key = data.get("typeKey", "") if isinstance(data, dict) else ""
        haystack = f"{message} {type_key}".lower()
        return any(hint in haystack for hint in QUERY_HINTS)

    @staticmethod
    def extract_work_item_id(url: str) -> int | None:
        match = WORK_ITEM_URL_PATTERN.search(url)
        return int(match.group(1)) if match else None

    def extract_retry_after(self, headers: httpx.Headers | dict[str, str]) -> float | None:
        """Seconds to wait before retrying, from Retry-After or X-RateLimit-Reset."""
        lowered = {k.lower(): v for k, v in headers.items()}
        retry_after = lowered.get("retry-after")
        if retry_after is not None:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass
        reset = lowered.get("x-ratelimit-reset")
        if reset is not None:
            try:
                return max(0.0, float(reset) - self._clock())
            except ValueError:
                pass
        return None

    # -------------------------------------------------------------------------
    # Retry advice and reporting
    # -------------------------------------------------------------------------

    @staticmethod
    def retry_delay(
        error: AzureDevOpsError,
        attempt: int,
        *,
        initial_delay: float = BASE_RETRY_DELAY,
        max_delay: float = MAX_RETRY_DELAY,
        max_server_wait: float = MAX_SERVER_WAIT,
    ) -> float:
        """Suggested delay in seconds before the given (1-based) retry attempt.

        A server retry-after hint wins but is capped at ``max_server_wait``;
        otherwise the delay doubles per attempt up to ``max_delay``.
        """
        if error.retry_after is not None:
            return min(error.retry_after, max_server_wait)
        return min(initial_delay * 2 ** max(0, attempt - 1), max_delay)

    @staticmethod
    def summarize(error: BaseException) -> dict[str, Any]:
        """Flatten an error into a dict for logs and status output."""
        root = error.last_error if isinstance(error, RetryExhaustedError) else error
        summary: dict[str, Any] = {
            "type": type(error).__name__,
            "message": str(error),
            "status_code": getattr(error, "status_code", None),
            "retryable": getattr(root, "retryable", False),
            "retry_after": getattr(root, "retry_after", None),
        }
        if root is not error:
            summary["cause"] = type(root).__name__
        return summary


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (ValueError, UnicodeDecodeError):
        return None


def _has_request(response: httpx.Response) -> bool:
    try:
        response.request
    except RuntimeError:
        return False
    return True

