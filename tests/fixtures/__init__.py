"""Test fixtures for ADO Mirror."""

from .rate_limit_responses import (
    HEADERS_BAD_RESET,
    HEADERS_DELAYED,
    HEADERS_EXHAUSTED,
    HEADERS_HEALTHY,
    HEADERS_LOWERCASE,
    HEADERS_MALFORMED,
    HEADERS_THROTTLED,
    future_reset_timestamp,
    past_reset_timestamp,
)

__all__ = [
    "HEADERS_BAD_RESET",
    "HEADERS_DELAYED",
    "HEADERS_EXHAUSTED",
    "HEADERS_HEALTHY",
    "HEADERS_LOWERCASE",
    "HEADERS_MALFORMED",
    "HEADERS_THROTTLED",
    "future_reset_timestamp",
    "past_reset_timestamp",
]
