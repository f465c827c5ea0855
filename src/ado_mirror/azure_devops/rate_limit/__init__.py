"""Rate limiting for Azure DevOps API calls.

This module provides:
- RateLimitState: Server-reported quota parsed from response headers
- RateLimiter: Local requests-per-second budget plus quota-aware waits
"""

from .limiter import RateLimiter
from .schemas import RateLimitState

__all__ = [
    "RateLimitState",
    "RateLimiter",
]
