"""Azure DevOps rate limit header fixtures.

Azure DevOps reports throttling on ordinary responses rather than through a
dedicated endpoint. These header sets mirror what the service sends when a
caller approaches or exceeds its resource consumption limit.

See: https://learn.microsoft.com/en-us/azure/devops/integrate/concepts/rate-limits
"""

import time

# -----------------------------------------------------------------------------
# Helper to generate reset timestamps
# -----------------------------------------------------------------------------


def future_reset_timestamp(seconds_from_now: int = 300) -> int:
    """Generate a Unix timestamp for reset time in the future."""
    return int(time.time()) + seconds_from_now


def past_reset_timestamp(seconds_ago: int = 60) -> int:
    """Generate a Unix timestamp for reset time in the past."""
    return int(time.time()) - seconds_ago


# -----------------------------------------------------------------------------
# Response headers
# -----------------------------------------------------------------------------

# Plenty of quota left
HEADERS_HEALTHY = {
    "X-RateLimit-Resource": "ATCP",
    "X-RateLimit-Limit": "200",
    "X-RateLimit-Remaining": "180",
    "X-RateLimit-Reset": str(future_reset_timestamp(300)),
}

# Delayed by the service, quota almost used up
HEADERS_DELAYED = {
    "X-RateLimit-Resource": "ATCP",
    "X-RateLimit-Delay": "0.5",
    "X-RateLimit-Limit": "200",
    "X-RateLimit-Remaining": "1",
    "X-RateLimit-Reset": str(future_reset_timestamp(30)),
}

# Quota exhausted
HEADERS_EXHAUSTED = {
    "X-RateLimit-Resource": "ATCP",
    "X-RateLimit-Limit": "200",
    "X-RateLimit-Remaining": "0",
    "X-RateLimit-Reset": str(future_reset_timestamp(30)),
}

# Lower-case names as some proxies rewrite them
HEADERS_LOWERCASE = {
    "x-ratelimit-resource": "DBPT",
    "x-ratelimit-limit": "100",
    "x-ratelimit-remaining": "40",
}

# Garbage values; must be ignored
HEADERS_MALFORMED = {
    "X-RateLimit-Limit": "lots",
    "X-RateLimit-Remaining": "-",
    "X-RateLimit-Reset": "soon",
}

# Limit and remaining present, unparseable reset
HEADERS_BAD_RESET = {
    "X-RateLimit-Limit": "200",
    "X-RateLimit-Remaining": "50",
    "X-RateLimit-Reset": "not-a-timestamp",
    "X-RateLimit-Delay": "abc",
}

# 429 response headers
HEADERS_THROTTLED = {
    "Retry-After": "2",
    "X-RateLimit-Resource": "ATCP",
    "X-RateLimit-Limit": "200",
    "X-RateLimit-Remaining": "0",
}
