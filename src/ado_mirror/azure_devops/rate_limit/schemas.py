"""Pydantic schemas for Azure DevOps rate limit data.

Azure DevOps reports throttling state on responses with headers:
- X-RateLimit-Resource (which resource the quota applies to)
- X-RateLimit-Delay (seconds of delay the server applied)
- X-RateLimit-Limit
- X-RateLimit-Remaining
- X-RateLimit-Reset (epoch seconds)
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Self

from pydantic import BaseModel, Field, computed_field

DEFAULT_RESOURCE = "default"


class RateLimitState(BaseModel):
    """Server-reported quota for one resource.

    Always replaced wholesale from the most recent response; fields are
    never merged from different observations.
    """

    resource: str = Field(default=DEFAULT_RESOURCE, description="Resource the quota applies to")
    limit: int = Field(ge=0, description="Quota for the current window")
    remaining: int = Field(ge=0, description="Requests remaining in current window")
    reset_at: datetime | None = Field(default=None, description="UTC datetime when quota resets")
    delay_seconds: float | None = Field(default=None, ge=0, description="Server-applied delay")
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining_percent(self) -> float:
        """Percentage of quota remaining (0.0 to 100.0)."""
        if self.limit == 0:
            return 0.0
        return (self.remaining / self.limit) * 100

    def seconds_until_reset(self, now: datetime | None = None) -> float:
        """Seconds until the quota resets (0 if already past or unknown)."""
        if self.reset_at is None:
            return 0.0
        delta = self.reset_at - (now or datetime.now(UTC))
        return max(0.0, delta.total_seconds())

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Self | None:
        """Parse quota headers, matching names case-insensitively.

        Limit and remaining are required; without them (or with values that
        do not parse) there is no observation and None is returned.

        Args:
            headers: HTTP response headers

        Returns:
            RateLimitState, or None when the headers carry no usable quota
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        try:
            limit = int(lowered["x-ratelimit-limit"])
            remaining = int(lowered["x-ratelimit-remaining"])
        except (KeyError, ValueError):
            return None
        if limit < 0 or remaining < 0:
            return None

        reset_at = None
        if "x-ratelimit-reset" in lowered:
            try:
                reset_at = datetime.fromtimestamp(float(lowered["x-ratelimit-reset"]), tz=UTC)
            except (ValueError, OverflowError, OSError):
                reset_at = None

        delay = None
        if "x-ratelimit-delay" in lowered:
            try:
                delay = max(0.0, float(lowered["x-ratelimit-delay"]))
            except ValueError:
                delay = None

        return cls(
            resource=lowered.get("x-ratelimit-resource") or DEFAULT_RESOURCE,
            limit=limit,
            remaining=remaining,
            reset_at=reset_at,
            delay_seconds=delay,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "resource": self.resource,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
            "delay_seconds": self.delay_seconds,
        }
