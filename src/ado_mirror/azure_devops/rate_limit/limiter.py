"""Client-side rate limiter with server quota awareness.

The limiter combines two signals:
1. A local budget: at most N request starts per rolling one-second
   window, with a minimum spacing of 1/N seconds between starts.
2. Server quota: when the most recent response reported remaining
   quota at or below the floor, admission waits for the reported reset
   (capped at a configurable maximum).

Admission is serialized through an asyncio.Lock; the wrapped operation
itself runs outside the lock so in-flight calls overlap freely.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

from ado_mirror.config import RateLimitConfig
from ado_mirror.logging import get_logger

from .schemas import RateLimitState

logger = get_logger(__name__)

T = TypeVar("T")

WINDOW_SECONDS = 1.0


class RateLimiter:
    """Admits calls under a local budget and the server's reported quota.

    Each client owns its own limiter; there is no shared global state.

    Usage:
        limiter = RateLimiter(RateLimitConfig(requests_per_second=5))

        response = await limiter.execute(lambda: http.get(url))
        limiter.update_from_headers(response.headers)
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the limiter.

        Args:
            config: Rate limit configuration (defaults if not provided)
            clock: Returns the current time as epoch seconds
            sleep: Awaitable sleep used for every wait (injectable for tests)
        """
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self._window: deque[float] = deque()
        self._last_start: float | None = None
        self._states: dict[str, RateLimitState] = {}
        self._latest: RateLimitState | None = None

        # Statistics
        self._total_requests = 0
        self._total_wait_seconds = 0.0
        self._server_waits = 0

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def min_interval(self) -> float:
        """Minimum seconds between request starts."""
        return 1.0 / self._config.requests_per_second

    @property
    def max_per_window(self) -> int:
        """Maximum request starts within one rolling window."""
        return max(1, math.floor(self._config.requests_per_second))

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        resource: str | None = None,
    ) -> T:
        """Wait for admission, then run the operation.

        Args:
            operation: Zero-argument coroutine factory performing the call
            resource: Quota resource to consult (latest observation if None)

        Returns:
            Whatever the operation returns
        """
        await self.acquire(resource)
        return await operation()

    async def acquire(self, resource: str | None = None) -> None:
        """Block until a request may start."""
        async with self._lock:
            server_wait = self._server_wait(resource)
            if server_wait > 0:
                logger.info(
                    "Server quota nearly exhausted; waiting {:.1f}s for reset", server_wait
                )
                self._server_waits += 1
                await self._wait(server_wait)
                self._forget(resource)

            while True:
                now = self._clock()
                while self._window and self._window[0] <= now - WINDOW_SECONDS:
                    self._window.popleft()

                delay = 0.0
                if len(self._window) >= self.max_per_window:
                    delay = self._window[0] + WINDOW_SECONDS - now
                if self._last_start is not None:
                    delay = max(delay, self._last_start + self.min_interval - now)
                if delay <= 0:
                    break
                await self._wait(delay)

            now = self._clock()
            self._window.append(now)
            self._last_start = now
            self._total_requests += 1

    async def _wait(self, seconds: float) -> None:
        self._total_wait_seconds += seconds
        await self._sleep(seconds)

    def _server_wait(self, resource: str | None) -> float:
        state = self._states.get(resource) if resource else self._latest
        if state is None or state.remaining > self._config.quota_floor:
            return 0.0
        now = datetime.fromtimestamp(self._clock(), tz=UTC)
        return min(state.seconds_until_reset(now), self._config.max_server_wait_seconds)

    def _forget(self, resource: str | None) -> None:
        # A quota observation is honoured once; the next response supplies a fresh one
        state = self._states.get(resource) if resource else self._latest
        if state is None:
            return
        self._states.pop(state.resource, None)
        if self._latest is state:
            self._latest = None

    # -------------------------------------------------------------------------
    # Header ingestion
    # -------------------------------------------------------------------------

    def update_from_headers(self, headers: Mapping[str, str]) -> RateLimitState | None:
        """Replace the cached quota for the response's resource.

        Malformed or absent headers leave the limiter on its local budget.

        Args:
            headers: Response headers (any casing)

        Returns:
            The new state, or None if the headers carried no quota
        """
        state = RateLimitState.from_headers(headers)
        if state is None:
            return None

        self._states[state.resource] = state
        self._latest = state
        if state.remaining <= self._config.quota_floor:
            logger.warning(
                "Rate limit for '{}' nearly exhausted ({}/{} remaining)",
                state.resource,
                state.remaining,
                state.limit,
            )
        return state

    def get_state(self, resource: str | None = None) -> RateLimitState | None:
        """Most recent quota observation (for a resource, or overall)."""
        return self._states.get(resource) if resource else self._latest

    def get_status(self) -> dict[str, Any]:
        """Get limiter statistics.

        Returns:
            Dict with budget, counters, and the cached quota per resource
        """
        return {
            "requests_per_second": self._config.requests_per_second,
            "total_requests": self._total_requests,
            "total_wait_seconds": round(self._total_wait_seconds, 3),
            "server_waits": self._server_waits,
            "resources": {name: state.to_dict() for name, state in self._states.items()},
        }

    def reset(self) -> None:
        """Reset window and statistics (keeps configuration)."""
        self._window.clear()
        self._last_start = None
        self._states.clear()
        self._latest = None
        self._total_requests = 0
        self._total_wait_seconds = 0.0
        self._server_waits = 0
