"""Circuit breakers keyed by operation kind.

Three states:
- CLOSED: requests flow; outcomes are recorded in a sliding sample window
- OPEN: failures in the window reached the threshold; requests are rejected
  without a network attempt until the recovery time has elapsed
- HALF_OPEN: exactly one probe request is admitted; its outcome closes
  or reopens the breaker
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ado_mirror.logging import get_logger

from .policies import CircuitBreakerPolicy

logger = get_logger(__name__)


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerStats:
    """Lifetime counters for one breaker."""

    successes: int = 0
    failures: int = 0
    rejections: int = 0
    times_opened: int = 0
    last_failure: str | None = None


@dataclass
class CircuitBreaker:
    """A single breaker over a sliding window of recent outcomes.

    Example:
        breaker = CircuitBreaker(policy)
        if breaker.allow_request():
            try:
                result = await call()
            except ServerError as e:
                breaker.record_failure(e)
                raise
            breaker.record_success()
    """

    policy: CircuitBreakerPolicy
    clock: Callable[[], float] = time.monotonic
    state: CircuitState = CircuitState.CLOSED
    opened_at: float | None = None
    probe_in_flight: bool = False
    stats: BreakerStats = field(default_factory=BreakerStats)
    _window: deque[bool] = field(init=False)

    def __post_init__(self) -> None:
        self._window = deque(maxlen=self.policy.sample_size)

    @property
    def key(self) -> str:
        return self.policy.key

    @property
    def failures_in_window(self) -> int:
        return sum(1 for ok in self._window if not ok)

    def retry_in(self) -> float:
        """Seconds until an open breaker admits its probe (0 when not open)."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.opened_at + self.policy.recovery_time - self.clock())

    def allow_request(self) -> bool:
        """Decide whether a request may be attempted now.

        An OPEN breaker whose recovery time has elapsed moves to HALF_OPEN
        and admits exactly one probe; further callers are rejected until
        the probe's outcome is recorded.
        """
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.retry_in() > 0:
                self.stats.rejections += 1
                return False
            self.state = CircuitState.HALF_OPEN
            self.probe_in_flight = True
            logger.info("Circuit '{}' half-open; admitting probe", self.key)
            return True

        # HALF_OPEN
        if self.probe_in_flight:
            self.stats.rejections += 1
            return False
        self.probe_in_flight = True
        return True

    def record_success(self) -> None:
        self.stats.successes += 1
        if self.state == CircuitState.HALF_OPEN:
            logger.info("Circuit '{}' closed after successful probe", self.key)
            self._close()
            return
        self._window.append(True)

    def record_failure(self, error: BaseException | None = None) -> None:
        self.stats.failures += 1
        if error is not None:
            self.stats.last_failure = type(error).__name__

        if self.state == CircuitState.HALF_OPEN:
            logger.warning("Circuit '{}' probe failed; reopening", self.key)
            self._open()
            return

        self._window.append(False)
        if self.state == CircuitState.CLOSED and (
            self.failures_in_window >= self.policy.failure_threshold
        ):
            logger.warning(
                "Circuit '{}' opened after {} failure(s) in last {} call(s)",
                self.key,
                self.failures_in_window,
                len(self._window),
            )
            self._open()

    def release_probe(self) -> None:
        """Give back an unused probe slot (the probe ended without an outcome)."""
        if self.state == CircuitState.HALF_OPEN:
            self.probe_in_flight = False

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = self.clock()
        self.probe_in_flight = False
        self.stats.times_opened += 1

    def _close(self) -> None:
        self.state = CircuitState.CLOSED
        self.opened_at = None
        self.probe_in_flight = False
        self._window.clear()

    def reset(self) -> None:
        self._close()
        self.stats = BreakerStats()

    def get_status(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "state": self.state.value,
            "failures_in_window": self.failures_in_window,
            "failure_threshold": self.policy.failure_threshold,
            "retry_in_seconds": round(self.retry_in(), 3),
            "successes": self.stats.successes,
            "failures": self.stats.failures,
            "rejections": self.stats.rejections,
            "times_opened": self.stats.times_opened,
            "last_failure": self.stats.last_failure,
        }


class CircuitBreakerRegistry:
    """Holds one breaker per key, created on first use."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, policy: CircuitBreakerPolicy) -> CircuitBreaker:
        breaker = self._breakers.get(policy.key)
        if breaker is None:
            breaker = CircuitBreaker(policy=policy, clock=self._clock)
            self._breakers[policy.key] = breaker
        return breaker

    def states(self) -> dict[str, str]:
        """Current state per breaker key."""
        return {key: breaker.state.value for key, breaker in self._breakers.items()}

    def get_status(self) -> dict[str, dict[str, Any]]:
        return {key: breaker.get_status() for key, breaker in self._breakers.items()}

    def reset(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
