"""Run operations under a retry, timeout and circuit-breaker policy.

The REST client depends only on the ``ResilienceExecutor`` protocol, so
tests can pass a fake executor. ``PolicyExecutor`` is the default
implementation: tenacity drives retries, ``asyncio.wait_for`` bounds
each attempt, and a per-key ``CircuitBreaker`` short-circuits calls to a
failing operation kind.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from ado_mirror.logging import get_logger

from ..classifier import MAX_SERVER_WAIT, ErrorClassifier
from ..exceptions import (
    AzureDevOpsError,
    CircuitOpenError,
    RequestTimeoutError,
    RetryExhaustedError,
)
from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from .policies import ResiliencePolicy

logger = get_logger(__name__)

T = TypeVar("T")


Admission = Callable[[], Awaitable[None]]


class ResilienceExecutor(Protocol):
    """Runs one operation under one policy.

    ``admit`` is awaited before every attempt and is not covered by the
    attempt timeout; implementations must call it when given.
    """

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: ResiliencePolicy,
        *,
        admit: Admission | None = None,
    ) -> T: ...


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, AzureDevOpsError) and error.retryable


class PolicyExecutor:
    """Default ResilienceExecutor built on tenacity.

    Usage:
        executor = PolicyExecutor()
        policies = build_policies()
        item = await executor.execute(
            lambda: fetch_work_item(42),
            policies[OperationKind.SINGLE],
        )
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry | None = None,
        classifier: ErrorClassifier | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_server_wait: float = MAX_SERVER_WAIT,
    ) -> None:
        """Initialize the executor.

        Args:
            breakers: Breaker registry (a private one if not provided)
            classifier: Maps raw exceptions into the error taxonomy
            sleep: Awaitable sleep used between attempts (injectable for tests)
            max_server_wait: Cap on a server retry-after hint, in seconds
        """
        self._breakers = breakers or CircuitBreakerRegistry()
        self._classifier = classifier or ErrorClassifier()
        self._sleep = sleep
        self._max_server_wait = max_server_wait

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: ResiliencePolicy,
        *,
        admit: Admission | None = None,
    ) -> T:
        """Run the operation, retrying retryable failures per the policy.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            policy: Retry, timeout and breaker settings for the operation kind
            admit: Awaited before each attempt, outside the attempt timeout
                (the client passes its rate limiter's ``acquire``)

        Raises:
            CircuitOpenError: The breaker for this operation kind is open
            RetryExhaustedError: Every allowed attempt failed with a retryable error
            AzureDevOpsError: A non-retryable failure, surfaced immediately
        """
        breaker = self._breakers.get(policy.circuit_breaker)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.retry.max_attempts),
            wait=self._wait_strategy(policy),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry(policy),
            sleep=self._sleep,
            reraise=False,
        )
        try:
            return await retrying(self._attempt, operation, policy, breaker, admit)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            assert last_error is not None
            logger.warning(
                "{} operation gave up after {} attempt(s): {}",
                policy.kind.value,
                e.last_attempt.attempt_number,
                last_error,
            )
            raise RetryExhaustedError(
                policy.kind.value, e.last_attempt.attempt_number, last_error
            ) from last_error

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: ResiliencePolicy,
        breaker: CircuitBreaker,
        admit: Admission | None,
    ) -> T:
        if not breaker.allow_request():
            raise CircuitOpenError(breaker.key, breaker.retry_in())

        try:
            if admit is not None:
                await admit()
            result = await asyncio.wait_for(operation(), timeout=policy.timeout)
        except asyncio.CancelledError:
            breaker.release_probe()
            raise
        except TimeoutError as e:
            error: AzureDevOpsError = RequestTimeoutError(
                f"{policy.kind.value} operation timed out after {policy.timeout}s"
            )
            breaker.record_failure(error)
            raise error from e
        except Exception as e:
            error = self._classifier.classify(e)
            if error.retryable:
                breaker.record_failure(error)
            else:
                # The service answered; the request itself was at fault
                breaker.record_success()
            if error is e:
                raise
            raise error from e

        breaker.record_success()
        return result

    def _wait_strategy(self, policy: ResiliencePolicy) -> Callable[[RetryCallState], float]:
        def wait(retry_state: RetryCallState) -> float:
            assert retry_state.outcome is not None
            failure = retry_state.outcome.exception()
            assert failure is not None
            error = self._classifier.classify(failure)
            delay = self._classifier.retry_delay(
                error,
                retry_state.attempt_number,
                initial_delay=policy.retry.initial_delay,
                max_delay=policy.retry.max_delay,
                max_server_wait=self._max_server_wait,
            )
            if error.retry_after is not None:
                return delay
            # Full jitter over the exponential ceiling
            return random.uniform(0.0, delay)

        return wait

    @staticmethod
    def _log_retry(policy: ResiliencePolicy) -> Callable[[RetryCallState], None]:
        def log(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = outcome.exception() if outcome is not None else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "{} attempt {}/{} failed ({}); retrying in {:.2f}s",
                policy.kind.value,
                retry_state.attempt_number,
                policy.retry.max_attempts,
                error,
                delay,
            )

        return log
