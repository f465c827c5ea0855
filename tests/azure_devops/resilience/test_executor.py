"""Tests for PolicyExecutor and the policy table."""

import asyncio

import httpx
import pytest

from ado_mirror.azure_devops.exceptions import (
    CircuitOpenError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    RetryExhaustedError,
    ServerError,
    ValidationError,
)
from ado_mirror.azure_devops.resilience import (
    OperationKind,
    PolicyExecutor,
    ResiliencePolicy,
    build_policies,
)
from ado_mirror.azure_devops.resilience.policies import CircuitBreakerPolicy, RetryPolicy
from ado_mirror.config import OperationPolicyConfig, ResilienceConfig


class SleepRecorder:
    """Awaitable sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_policy(
    kind: OperationKind = OperationKind.SINGLE,
    *,
    max_attempts: int = 3,
    max_delay: float = 5.0,
    timeout: float = 5.0,
    failure_threshold: int = 3,
) -> ResiliencePolicy:
    return ResiliencePolicy(
        kind=kind,
        retry=RetryPolicy(max_attempts=max_attempts, initial_delay=0.5, max_delay=max_delay),
        timeout=timeout,
        circuit_breaker=CircuitBreakerPolicy(
            key=f"azure-devops-{kind.value}",
            failure_threshold=failure_threshold,
            recovery_time=20.0,
            sample_size=5,
        ),
    )


class Operation:
    """Callable that fails with scripted errors before succeeding."""

    def __init__(self, *errors: BaseException, result: object = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def executor(sleep) -> PolicyExecutor:
    return PolicyExecutor(sleep=sleep)


class TestRetries:
    """Tests for retry behaviour."""

    async def test_success_first_try(self, executor, sleep):
        operation = Operation()

        assert await executor.execute(operation, make_policy()) == "ok"
        assert operation.calls == 1
        assert sleep.delays == []

    async def test_retryable_error_then_success(self, executor):
        operation = Operation(ServerError("down", status_code=503))

        assert await executor.execute(operation, make_policy()) == "ok"
        assert operation.calls == 2

    async def test_exhaustion_raises_retry_exhausted(self, executor):
        """Every attempt failing yields RetryExhaustedError with the last error."""
        errors = [ServerError(f"down {i}", status_code=503) for i in range(3)]
        operation = Operation(*errors)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation, make_policy(max_attempts=3))

        assert operation.calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is errors[-1]
        assert exc_info.value.operation == "single"

    async def test_non_retryable_raised_immediately(self, executor):
        """Caller errors are not retried and do not count against the breaker."""
        operation = Operation(ValidationError("bad id"))
        policy = make_policy()

        with pytest.raises(ValidationError):
            await executor.execute(operation, policy)

        assert operation.calls == 1
        breaker = executor.breakers.get(policy.circuit_breaker)
        assert breaker.failures_in_window == 0

    async def test_retry_after_hint_used_as_delay(self, executor, sleep):
        operation = Operation(RateLimitError("throttled", retry_after=2.5))

        await executor.execute(operation, make_policy())

        assert sleep.delays == [2.5]

    async def test_long_retry_after_capped(self, executor, sleep):
        """A server asking for an hour is waited on for at most a minute."""
        operation = Operation(RateLimitError("throttled", retry_after=3600.0))

        await executor.execute(operation, make_policy())

        assert sleep.delays == [60.0]

    async def test_retry_after_cap_configurable(self, sleep):
        executor = PolicyExecutor(sleep=sleep, max_server_wait=5.0)
        operation = Operation(RateLimitError("throttled", retry_after=3600.0))

        await executor.execute(operation, make_policy())

        assert sleep.delays == [5.0]

    async def test_backoff_capped(self, executor, sleep):
        """Jittered backoff never exceeds max_delay."""
        operation = Operation(*[ServerError("down") for _ in range(4)])

        await executor.execute(operation, make_policy(max_attempts=5, max_delay=1.0, failure_threshold=5))

        assert len(sleep.delays) == 4
        assert all(0 <= d <= 1.0 for d in sleep.delays)

    async def test_raw_exception_classified(self, executor):
        """Transport errors are mapped before the retry decision."""
        operation = Operation(httpx.ConnectError("refused"))

        assert await executor.execute(operation, make_policy()) == "ok"
        assert operation.calls == 2

    async def test_raw_exception_exhaustion_reports_typed_error(self, executor):
        operation = Operation(*[httpx.ConnectError("refused") for _ in range(2)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation, make_policy(max_attempts=2))

        assert isinstance(exc_info.value.last_error, NetworkError)

    async def test_timeout_per_attempt(self, executor):
        """An attempt exceeding the timeout fails as RequestTimeoutError."""

        async def slow() -> str:
            await asyncio.sleep(1.0)
            return "late"

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(slow, make_policy(max_attempts=2, timeout=0.01))

        assert isinstance(exc_info.value.last_error, RequestTimeoutError)


class TestAdmission:
    """Tests for the admission hook awaited before each attempt."""

    async def test_admission_runs_before_every_attempt(self, executor):
        admitted = []
        operation = Operation(ServerError("down", status_code=503))

        async def admit() -> None:
            admitted.append(operation.calls)

        assert await executor.execute(operation, make_policy(), admit=admit) == "ok"
        assert admitted == [0, 1]

    async def test_admission_wait_not_bound_by_timeout(self, executor):
        """A slow admission is not an attempt timeout and is not a breaker failure."""
        policy = make_policy(timeout=0.01)

        async def admit() -> None:
            await asyncio.sleep(0.05)

        assert await executor.execute(Operation(), policy, admit=admit) == "ok"
        assert executor.breakers.get(policy.circuit_breaker).failures_in_window == 0

    async def test_open_breaker_skips_admission(self, executor):
        """No quota is spent waiting for a call that will be rejected."""
        policy = make_policy(max_attempts=3, failure_threshold=3)
        with pytest.raises(RetryExhaustedError):
            await executor.execute(Operation(*[ServerError("down") for _ in range(3)]), policy)
        admitted = []

        async def admit() -> None:
            admitted.append(True)

        with pytest.raises(CircuitOpenError):
            await executor.execute(Operation(), policy, admit=admit)

        assert admitted == []


class TestCircuitBreaking:
    """Tests for breaker integration."""

    async def test_open_breaker_rejects_without_calling(self, executor):
        policy = make_policy(max_attempts=3, failure_threshold=3)
        with pytest.raises(RetryExhaustedError):
            await executor.execute(Operation(*[ServerError("down") for _ in range(3)]), policy)

        operation = Operation()
        with pytest.raises(CircuitOpenError) as exc_info:
            await executor.execute(operation, policy)

        assert operation.calls == 0
        assert exc_info.value.key == "azure-devops-single"

    async def test_breakers_isolated_per_kind(self, executor):
        """A tripped single breaker does not block batch calls."""
        single = make_policy(OperationKind.SINGLE)
        with pytest.raises(RetryExhaustedError):
            await executor.execute(Operation(*[ServerError("down") for _ in range(3)]), single)

        result = await executor.execute(Operation(result=[1]), make_policy(OperationKind.BATCH))

        assert result == [1]
        assert executor.breakers.states() == {
            "azure-devops-single": "open",
            "azure-devops-batch": "closed",
        }

    async def test_shared_registry(self, sleep):
        """Executors sharing a registry share breaker state."""
        first = PolicyExecutor(sleep=sleep)
        second = PolicyExecutor(breakers=first.breakers, sleep=sleep)
        policy = make_policy()
        with pytest.raises(RetryExhaustedError):
            await first.execute(Operation(*[ServerError("down") for _ in range(3)]), policy)

        with pytest.raises(CircuitOpenError):
            await second.execute(Operation(), policy)


class TestBuildPolicies:
    """Tests for the policy table."""

    def test_every_kind_has_a_policy(self):
        policies = build_policies()

        assert set(policies) == set(OperationKind)
        for kind, policy in policies.items():
            assert policy.kind == kind
            assert policy.circuit_breaker.key == f"azure-devops-{kind.value}"

    def test_defaults(self):
        """Batch reads retry the most; comment creation the least."""
        policies = build_policies()

        assert policies[OperationKind.BATCH].retry.max_attempts == 5
        assert policies[OperationKind.BATCH].circuit_breaker.recovery_time == 30.0
        assert policies[OperationKind.COMMENT].retry.max_attempts == 2
        assert policies[OperationKind.QUERY].circuit_breaker.failure_threshold == 5

    def test_from_config(self):
        config = ResilienceConfig(single=OperationPolicyConfig(max_attempts=7, timeout_seconds=3.0))

        policy = build_policies(config)[OperationKind.SINGLE]

        assert policy.retry.max_attempts == 7
        assert policy.timeout == 3.0
