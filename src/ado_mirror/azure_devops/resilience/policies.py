"""Resilience policies per operation kind."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from ado_mirror.config import OperationPolicyConfig, ResilienceConfig


class OperationKind(StrEnum):
    """Classes of client traffic, each with its own policy and breaker."""

    BATCH = "batch"
    SINGLE = "single"
    QUERY = "query"
    COMMENT = "comment"
    UPDATE = "update"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with full jitter."""

    max_attempts: int
    initial_delay: float
    max_delay: float


@dataclass(frozen=True)
class CircuitBreakerPolicy:
    """Breaker parameters; ``key`` identifies the shared breaker instance."""

    key: str
    failure_threshold: int
    recovery_time: float
    sample_size: int


@dataclass(frozen=True)
class ResiliencePolicy:
    """Everything the executor needs to run one operation."""

    kind: OperationKind
    retry: RetryPolicy
    timeout: float
    circuit_breaker: CircuitBreakerPolicy

    @classmethod
    def from_config(cls, kind: OperationKind, config: OperationPolicyConfig) -> ResiliencePolicy:
        return cls(
            kind=kind,
            retry=RetryPolicy(
                max_attempts=config.max_attempts,
                initial_delay=config.initial_delay_seconds,
                max_delay=config.max_delay_seconds,
            ),
            timeout=config.timeout_seconds,
            circuit_breaker=CircuitBreakerPolicy(
                key=f"azure-devops-{kind.value}",
                failure_threshold=config.failure_threshold,
                recovery_time=config.recovery_seconds,
                sample_size=config.sample_size,
            ),
        )


def build_policies(
    config: ResilienceConfig | None = None,
) -> dict[OperationKind, ResiliencePolicy]:
    """Build the policy table for every operation kind.

    Args:
        config: Resilience configuration (defaults if not provided)

    Returns:
        Mapping of operation kind to its policy
    """
    config = config or ResilienceConfig()
    return {
        kind: ResiliencePolicy.from_config(kind, getattr(config, kind.value))
        for kind in OperationKind
    }
