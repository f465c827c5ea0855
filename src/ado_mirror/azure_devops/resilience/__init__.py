"""Retry, timeout and circuit-breaker execution.

This module provides:
- OperationKind / ResiliencePolicy: Policy table per class of traffic
- CircuitBreaker / CircuitBreakerRegistry: Per-key breakers with half-open probes
- ResilienceExecutor: Protocol the REST client depends on
- PolicyExecutor: Default tenacity-based executor
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from .executor import PolicyExecutor, ResilienceExecutor
from .policies import (
    CircuitBreakerPolicy,
    OperationKind,
    ResiliencePolicy,
    RetryPolicy,
    build_policies,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerPolicy",
    "CircuitBreakerRegistry",
    "CircuitState",
    "OperationKind",
    "PolicyExecutor",
    "ResilienceExecutor",
    "ResiliencePolicy",
    "RetryPolicy",
    "build_policies",
]
