"""Azure DevOps API client module.

This module provides:
- AzureDevOpsClient: Async REST client for work items, queries, comments and links
- Authenticator: Credential headers and URL construction
- ErrorClassifier and the exception taxonomy
- RateLimiter, BatchProcessor and PolicyExecutor building blocks
"""

from .auth import Authenticator
from .classifier import ErrorClassifier
from .client import AzureDevOpsClient
from .exceptions import (
    AuthenticationError,
    AzureDevOpsError,
    CircuitOpenError,
    ConfigurationError,
    InvalidQueryError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    RetryableError,
    RetryExhaustedError,
    ServerError,
    UnknownError,
    ValidationError,
    WorkItemNotFoundError,
)
from .pacing import BatchJob, BatchProcessor, BatchResult, ChunkFailure
from .rate_limit import RateLimiter, RateLimitState
from .resilience import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    OperationKind,
    PolicyExecutor,
    ResilienceExecutor,
    ResiliencePolicy,
    build_policies,
)

__all__ = [
    # Client
    "Authenticator",
    "AzureDevOpsClient",
    "ErrorClassifier",
    # Exceptions
    "AuthenticationError",
    "AzureDevOpsError",
    "CircuitOpenError",
    "ConfigurationError",
    "InvalidQueryError",
    "NetworkError",
    "NotFoundError",
    "RateLimitError",
    "RequestTimeoutError",
    "RetryExhaustedError",
    "RetryableError",
    "ServerError",
    "UnknownError",
    "ValidationError",
    "WorkItemNotFoundError",
    # Pacing
    "BatchJob",
    "BatchProcessor",
    "BatchResult",
    "ChunkFailure",
    # Rate limiting
    "RateLimitState",
    "RateLimiter",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "OperationKind",
    "PolicyExecutor",
    "ResilienceExecutor",
    "ResiliencePolicy",
    "build_policies",
]
