"""Resilience primitives: circuit breaking and retrying."""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .retry import NON_RETRYABLE_EXCEPTIONS, RetryConfig, RetryPolicy, is_retryable

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "NON_RETRYABLE_EXCEPTIONS",
    "RetryConfig",
    "RetryPolicy",
    "is_retryable",
]
