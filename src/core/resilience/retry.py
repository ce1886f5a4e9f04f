"""Retry policy for provider sends, built on tenacity."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_before_delay,
    wait_exponential,
)

from src.core.exceptions import CallNotPermittedError, ProviderNotAvailableError

logger = logging.getLogger(__name__)

# Validation and programming errors (ValidationError and
# InvalidStatusTransitionError are ValueErrors), missing providers and open
# circuits are never retried. Everything else is treated as transient.
NON_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    ValueError,
    TypeError,
    ProviderNotAvailableError,
    CallNotPermittedError,
)


def is_retryable(error: BaseException) -> bool:
    """Return True if a failed send should be attempted again."""
    return not isinstance(error, NON_RETRYABLE_EXCEPTIONS)


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff settings; delays are in seconds."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    deadline: Optional[float] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays cannot be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")

    @classmethod
    def from_millis(
        cls,
        max_attempts: int,
        initial_delay_ms: int,
        multiplier: float,
        max_delay_ms: int,
        deadline_ms: Optional[int] = None,
    ) -> "RetryConfig":
        return cls(
            max_attempts=max_attempts,
            initial_delay=initial_delay_ms / 1000.0,
            multiplier=multiplier,
            max_delay=max_delay_ms / 1000.0,
            deadline=deadline_ms / 1000.0 if deadline_ms else None,
        )

    def delay_for_attempt(self, attempt: int) -> float:
        """Backoff slept after the given (1-based) failed attempt."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


class RetryPolicy:
    """
    Runs an async callable with exponential backoff.

    Stops after ``max_attempts`` attempts and re-raises the last error
    unchanged. With a deadline, no backoff is started that would end past
    it, so the whole run stays within ``deadline`` seconds of the first
    attempt (plus the duration of the attempt in flight).
    """

    def __init__(
        self,
        config: RetryConfig,
        name: str = "delivery",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        retryable: Callable[[BaseException], bool] = is_retryable,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ):
        """
        Initialize the retry policy.

        Args:
            config: Backoff settings
            name: Label used in log messages
            sleep: Awaitable sleep, injectable for tests
            retryable: Predicate deciding whether an error is transient
            on_retry: Optional callback ``(attempt_number, error)`` before each backoff
        """
        self.config = config
        self.name = name
        self._sleep = sleep
        self._retryable = retryable
        self._on_retry = on_retry

    def _stop(self):
        stop = stop_after_attempt(self.config.max_attempts)
        if self.config.deadline:
            stop = stop | stop_before_delay(self.config.deadline)
        return stop

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{self.name}: attempt {retry_state.attempt_number}/{self.config.max_attempts} "
            f"failed ({type(error).__name__}: {error}), retrying in {wait:.2f}s"
        )
        if self._on_retry is not None:
            self._on_retry(retry_state.attempt_number, error)

    def _after_give_up(self, error: BaseException, attempts: int) -> None:
        if isinstance(error, CallNotPermittedError):
            logger.warning(f"{self.name}: circuit '{error.breaker_name}' is open, not retrying")
        elif not self._retryable(error):
            logger.info(f"{self.name}: {type(error).__name__} is not retryable")
        else:
            logger.error(f"{self.name}: giving up after {attempts} attempt(s): {error}")

    def build(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=self._stop(),
            wait=wait_exponential(
                multiplier=self.config.initial_delay,
                exp_base=self.config.multiplier,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception(self._retryable),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func(*args, **kwargs)`` until it succeeds or the policy gives up.

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The last error raised by func
        """
        retrying = self.build()
        try:
            result = await retrying(func, *args, **kwargs)
        except Exception as e:
            self._after_give_up(e, retrying.statistics.get("attempt_number", 1))
            raise
        attempts = retrying.statistics.get("attempt_number", 1)
        if attempts > 1:
            logger.info(f"{self.name}: succeeded after {attempts} attempts")
        return result
