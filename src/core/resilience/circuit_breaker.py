"""Circuit breaker guarding calls to a single external provider.

The breaker keeps a count-based sliding window of the most recent call
outcomes and evaluates two rates over it once a minimum number of calls
has been recorded:

- failure rate: failed calls / recorded calls
- slow-call rate: calls slower than the slow threshold / recorded calls

State transitions:
- CLOSED -> OPEN: either rate reaches its threshold
- OPEN -> HALF_OPEN: after the open wait duration (on read when automatic,
  otherwise on the next permission request)
- HALF_OPEN -> CLOSED: all permitted trial calls completed without failure
- HALF_OPEN -> OPEN: any trial call fails, or the trials were too slow
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from src.core.exceptions import CallNotPermittedError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls immediately
    HALF_OPEN = "half_open"  # Probing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds and timings for a circuit breaker.

    Durations are in seconds, rates in percent.
    """

    sliding_window_size: int = 10
    minimum_number_of_calls: int = 5
    failure_rate_threshold: float = 50.0
    slow_call_rate_threshold: float = 100.0
    slow_call_duration_threshold: float = 5.0
    wait_duration_in_open_state: float = 60.0
    permitted_number_of_calls_in_half_open_state: int = 3
    automatic_transition_from_open_to_half_open: bool = True
    ignore_exceptions: Tuple[Type[BaseException], ...] = ()

    def __post_init__(self):
        if self.sliding_window_size < 1:
            raise ValueError("sliding_window_size must be at least 1")
        if self.minimum_number_of_calls < 1:
            raise ValueError("minimum_number_of_calls must be at least 1")
        if not 0 < self.failure_rate_threshold <= 100:
            raise ValueError("failure_rate_threshold must be in (0, 100]")
        if not 0 < self.slow_call_rate_threshold <= 100:
            raise ValueError("slow_call_rate_threshold must be in (0, 100]")
        if self.permitted_number_of_calls_in_half_open_state < 1:
            raise ValueError("permitted_number_of_calls_in_half_open_state must be at least 1")
        if self.wait_duration_in_open_state < 0:
            raise ValueError("wait_duration_in_open_state cannot be negative")


@dataclass(frozen=True)
class _Outcome:
    failed: bool
    slow: bool


StateListener = Callable[["CircuitBreaker", CircuitState, CircuitState], None]


class CircuitBreaker:
    """Thread-safe circuit breaker for provider operations.

    Args:
        name: Name of the circuit (typically the provider name)
        config: Thresholds and timings
        clock: Monotonic time source in seconds, injectable for tests
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._window: deque = deque(maxlen=self.config.sliding_window_size)
        self._half_open_outcomes: List[_Outcome] = []
        self._half_open_permits = 0
        self._opened_at: Optional[float] = None
        self._not_permitted_calls = 0
        self._listeners: List[StateListener] = []

        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state, applying the automatic OPEN -> HALF_OPEN move when due."""
        with self._lock:
            transitions = self._maybe_half_open_locked(on_read=True)
            state = self._state
        self._notify(transitions)
        return state

    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked as ``listener(breaker, from_state, to_state)``."""
        self._listeners.append(listener)

    def try_acquire_permission(self) -> None:
        """
        Ask the breaker whether a call may proceed.

        Raises:
            CallNotPermittedError: If the circuit is open or the half-open
                trial quota is used up
        """
        with self._lock:
            transitions = self._maybe_half_open_locked(on_read=False)
            rejected = False
            if self._state == CircuitState.OPEN:
                rejected = True
            elif self._state == CircuitState.HALF_OPEN:
                if self._half_open_permits >= self.config.permitted_number_of_calls_in_half_open_state:
                    rejected = True
                else:
                    self._half_open_permits += 1
            if rejected:
                self._not_permitted_calls += 1
                state = self._state
        self._notify(transitions)
        if rejected:
            logger.warning(f"Circuit breaker '{self.name}' rejected call in state {state.name}")
            raise CallNotPermittedError(self.name, state.value)

    def record_success(self, duration: float = 0.0) -> None:
        """Record a completed call."""
        self._record(_Outcome(failed=False, slow=self._is_slow(duration)))

    def record_failure(self, error: Optional[BaseException] = None, duration: float = 0.0) -> None:
        """Record a failed call; ignored exception types release the permit only."""
        if error is not None and self.config.ignore_exceptions and isinstance(
            error, self.config.ignore_exceptions
        ):
            with self._lock:
                if self._state == CircuitState.HALF_OPEN and self._half_open_permits > 0:
                    self._half_open_permits -= 1
            return
        self._record(_Outcome(failed=True, slow=self._is_slow(duration)))

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute a function through the circuit breaker.

        Args:
            func: Function to call
            *args, **kwargs: Arguments to pass to function

        Returns:
            Result from function

        Raises:
            CallNotPermittedError: If the circuit does not permit the call
            Exception: Any exception raised by func
        """
        self.try_acquire_permission()
        start = self._clock()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e, self._clock() - start)
            raise
        self.record_success(self._clock() - start)
        return result

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await a coroutine function through the circuit breaker.

        Same contract as :meth:`call`.
        """
        self.try_acquire_permission()
        start = self._clock()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e, self._clock() - start)
            raise
        self.record_success(self._clock() - start)
        return result

    def transition_to_half_open(self) -> None:
        """Force a probe of the guarded dependency."""
        with self._lock:
            transitions = [self._transition_locked(CircuitState.HALF_OPEN)]
        self._notify(transitions)

    def transition_to_open(self) -> None:
        with self._lock:
            transitions = [self._transition_locked(CircuitState.OPEN)]
        self._notify(transitions)

    def reset(self) -> None:
        """Manually reset the circuit breaker (for admin operations)."""
        with self._lock:
            logger.info(f"Circuit breaker '{self.name}' manually reset")
            transitions = [self._transition_locked(CircuitState.CLOSED)]
        self._notify(transitions)

    def get_stats(self) -> Dict[str, Any]:
        """Get circuit breaker statistics."""
        with self._lock:
            transitions = self._maybe_half_open_locked(on_read=True)
            stats = {
                "name": self.name,
                "state": self._state.value,
                "failure_rate": self._rate_locked(lambda o: o.failed),
                "slow_call_rate": self._rate_locked(lambda o: o.slow),
                "buffered_calls": len(self._window),
                "failed_calls": sum(1 for o in self._window if o.failed),
                "slow_calls": sum(1 for o in self._window if o.slow),
                "not_permitted_calls": self._not_permitted_calls,
                "half_open_calls": self._half_open_permits,
            }
        self._notify(transitions)
        return stats

    def _is_slow(self, duration: float) -> bool:
        return duration >= self.config.slow_call_duration_threshold

    def _record(self, outcome: _Outcome) -> None:
        transitions = []
        with self._lock:
            if self._state == CircuitState.CLOSED:
                self._window.append(outcome)
                if self._exceeds_thresholds_locked():
                    logger.error(
                        f"Circuit breaker '{self.name}' threshold exceeded: "
                        f"failure rate {self._rate_locked(lambda o: o.failed):.1f}%, "
                        f"slow-call rate {self._rate_locked(lambda o: o.slow):.1f}%"
                    )
                    transitions.append(self._transition_locked(CircuitState.OPEN))
            elif self._state == CircuitState.HALF_OPEN:
                if outcome.failed:
                    logger.warning(f"Circuit breaker '{self.name}' trial call failed, reopening")
                    transitions.append(self._transition_locked(CircuitState.OPEN))
                else:
                    self._half_open_outcomes.append(outcome)
                    permitted = self.config.permitted_number_of_calls_in_half_open_state
                    if len(self._half_open_outcomes) >= permitted:
                        slow = sum(1 for o in self._half_open_outcomes if o.slow)
                        if slow * 100.0 / len(self._half_open_outcomes) >= self.config.slow_call_rate_threshold:
                            transitions.append(self._transition_locked(CircuitState.OPEN))
                        else:
                            transitions.append(self._transition_locked(CircuitState.CLOSED))
            # Calls that complete after the circuit opened are not counted.
        self._notify(transitions)

    def _exceeds_thresholds_locked(self) -> bool:
        if len(self._window) < self.config.minimum_number_of_calls:
            return False
        failure_rate = self._rate_locked(lambda o: o.failed)
        slow_rate = self._rate_locked(lambda o: o.slow)
        return (
            failure_rate >= self.config.failure_rate_threshold
            or slow_rate >= self.config.slow_call_rate_threshold
        )

    def _rate_locked(self, predicate: Callable[[_Outcome], bool]) -> float:
        """Percentage of buffered calls matching predicate, -1.0 below the minimum."""
        total = len(self._window)
        if total == 0 or total < self.config.minimum_number_of_calls:
            return -1.0
        return sum(1 for o in self._window if predicate(o)) * 100.0 / total

    def _maybe_half_open_locked(self, on_read: bool) -> list:
        if self._state != CircuitState.OPEN:
            return []
        if on_read and not self.config.automatic_transition_from_open_to_half_open:
            return []
        if self._clock() - self._opened_at < self.config.wait_duration_in_open_state:
            return []
        return [self._transition_locked(CircuitState.HALF_OPEN)]

    def _transition_locked(self, new_state: CircuitState) -> Tuple[CircuitState, CircuitState]:
        old_state = self._state
        self._state = new_state
        self._half_open_permits = 0
        self._half_open_outcomes = []
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._window.clear()
            logger.error(
                f"Circuit breaker '{self.name}' OPEN for "
                f"{self.config.wait_duration_in_open_state}s"
            )
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
            self._window.clear()
            logger.info(f"Circuit breaker '{self.name}' CLOSED")
        else:
            logger.info(f"Circuit breaker '{self.name}' HALF_OPEN, probing recovery")
        return old_state, new_state

    def _notify(self, transitions: list) -> None:
        for old_state, new_state in transitions:
            if old_state == new_state:
                continue
            for listener in self._listeners:
                try:
                    listener(self, old_state, new_state)
                except Exception as e:
                    logger.warning(f"Circuit breaker '{self.name}' listener failed: {e}")


class CircuitBreakerRegistry:
    """Owns the circuit breakers of one process.

    Args:
        default_config: Config used when no instance config is registered
        instance_configs: Per-name config overrides
        clock: Time source shared by every breaker the registry creates
        listener: Optional state listener attached to every breaker
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        instance_configs: Optional[Dict[str, CircuitBreakerConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
        listener: Optional[StateListener] = None,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self.instance_configs = dict(instance_configs or {})
        self._clock = clock
        self._listener = listener
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Return the breaker registered under name, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    config or self.instance_configs.get(name, self.default_config),
                    clock=self._clock,
                )
                if self._listener is not None:
                    breaker.add_listener(self._listener)
                self._breakers[name] = breaker
                logger.debug(f"Registered circuit breaker '{name}'")
            return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def names(self) -> List[str]:
        return list(self._breakers)

    def all_stats(self) -> Dict[str, Dict[str, Any]]:
        """Get statistics for all circuit breakers."""
        return {name: breaker.get_stats() for name, breaker in list(self._breakers.items())}

    def open_breakers(self) -> List[str]:
        """Get names of circuit breakers that are currently OPEN."""
        return [name for name, breaker in list(self._breakers.items()) if breaker.is_open()]
