"""Tests for the circuit breaker."""

import pytest

from src.core.exceptions import CallNotPermittedError
from src.core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return CircuitBreakerConfig(
        sliding_window_size=4,
        minimum_number_of_calls=4,
        failure_rate_threshold=50.0,
        slow_call_duration_threshold=2.0,
        wait_duration_in_open_state=30.0,
        permitted_number_of_calls_in_half_open_state=2,
    )


def _fail():
    raise RuntimeError("provider down")


def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.config.minimum_number_of_calls):
        with pytest.raises(RuntimeError):
            breaker.call(_fail)


class TestCircuitBreakerConfig:
    """Test config validation."""

    def test_rejects_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(failure_rate_threshold=0)

    def test_rejects_empty_window(self):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(sliding_window_size=0)


class TestCircuitBreaker:
    """Test circuit breaker state transitions."""

    def test_starts_closed(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.call(lambda: "ok") == "ok"

    def test_stays_closed_below_minimum_calls(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.call(_fail)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()["failure_rate"] == -1.0

    def test_opens_when_failure_rate_reaches_threshold(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        breaker.call(lambda: None)
        breaker.call(lambda: None)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                breaker.call(_fail)

        assert breaker.state == CircuitState.OPEN

    def test_open_rejects_without_invoking(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        _trip(breaker)
        invoked = []

        with pytest.raises(CallNotPermittedError) as exc_info:
            breaker.call(lambda: invoked.append(True))

        assert invoked == []
        assert exc_info.value.breaker_name == "smtpProvider"
        assert breaker.get_stats()["not_permitted_calls"] == 1

    def test_opens_on_slow_calls(self, clock):
        config = CircuitBreakerConfig(
            sliding_window_size=2,
            minimum_number_of_calls=2,
            slow_call_rate_threshold=100.0,
            slow_call_duration_threshold=1.0,
        )
        breaker = CircuitBreaker("sendgridProvider", config, clock)
        for _ in range(2):
            breaker.record_success(duration=1.5)

        assert breaker.state == CircuitState.OPEN

    def test_half_open_after_wait_then_closes(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        _trip(breaker)

        clock.advance(29.0)
        assert breaker.state == CircuitState.OPEN

        clock.advance(1.0)
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.call(lambda: None)
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.call(lambda: None)
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        _trip(breaker)
        clock.advance(30.0)

        with pytest.raises(RuntimeError):
            breaker.call(_fail)

        assert breaker.state == CircuitState.OPEN

    def test_half_open_limits_trial_calls(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        _trip(breaker)
        clock.advance(30.0)

        breaker.try_acquire_permission()
        breaker.try_acquire_permission()
        with pytest.raises(CallNotPermittedError):
            breaker.try_acquire_permission()

    def test_manual_half_open_transition(self, clock):
        config = CircuitBreakerConfig(
            sliding_window_size=2,
            minimum_number_of_calls=2,
            automatic_transition_from_open_to_half_open=False,
        )
        breaker = CircuitBreaker("fcmProvider", config, clock)
        _trip(breaker)
        clock.advance(3600)

        assert breaker.state == CircuitState.OPEN
        breaker.transition_to_half_open()
        assert breaker.state == CircuitState.HALF_OPEN

    def test_ignored_exceptions_are_not_counted(self, clock):
        config = CircuitBreakerConfig(
            sliding_window_size=2,
            minimum_number_of_calls=2,
            ignore_exceptions=(ValueError,),
        )
        breaker = CircuitBreaker("smtpProvider", config, clock)

        def reject():
            raise ValueError("bad input")

        for _ in range(5):
            with pytest.raises(ValueError):
                breaker.call(reject)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()["buffered_calls"] == 0

    def test_reset(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        _trip(breaker)
        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()["buffered_calls"] == 0

    def test_listener_sees_transitions(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)
        seen = []
        breaker.add_listener(lambda b, old, new: seen.append((b.name, old, new)))

        _trip(breaker)
        clock.advance(30.0)
        _ = breaker.state

        assert seen == [
            ("smtpProvider", CircuitState.CLOSED, CircuitState.OPEN),
            ("smtpProvider", CircuitState.OPEN, CircuitState.HALF_OPEN),
        ]

    def test_failing_listener_does_not_break_breaker(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)

        def bad_listener(b, old, new):
            raise RuntimeError("listener bug")

        breaker.add_listener(bad_listener)
        _trip(breaker)

        assert breaker.is_open()

    @pytest.mark.asyncio
    async def test_call_async(self, config, clock):
        breaker = CircuitBreaker("smtpProvider", config, clock)

        async def send(value):
            return value * 2

        assert await breaker.call_async(send, 21) == 42
        assert breaker.get_stats()["buffered_calls"] == 1


class TestCircuitBreakerRegistry:
    """Test the circuit breaker registry."""

    def test_get_or_create_returns_same_instance(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)

        assert registry.get_or_create("smtpProvider") is registry.get_or_create("smtpProvider")
        assert registry.names() == ["smtpProvider"]
        assert registry.get("unknown") is None

    def test_instance_config_overrides_default(self, clock):
        override = CircuitBreakerConfig(sliding_window_size=20, minimum_number_of_calls=10)
        registry = CircuitBreakerRegistry(instance_configs={"smtpProvider": override}, clock=clock)

        assert registry.get_or_create("smtpProvider").config.sliding_window_size == 20
        assert registry.get_or_create("fcmProvider").config.sliding_window_size == 10

    def test_open_breakers_and_listener(self, clock):
        seen = []
        registry = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(sliding_window_size=1, minimum_number_of_calls=1),
            clock=clock,
            listener=lambda b, old, new: seen.append(new),
        )
        breaker = registry.get_or_create("apnsProvider")
        registry.get_or_create("fcmProvider")
        breaker.record_failure(RuntimeError("down"))

        assert registry.open_breakers() == ["apnsProvider"]
        assert seen == [CircuitState.OPEN]
        assert registry.all_stats()["apnsProvider"]["state"] == "open"
