"""
Tests for circuit breaker functionality.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
2. Failure window and threshold behaviour
3. CircuitBreakerRegistry (lazy records, overrides, with_breaker, status)
4. State change callbacks
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.core.circuit_breaker import (
    CIRCUIT_REFUSED,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitConfig,
    CircuitState,
    expires_at,
)
from app.core.config import Settings
from tests.conftest import NOW, FakeClock


def make_registry(clock, **config) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(CircuitConfig(**config), clock=clock)


class TestCircuitState:
    """Tests for CircuitState enum."""

    def test_circuit_states_exist(self):
        assert CircuitState.CLOSED.value == "CLOSED"
        assert CircuitState.OPEN.value == "OPEN"
        assert CircuitState.HALF_OPEN.value == "HALF_OPEN"

    def test_state_count(self):
        assert len(CircuitState) == 3


class TestCircuitConfig:
    def test_defaults(self):
        config = CircuitConfig()
        assert config.failure_threshold == 3
        assert config.reset_timeout == 30.0
        assert config.failure_window == 300.0

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError):
            CircuitConfig(failure_threshold=0)

    def test_rejects_negative_timeout(self):
        with pytest.raises(ValueError):
            CircuitConfig(reset_timeout=-1)


class TestCircuitBreakerInitialization:
    def test_starts_closed(self, clock):
        cb = CircuitBreaker(name="openai", clock=clock)

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.last_failure_at is None
        assert cb.last_state_change_at == NOW

    def test_snapshot(self, clock):
        cb = CircuitBreaker(name="openai", clock=clock)
        assert cb.snapshot() == {"state": "CLOSED", "failures": 0}


class TestStateTransitions:
    """Tests for circuit breaker state transitions."""

    def test_closed_to_open_after_failure_threshold(self, clock):
        cb = CircuitBreaker(name="openai", config=CircuitConfig(failure_threshold=3), clock=clock)

        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        assert cb.allow_request() is True

        # Third failure opens the circuit
        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is False

    def test_open_refuses_until_reset_timeout(self, clock):
        cb = CircuitBreaker(name="openai", config=CircuitConfig(failure_threshold=1, reset_timeout=30), clock=clock)
        cb.record_failure()

        clock.advance(29.9)
        assert cb.allow_request() is False
        assert cb.state == CircuitState.OPEN

        clock.advance(0.1)
        assert cb.allow_request() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_admits_exactly_one_probe(self, clock):
        cb = CircuitBreaker(name="openai", config=CircuitConfig(failure_threshold=1, reset_timeout=30), clock=clock)
        cb.record_failure()
        clock.advance(30)

        assert cb.allow_request() is True
        assert cb.allow_request() is False
        assert cb.allow_request() is False

    def test_half_open_readmits_probe_after_another_timeout(self, clock):
        """A probe whose outcome never arrives does not wedge the circuit."""
        cb = CircuitBreaker(name="openai", config=CircuitConfig(failure_threshold=1, reset_timeout=30), clock=clock)
        cb.record_failure()
        clock.advance(30)
        assert cb.allow_request() is True

        clock.advance(30)
        assert cb.allow_request() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self, clock):
        cb = CircuitBreaker(name="openai", config=CircuitConfig(failure_threshold=1, reset_timeout=30), clock=clock)
        cb.record_failure()
        clock.advance(30)
        cb.allow_request()

        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    def test_half_open_failure_reopens_and_restarts_timer(self, clock):
        cb = CircuitBreaker(name="openai", config=CircuitConfig(failure_threshold=3, reset_timeout=30), clock=clock)
        for _ in range(3):
            cb.record_failure()
        clock.advance(30)
        cb.allow_request()

        clock.advance(1)
        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.last_state_change_at == clock()
        clock.advance(29)
        assert cb.allow_request() is False

    def test_success_resets_failures_while_closed(self, clock):
        cb = CircuitBreaker(name="openai", clock=clock)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()
        cb.record_failure()
        cb.record_failure()

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 2

    def test_failure_count_resets_outside_window(self, clock):
        cb = CircuitBreaker(
            name="openai",
            config=CircuitConfig(failure_threshold=3, failure_window=300),
            clock=clock,
        )
        cb.record_failure()
        cb.record_failure()

        clock.advance(301)
        cb.record_failure()

        assert cb.failure_count == 1
        assert cb.state == CircuitState.CLOSED

    def test_failures_within_window_accumulate(self, clock):
        cb = CircuitBreaker(
            name="openai",
            config=CircuitConfig(failure_threshold=3, failure_window=300),
            clock=clock,
        )
        cb.record_failure()
        clock.advance(200)
        cb.record_failure()
        clock.advance(200)
        cb.record_failure()

        assert cb.state == CircuitState.OPEN


class TestOutageTimeline:
    """Threshold 3, reset timeout 30s, calls at t=0,1,2 fail."""

    def test_timeline(self, clock):
        registry = make_registry(clock, failure_threshold=3, reset_timeout=30)

        for t in (0, 1, 2):
            clock.set(t)
            assert registry.can_call("openai") is True
            registry.record_failure("openai")

        assert registry.status_of("openai") == {"state": "OPEN", "failures": 3}

        clock.set(3)
        assert registry.can_call("openai") is False

        clock.set(33)
        assert registry.can_call("openai") is True
        assert registry.status_of("openai")["state"] == "HALF_OPEN"

        clock.set(34)
        registry.record_failure("openai")
        assert registry.status_of("openai")["state"] == "OPEN"
        assert registry.can_call("openai") is False

    def test_timeline_recovers(self, clock):
        registry = make_registry(clock, failure_threshold=3, reset_timeout=30)
        for t in (0, 1, 2):
            clock.set(t)
            registry.record_failure("openai")

        clock.set(33)
        assert registry.can_call("openai") is True
        registry.record_success("openai")

        assert registry.status_of("openai") == {"state": "CLOSED", "failures": 0}
        assert registry.can_call("openai") is True


class TestThresholdProperty:
    @pytest.mark.parametrize("threshold", [1, 2, 3, 5, 8])
    def test_k_failures_open_k_minus_one_do_not(self, clock, threshold):
        below = make_registry(clock, failure_threshold=threshold)
        for _ in range(threshold - 1):
            below.record_failure("svc")
        assert below.status_of("svc")["state"] == "CLOSED"

        at = make_registry(clock, failure_threshold=threshold)
        for _ in range(threshold):
            at.record_failure("svc")
        assert at.status_of("svc")["state"] == "OPEN"


class TestRegistry:
    def test_unknown_service_is_closed(self, clock):
        registry = make_registry(clock)
        assert registry.can_call("replicate") is True
        assert registry.status_of("replicate") == {"state": "CLOSED", "failures": 0}

    def test_services_are_independent(self, clock):
        registry = make_registry(clock, failure_threshold=1)
        registry.record_failure("openai")

        assert registry.can_call("openai") is False
        assert registry.can_call("replicate") is True

    def test_status_of_all(self, clock):
        registry = make_registry(clock, failure_threshold=2)
        registry.record_failure("openai")
        registry.can_call("replicate")

        assert registry.status_of_all() == {
            "openai": {"state": "CLOSED", "failures": 1},
            "replicate": {"state": "CLOSED", "failures": 0},
        }

    def test_overrides_apply_per_service(self, clock):
        registry = CircuitBreakerRegistry(
            CircuitConfig(failure_threshold=3),
            overrides={"replicate": CircuitConfig(failure_threshold=1)},
            clock=clock,
        )
        registry.record_failure("replicate")
        registry.record_failure("openai")

        assert registry.status_of("replicate")["state"] == "OPEN"
        assert registry.status_of("openai")["state"] == "CLOSED"

    def test_configure_updates_existing_record(self, clock):
        registry = make_registry(clock, failure_threshold=5)
        registry.record_failure("openai")

        registry.configure("openai", CircuitConfig(failure_threshold=2))
        registry.record_failure("openai")

        assert registry.status_of("openai")["state"] == "OPEN"

    def test_from_settings(self):
        settings = Settings(
            CIRCUIT_FAILURE_THRESHOLD=4,
            CIRCUIT_RESET_TIMEOUT_SECONDS=10,
            CIRCUIT_OVERRIDES={"replicate": {"failure_threshold": 2}},
        )
        registry = CircuitBreakerRegistry.from_settings(settings)

        assert registry.default_config.failure_threshold == 4
        assert registry.get("replicate").config.failure_threshold == 2
        assert registry.get("replicate").config.reset_timeout == 10

    def test_reset_clears_records(self, clock):
        registry = make_registry(clock, failure_threshold=1)
        registry.record_failure("openai")

        registry.reset()

        assert registry.status_of_all() == {}
        assert registry.can_call("openai") is True


class TestWithBreaker:
    def test_success_returns_result(self, clock):
        registry = make_registry(clock)
        registry.record_failure("openai")

        assert registry.with_breaker("openai", lambda: "ok") == "ok"
        assert registry.status_of("openai")["failures"] == 0

    def test_failure_is_recorded_and_reraised(self, clock):
        registry = make_registry(clock)

        def boom():
            raise RuntimeError("provider down")

        with pytest.raises(RuntimeError):
            registry.with_breaker("openai", boom)
        assert registry.status_of("openai")["failures"] == 1

    def test_refused_call_does_not_run_operation(self, clock):
        registry = make_registry(clock, failure_threshold=1)
        registry.record_failure("openai")
        operation = MagicMock()

        assert registry.with_breaker("openai", operation) is None
        operation.assert_not_called()

    def test_refused_marker_distinguishes_none_result(self, clock):
        registry = make_registry(clock, failure_threshold=1)

        assert registry.with_breaker("openai", lambda: None, refused=CIRCUIT_REFUSED) is None
        registry.record_failure("openai")
        assert registry.with_breaker("openai", lambda: None, refused=CIRCUIT_REFUSED) is CIRCUIT_REFUSED


class TestStateChangeCallback:
    def test_callback_receives_transitions(self, clock):
        callback = MagicMock()
        registry = CircuitBreakerRegistry(
            CircuitConfig(failure_threshold=1, reset_timeout=30), clock=clock, on_state_change=callback
        )

        registry.record_failure("openai")
        clock.advance(30)
        registry.can_call("openai")
        registry.record_success("openai")

        assert [c.args for c in callback.call_args_list] == [
            ("openai", "CLOSED", "OPEN"),
            ("openai", "OPEN", "HALF_OPEN"),
            ("openai", "HALF_OPEN", "CLOSED"),
        ]

    def test_callback_errors_do_not_break_breaker(self, clock):
        callback = MagicMock(side_effect=RuntimeError("alerting down"))
        cb = CircuitBreaker(
            name="openai", config=CircuitConfig(failure_threshold=1), clock=clock, on_state_change=callback
        )

        cb.record_failure()

        assert cb.state == CircuitState.OPEN


class TestExpiresAt:
    def test_none_when_closed(self, clock):
        assert expires_at(CircuitBreaker(name="openai", clock=clock)) is None

    def test_open_circuit_retry_time(self):
        clock = FakeClock()
        cb = CircuitBreaker(name="openai", config=CircuitConfig(failure_threshold=1, reset_timeout=30), clock=clock)
        clock.advance(5)
        cb.record_failure()

        assert expires_at(cb) == NOW + timedelta(seconds=35)
