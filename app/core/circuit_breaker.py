"""
Per-service circuit breaker for calls to the external AI provider.

    CLOSED --(failure_threshold failures within failure_window)--> OPEN
    OPEN --(reset_timeout elapsed, next can_call)--> HALF_OPEN (one probe admitted)
    HALF_OPEN --(success)--> CLOSED
    HALF_OPEN --(failure)--> OPEN (reset timer restarts)

State is in-memory and per process: each instance of the app keeps its own
view, and a restart starts every circuit CLOSED. The registry is a plain
object so it can later be backed by a shared store without touching the
state machine.
"""

from datetime import datetime, timedelta
from enum import Enum
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar

from app.core.logging_config import get_logger
from app.core.typing import utc_now

logger = get_logger(__name__)

T = TypeVar("T")

# (service, old_state, new_state) - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]
Clock = Callable[[], datetime]

# Returned by with_breaker when the circuit refuses a call and the caller
# needs to tell that apart from an operation that returned None
CIRCUIT_REFUSED = object()


class CircuitState(Enum):
    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject calls
    HALF_OPEN = "HALF_OPEN"  # Probe admitted, waiting for its outcome


@dataclass(frozen=True)
class CircuitConfig:
    failure_threshold: int = 3
    reset_timeout: float = 30.0  # seconds
    failure_window: float = 300.0  # seconds

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout < 0 or self.failure_window < 0:
            raise ValueError("reset_timeout and failure_window must be >= 0")


@dataclass
class CircuitBreaker:
    """Health record and state machine for a single service name."""

    name: str
    config: CircuitConfig = field(default_factory=CircuitConfig)
    clock: Clock = utc_now
    on_state_change: Optional[StateChangeCallback] = None

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_at: Optional[datetime] = field(default=None, init=False)
    _last_state_change_at: datetime = field(default_factory=utc_now, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def __post_init__(self):
        self._last_state_change_at = self.clock()

    @property
    def state(self) -> CircuitState:
        """Current state. Use allow_request() for the OPEN -> HALF_OPEN transition."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_at(self) -> Optional[datetime]:
        return self._last_failure_at

    @property
    def last_state_change_at(self) -> datetime:
        return self._last_state_change_at

    def _transition(self, new_state: CircuitState, now: datetime) -> None:
        """Must be called while holding self._lock."""
        old_state = self._state
        self._state = new_state
        self._last_state_change_at = now
        if old_state is not new_state:
            log = logger.warning if new_state is CircuitState.OPEN else logger.info
            log(
                "circuit state changed",
                service=self.name,
                old_state=old_state.value,
                new_state=new_state.value,
                failures=self._failure_count,
            )
            self._notify(old_state, new_state)

    def _notify(self, old_state: CircuitState, new_state: CircuitState) -> None:
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(self.name, old_state.value, new_state.value)
        except Exception as e:
            logger.error("circuit state callback failed", service=self.name, error=str(e))

    def _timeout_elapsed(self, now: datetime) -> bool:
        elapsed = (now - self._last_state_change_at).total_seconds()
        return elapsed >= self.config.reset_timeout

    def allow_request(self) -> bool:
        with self._lock:
            now = self.clock()

            if self._state is CircuitState.CLOSED:
                return True

            if self._state is CircuitState.OPEN:
                if self._timeout_elapsed(now):
                    self._transition(CircuitState.HALF_OPEN, now)
                    return True
                return False

            # HALF_OPEN: the probe is in flight. Admit a replacement only if
            # its outcome never arrived within another reset window.
            if self._timeout_elapsed(now):
                self._last_state_change_at = now
                logger.info("circuit probe re-admitted", service=self.name)
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._transition(CircuitState.CLOSED, self.clock())

    def record_failure(self) -> None:
        with self._lock:
            now = self.clock()

            if self._last_failure_at is not None:
                since_last = (now - self._last_failure_at).total_seconds()
                if since_last > self.config.failure_window:
                    self._failure_count = 0

            self._failure_count += 1
            self._last_failure_at = now

            if self._state is CircuitState.HALF_OPEN:
                # Probe failed, restart the reset timer
                self._transition(CircuitState.OPEN, now)
            elif self._state is CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN, now)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {"state": self._state.value, "failures": self._failure_count}


class CircuitBreakerRegistry:
    """
    Registry of circuit breakers keyed by service name.

    Records are created lazily on first reference. Construct one registry per
    process (see app.main lifespan) and pass it to the code that needs it.

    Usage:
        registry = CircuitBreakerRegistry(CircuitConfig(failure_threshold=3))

        result = registry.with_breaker("openai", call_provider, refused=CIRCUIT_REFUSED)
        if result is CIRCUIT_REFUSED:
            result = fallback()
    """

    def __init__(
        self,
        default_config: Optional[CircuitConfig] = None,
        overrides: Optional[Dict[str, CircuitConfig]] = None,
        clock: Clock = utc_now,
        on_state_change: Optional[StateChangeCallback] = None,
    ):
        self.default_config = default_config or CircuitConfig()
        self._overrides: Dict[str, CircuitConfig] = dict(overrides or {})
        self._clock = clock
        self._on_state_change = on_state_change
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    @classmethod
    def from_settings(cls, settings: Any, **kwargs) -> "CircuitBreakerRegistry":
        default = CircuitConfig(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            reset_timeout=settings.CIRCUIT_RESET_TIMEOUT_SECONDS,
            failure_window=settings.CIRCUIT_FAILURE_WINDOW_SECONDS,
        )
        overrides = {
            service: CircuitConfig(
                failure_threshold=int(values.get("failure_threshold", default.failure_threshold)),
                reset_timeout=float(values.get("reset_timeout", default.reset_timeout)),
                failure_window=float(values.get("failure_window", default.failure_window)),
            )
            for service, values in settings.CIRCUIT_OVERRIDES.items()
        }
        return cls(default_config=default, overrides=overrides, **kwargs)

    def configure(self, service: str, config: CircuitConfig) -> None:
        """Set the config for a service. Applies to the existing record too."""
        with self._lock:
            self._overrides[service] = config
            breaker = self._breakers.get(service)
            if breaker is not None:
                breaker.config = config

    def get(self, service: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(service)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=service,
                    config=self._overrides.get(service, self.default_config),
                    clock=self._clock,
                    on_state_change=self._on_state_change,
                )
                self._breakers[service] = breaker
            return breaker

    def can_call(self, service: str) -> bool:
        return self.get(service).allow_request()

    def record_success(self, service: str) -> None:
        self.get(service).record_success()

    def record_failure(self, service: str) -> None:
        self.get(service).record_failure()

    def with_breaker(self, service: str, operation: Callable[[], T], refused: Any = None) -> Any:
        """
        Run operation behind the breaker.

        Returns `refused` (None by default) without calling operation when the
        circuit refuses the call. Operations that can legitimately return None
        should pass `refused=CIRCUIT_REFUSED` and compare by identity. Any
        exception from operation is recorded as a failure and re-raised so the
        caller can fall back.
        """
        if not self.can_call(service):
            logger.info("circuit refused call", service=service)
            return refused

        try:
            result = operation()
        except Exception:
            self.record_failure(service)
            raise

        self.record_success(service)
        return result

    def status_of(self, service: str) -> Dict[str, Any]:
        return self.get(service).snapshot()

    def status_of_all(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}

    def reset(self) -> None:
        with self._lock:
            self._breakers.clear()


def expires_at(breaker: CircuitBreaker) -> Optional[datetime]:
    """When an OPEN circuit will admit its next probe (None if not OPEN)."""
    if breaker.state is not CircuitState.OPEN:
        return None
    return breaker.last_state_change_at + timedelta(seconds=breaker.config.reset_timeout)
