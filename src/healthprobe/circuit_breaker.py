"""Per-endpoint circuit breaker.

When an endpoint fails ``failure_threshold`` times in a row the circuit
"opens" and further attempts are skipped without touching the network. After
``cooldown`` seconds the next call finds the breaker HALF_OPEN and exactly one
trial attempt is let through; its result closes or re-opens the circuit.

Circuit States:
- CLOSED: Normal operation, attempts pass through
- OPEN: Endpoint is failing, attempts are skipped
- HALF_OPEN: One trial attempt is in flight or may be admitted

The OPEN -> HALF_OPEN transition is lazy: it is evaluated whenever the state
is read or a request is admitted, so no timer thread is needed and the
breaker is driven only by call events and a clock reading.

Each endpoint owns its own breaker. ``CircuitBreakerRegistry`` maps endpoint
identity to breaker and lives as long as the process, so state carries over
between watch-mode sweeps.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from healthprobe.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfigError(ValueError):
    """Raised when circuit breaker configuration is invalid."""


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior.

    Attributes:
        failure_threshold: Consecutive failures before opening the circuit (default: 3).
        cooldown: Seconds the circuit stays open before a trial is allowed (default: 60.0).
        enabled: Whether breakers gate anything at all (default: True).

    Raises:
        CircuitBreakerConfigError: If the threshold is not a positive integer or
            the cooldown is negative.
    """

    failure_threshold: int = 3
    cooldown: float = 60.0
    enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        # bool is a subclass of int
        if isinstance(self.failure_threshold, bool) or not isinstance(
            self.failure_threshold, int
        ):
            raise CircuitBreakerConfigError(
                f"failure_threshold must be an integer, got {type(self.failure_threshold).__name__}"
            )
        if self.failure_threshold <= 0:
            raise CircuitBreakerConfigError(
                f"failure_threshold must be positive, got {self.failure_threshold}"
            )
        if self.cooldown < 0:
            raise CircuitBreakerConfigError(f"cooldown must be non-negative, got {self.cooldown}")


@dataclass
class CircuitBreakerMetrics:
    """Counters for one breaker.

    Attributes:
        allowed_calls: Attempts admitted.
        rejected_calls: Attempts skipped while OPEN (or HALF_OPEN with a trial in flight).
        successful_calls: Successes recorded.
        failed_calls: Failures recorded.
        state_changes: Number of state transitions.
        last_failure_time: Clock reading of the last failure.
        last_state_change_time: Clock reading of the last transition.
    """

    allowed_calls: int = 0
    rejected_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_state_change_time: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary for logging/reporting."""
        return {
            "allowed_calls": self.allowed_calls,
            "rejected_calls": self.rejected_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "state_changes": self.state_changes,
            "last_failure_time": self.last_failure_time,
            "last_state_change_time": self.last_state_change_time,
        }


@dataclass
class CircuitBreaker:
    """Circuit breaker for one endpoint.

    All state mutation happens under one re-entrant lock, so admission and
    outcome reporting are atomic even if several threads race on the same
    breaker. In HALF_OPEN exactly one trial is admitted; every other caller is
    rejected until that trial reports back.

    Attributes:
        name: Endpoint identity this breaker protects (used in log lines).
        config: Threshold, cooldown and enabled flag.
        time_func: Clock returning seconds. Defaults to ``time.monotonic``;
            injecting a fake clock lets tests cross the cooldown without sleeping.

    Usage:
        cb = CircuitBreaker("GET https://api.example/health")

        if cb.allow_request():
            outcome = executor.execute(spec)
            if outcome.success:
                cb.record_success()
            else:
                cb.record_failure(outcome.reason)
    """

    name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    time_func: Callable[[], float] = field(default=time.monotonic, repr=False)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _metrics: CircuitBreakerMetrics = field(
        default_factory=CircuitBreakerMetrics, init=False, repr=False
    )

    @property
    def state(self) -> CircuitState:
        """Current state, after applying any due OPEN -> HALF_OPEN transition."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures counted while CLOSED."""
        with self._lock:
            return self._failure_count

    @property
    def opened_at(self) -> float:
        """Clock reading of the most recent transition to OPEN."""
        with self._lock:
            return self._opened_at

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def metrics(self) -> CircuitBreakerMetrics:
        with self._lock:
            return self._metrics

    def _check_state_transition(self) -> None:
        """Move OPEN -> HALF_OPEN once the cooldown has elapsed. Lock must be held."""
        if (
            self._state == CircuitState.OPEN
            and self.time_func() - self._opened_at >= self.config.cooldown
        ):
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state with logging and metrics. Lock must be held."""
        old_state = self._state
        now = self.time_func()
        self._state = new_state
        self._metrics.state_changes += 1
        self._metrics.last_state_change_time = now

        if new_state == CircuitState.OPEN:
            self._opened_at = now
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
        self._trial_in_flight = False

        logger.info(
            "[CIRCUIT_BREAKER] %s: State changed from %s to %s",
            self.name,
            old_state.value,
            new_state.value,
            extra={"state": new_state.value},
        )

    def allow_request(self) -> bool:
        """Check whether an attempt may be made now.

        Returns:
            True if the attempt is admitted, False if it must be skipped.
        """
        if not self.config.enabled:
            return True

        with self._lock:
            self._check_state_transition()

            if self._state == CircuitState.CLOSED:
                self._metrics.allowed_calls += 1
                return True

            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                self._metrics.allowed_calls += 1
                logger.debug("[CIRCUIT_BREAKER] %s: HALF_OPEN trial admitted", self.name)
                return True

            self._metrics.rejected_calls += 1
            logger.debug(
                "[CIRCUIT_BREAKER] %s: Request rejected, circuit is %s",
                self.name,
                self._state.value,
            )
            return False

    def record_success(self) -> None:
        """Record a successful attempt."""
        if not self.config.enabled:
            return

        with self._lock:
            self._metrics.successful_calls += 1
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                logger.info("[CIRCUIT_BREAKER] %s: Recovery successful, circuit CLOSED", self.name)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self, reason: str = "") -> None:
        """Record a failed attempt.

        Args:
            reason: Optional failure detail for the log line.
        """
        if not self.config.enabled:
            return

        with self._lock:
            now = self.time_func()
            self._metrics.failed_calls += 1
            self._metrics.last_failure_time = now

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                logger.warning(
                    "[CIRCUIT_BREAKER] %s: Recovery failed, circuit OPEN%s",
                    self.name,
                    f" ({reason})" if reason else "",
                )
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)
                    logger.warning(
                        "[CIRCUIT_BREAKER] %s: Failure threshold reached (%s/%s), circuit OPEN",
                        self.name,
                        self._failure_count,
                        self.config.failure_threshold,
                    )

    def release(self) -> None:
        """Give back an admitted HALF_OPEN trial without counting it.

        Used when an admitted attempt never reached the network (for example
        because shutdown was requested). No-op in any other state.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    def reset(self) -> None:
        """Reset the circuit breaker to closed state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = 0.0
            self._trial_in_flight = False
            logger.info("[CIRCUIT_BREAKER] %s: Circuit manually reset to CLOSED", self.name)

    def get_status(self) -> dict[str, Any]:
        """Get current circuit breaker status.

        Returns:
            Dictionary with state, config, and metrics.
        """
        with self._lock:
            self._check_state_transition()
            return {
                "name": self.name,
                "state": self._state.value,
                "enabled": self.config.enabled,
                "failure_count": self._failure_count,
                "config": {
                    "failure_threshold": self.config.failure_threshold,
                    "cooldown": self.config.cooldown,
                },
                "metrics": self._metrics.to_dict(),
            }


class CircuitBreakerRegistry:
    """Owns one circuit breaker per endpoint.

    The registry is created once by the orchestrator and handed to every
    sweep, so breaker state survives across watch-mode cycles without a
    global singleton.

    Usage:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2))
        breaker = registry.get(spec.key)
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        time_func: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._time_func = time_func
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    def get(self, name: str) -> CircuitBreaker:
        """Get or create the breaker for an endpoint.

        Args:
            name: Endpoint identity (``EndpointSpec.key``).

        Returns:
            The endpoint's CircuitBreaker.
        """
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name=name, config=self._config, time_func=self._time_func
                )
                logger.debug(
                    "[CIRCUIT_BREAKER] Created circuit breaker for %s: threshold=%s, cooldown=%ss",
                    name,
                    self._config.failure_threshold,
                    self._config.cooldown,
                )
            return self._breakers[name]

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all registered circuit breakers."""
        with self._lock:
            breakers = list(self._breakers.items())
        return {name: cb.get_status() for name, cb in breakers}

    def reset_all(self) -> None:
        """Reset all circuit breakers to closed state."""
        with self._lock:
            breakers = list(self._breakers.values())
        for cb in breakers:
            cb.reset()
        logger.info("[CIRCUIT_BREAKER] All circuit breakers reset")
