"""Endpoint runner: retries, backoff and circuit breaking for one endpoint.

One call to :meth:`EndpointRunner.run` produces the final ``EndpointResult``
for one endpoint in one cycle. Attempts for an endpoint are strictly
sequential.

Every attempt, including retries, asks the endpoint's breaker for
permission. If the breaker opens part-way through the retry loop the
remaining retries are abandoned and the last failing outcome is returned;
only a rejection before the first attempt produces a skipped result.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol, TypeAlias

from healthprobe.backoff import BackoffPolicy
from healthprobe.circuit_breaker import CircuitBreaker
from healthprobe.logging import get_logger
from healthprobe.models import EndpointResult, EndpointSpec, ProbeOutcome
from healthprobe.types import OutcomeKind

logger = get_logger(__name__)


class Prober(Protocol):
    """Anything that can perform one probe attempt."""

    def execute(
        self, spec: EndpointSpec, cancel_event: threading.Event | None = None
    ) -> ProbeOutcome: ...


# Waits up to ``delay`` seconds; returns True if interrupted by cancellation.
WaitFunction: TypeAlias = Callable[[float], bool]


class EndpointRunner:
    """Composes backoff, circuit breaker and probe executor.

    Usage:
        runner = EndpointRunner(executor, BackoffPolicy(backoff_config), cancel_event)
        result = runner.run(spec, registry.get(spec.key))
    """

    def __init__(
        self,
        prober: Prober,
        backoff: BackoffPolicy,
        cancel_event: threading.Event | None = None,
        wait_func: WaitFunction | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            prober: Single-attempt probe primitive.
            backoff: Delay policy between attempts.
            cancel_event: Shared cancellation token. Once set, no new attempt
                starts and pending backoff waits return immediately.
            wait_func: Backoff sleeper, defaults to ``cancel_event.wait``.
                Must return True when the wait was cut short by cancellation.
        """
        self._prober = prober
        self._backoff = backoff
        self._cancel_event = cancel_event or threading.Event()
        self._wait: WaitFunction = wait_func or self._cancel_event.wait

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def run(self, spec: EndpointSpec, breaker: CircuitBreaker) -> EndpointResult:
        """Run all attempts for one endpoint.

        Args:
            spec: Endpoint to probe.
            breaker: The endpoint's own circuit breaker.

        Returns:
            The final result. Never raises for probe failures.
        """
        ep_logger = logger.with_context(endpoint=spec.display_url)
        attempts = 0
        last_outcome: ProbeOutcome | None = None

        for attempt in range(1, spec.max_attempts + 1):
            if self._cancel_event.is_set():
                ep_logger.info("Shutdown requested, not starting attempt %d", attempt)
                break

            if not breaker.allow_request():
                if last_outcome is None:
                    ep_logger.warning(
                        "Circuit open, skipping endpoint this cycle",
                        extra={"reason": OutcomeKind.CIRCUIT_OPEN.value},
                    )
                    return EndpointResult(
                        spec=spec, attempts=0, outcome=ProbeOutcome.circuit_open(), skipped=True
                    )
                ep_logger.warning(
                    "Circuit opened during retries, abandoning %d remaining attempt(s)",
                    spec.max_attempts - attempts,
                )
                break

            ep_logger.debug(
                "Attempt %d/%d", attempt, spec.max_attempts, extra={"attempt": attempt}
            )
            try:
                outcome = self._prober.execute(spec, self._cancel_event)
            except BaseException:
                # An admitted HALF_OPEN trial must not stay claimed forever.
                breaker.release()
                raise
            if outcome.kind is OutcomeKind.CANCELLED:
                breaker.release()
                break

            attempts = attempt
            last_outcome = outcome
            self._report(breaker, outcome)

            if outcome.success:
                ep_logger.debug(
                    "Endpoint up (HTTP %s, %.0fms)",
                    outcome.status_code,
                    outcome.elapsed * 1000,
                    extra={"attempt": attempt},
                )
                return EndpointResult(spec=spec, attempts=attempts, outcome=outcome)

            if attempt == spec.max_attempts:
                break

            delay = self._backoff.delay(attempt)
            ep_logger.warning(
                "Attempt failed, retrying in %.0fms",
                delay * 1000,
                extra={"attempt": attempt, "reason": outcome.reason},
            )
            if self._wait(delay):
                ep_logger.info("Shutdown requested during backoff, abandoning retries")
                break

        if last_outcome is None:
            return EndpointResult(spec=spec, attempts=0, outcome=ProbeOutcome.cancelled())
        return EndpointResult(spec=spec, attempts=attempts, outcome=last_outcome)

    @staticmethod
    def _report(breaker: CircuitBreaker, outcome: ProbeOutcome) -> None:
        if outcome.success:
            breaker.record_success()
        elif outcome.kind.counts_against_breaker:
            breaker.record_failure(outcome.reason)
