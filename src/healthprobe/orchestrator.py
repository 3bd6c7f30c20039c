"""Cycle orchestrator: one-shot and watch-mode execution.

A cycle (sweep) fans every endpoint out through the scheduler, waits for all
of them, and folds the results into a ``CycleSummary``. The orchestrator owns
the circuit breaker registry, so breaker state carries over from one
watch-mode sweep to the next.

Watch-mode cadence is measured from the start of each sweep: the loop sleeps
``interval - sweep_duration`` and starts the next sweep immediately when a
sweep overruns the interval. Cancellation (``request_shutdown()`` or the
shared event being set by a signal handler) lets the in-flight sweep finish
without starting new attempts, then the loop exits.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, TypeAlias

from healthprobe.backoff import BackoffPolicy
from healthprobe.circuit_breaker import CircuitBreakerRegistry
from healthprobe.logging import get_logger
from healthprobe.metrics import MetricsAggregator, MetricsReporter
from healthprobe.models import CycleSummary, EndpointResult, EndpointSpec
from healthprobe.probe import ProbeExecutor
from healthprobe.runner import EndpointRunner, Prober
from healthprobe.scheduler import ConcurrencyScheduler

if TYPE_CHECKING:
    from healthprobe.config import Config

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ENDPOINT_FAILURE = 1

SummaryCallback: TypeAlias = Callable[[CycleSummary], None]


class CycleOrchestrator:
    """Drives sweeps over the configured endpoints.

    Usage:
        orchestrator = CycleOrchestrator.from_config(config)
        try:
            summary = orchestrator.run_once()
        finally:
            orchestrator.close()
        sys.exit(CycleOrchestrator.exit_code(summary))
    """

    def __init__(
        self,
        specs: Sequence[EndpointSpec],
        runner: EndpointRunner,
        scheduler: ConcurrencyScheduler,
        aggregator: MetricsAggregator | None = None,
        registry: CircuitBreakerRegistry | None = None,
        metrics_log_interval: float | None = None,
        on_summary: SummaryCallback | None = None,
        time_func: Callable[[], float] = time.monotonic,
        wait_func: Callable[[float], bool] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            specs: Endpoints to probe every cycle.
            runner: Endpoint runner; its cancellation token is the shutdown signal.
            scheduler: Bounded fan-out for one sweep.
            aggregator: Metrics aggregator (created if omitted).
            registry: Breaker arena (created with defaults if omitted).
            metrics_log_interval: Seconds between cumulative log lines in watch mode.
            on_summary: Called with every cycle summary.
            time_func: Monotonic clock used for cadence.
            wait_func: Inter-cycle sleeper; returns True if interrupted by
                cancellation. Defaults to waiting on the cancellation token.
        """
        self._specs = tuple(specs)
        self._runner = runner
        self._scheduler = scheduler
        self._aggregator = aggregator or MetricsAggregator()
        self._registry = registry or CircuitBreakerRegistry()
        self._metrics_log_interval = metrics_log_interval
        self._on_summary = on_summary
        self._time_func = time_func
        self._wait = wait_func or self._cancel_event.wait
        self._owned_probe: ProbeExecutor | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        prober: Prober | None = None,
        on_summary: SummaryCallback | None = None,
    ) -> CycleOrchestrator:
        """Wire a complete orchestrator from configuration.

        Args:
            config: Validated application configuration.
            prober: Probe primitive; an httpx-backed ``ProbeExecutor`` is built
                (and closed by :meth:`close`) when omitted.
            on_summary: Called with every cycle summary.
        """
        owned: ProbeExecutor | None = None
        if prober is None:
            owned = ProbeExecutor.from_config(config.transport_config())
            prober = owned

        runner = EndpointRunner(prober, BackoffPolicy(config.backoff_config()))
        orchestrator = cls(
            specs=config.endpoint_specs(),
            runner=runner,
            scheduler=ConcurrencyScheduler(config.concurrency),
            registry=CircuitBreakerRegistry(config.breaker_config()),
            metrics_log_interval=config.metrics_log_interval,
            on_summary=on_summary,
        )
        orchestrator._owned_probe = owned
        return orchestrator

    @property
    def _cancel_event(self) -> threading.Event:
        return self._runner.cancel_event

    @property
    def specs(self) -> tuple[EndpointSpec, ...]:
        return self._specs

    @property
    def registry(self) -> CircuitBreakerRegistry:
        return self._registry

    @property
    def aggregator(self) -> MetricsAggregator:
        return self._aggregator

    @property
    def shutdown_requested(self) -> bool:
        return self._cancel_event.is_set()

    def request_shutdown(self) -> None:
        """Stop after the in-flight sweep; no new attempts are started."""
        if not self._cancel_event.is_set():
            logger.info("Shutdown requested, finishing in-flight sweep")
        self._cancel_event.set()

    def close(self) -> None:
        """Release the thread pool and any HTTP client built by ``from_config``."""
        self._scheduler.shutdown()
        if self._owned_probe is not None:
            self._owned_probe.close()
            self._owned_probe = None

    @staticmethod
    def exit_code(summary: CycleSummary) -> int:
        """Process exit status for a one-shot run: non-zero if any endpoint failed."""
        return EXIT_ENDPOINT_FAILURE if summary.has_failures else EXIT_OK

    def _run_endpoint(self, spec: EndpointSpec) -> EndpointResult:
        return self._runner.run(spec, self._registry.get(spec.key))

    def run_cycle(self) -> CycleSummary:
        """Run one full sweep and return its summary."""
        if not self._specs:
            logger.warning("No endpoints configured")

        started = self._time_func()
        results = self._scheduler.run_sweep(self._specs, self._run_endpoint)
        summary = self._aggregator.fold(results, duration=self._time_func() - started)

        if self._on_summary is not None:
            self._on_summary(summary)
        return summary

    def run_once(self) -> CycleSummary:
        """Run exactly one sweep (one-shot mode)."""
        logger.info(
            "Starting health checks: %d endpoint(s), concurrency %d",
            len(self._specs),
            self._scheduler.concurrency,
        )
        return self.run_cycle()

    def run_watch(self, interval: float) -> CycleSummary | None:
        """Repeat sweeps every ``interval`` seconds until shutdown is requested.

        Args:
            interval: Seconds between sweep starts (> 0).

        Returns:
            The summary of the last completed sweep, or None if shutdown was
            requested before the first sweep started.

        Raises:
            ValueError: If interval is not positive.
        """
        if interval <= 0:
            raise ValueError(f"watch interval must be positive, got {interval}")

        logger.info(
            "Watching %d endpoint(s) every %ss, concurrency %d",
            len(self._specs),
            interval,
            self._scheduler.concurrency,
        )

        reporter: MetricsReporter | None = None
        if self._metrics_log_interval:
            reporter = MetricsReporter(self._aggregator, self._metrics_log_interval)
            reporter.start()

        last_summary: CycleSummary | None = None
        try:
            while not self._cancel_event.is_set():
                started = self._time_func()
                last_summary = self.run_cycle()
                if self._cancel_event.is_set():
                    break

                remaining = interval - (self._time_func() - started)
                if remaining <= 0:
                    logger.warning(
                        "Sweep overran the %ss interval by %.1fs, starting next sweep now",
                        interval,
                        -remaining,
                    )
                    continue
                logger.debug("Next sweep in %.1fs", remaining)
                if self._wait(remaining):
                    break
        finally:
            if reporter is not None:
                reporter.stop()
            self._aggregator.log_cumulative()

        logger.info("Watch mode stopped")
        return last_summary
