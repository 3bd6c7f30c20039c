"""Cycle and cumulative metrics.

``MetricsAggregator.fold()`` turns one sweep's results into a
``CycleSummary`` and adds them to the running totals kept for the life of the
process. ``MetricsReporter`` logs those running totals on its own timer,
independent of when cycles start or end.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import replace

from healthprobe.logging import get_logger
from healthprobe.models import CumulativeTotals, CycleSummary, EndpointResult
from healthprobe.types import SummaryBucket

logger = get_logger(__name__)


class MetricsAggregator:
    """Folds endpoint results into cycle summaries and cumulative totals.

    Thread Safety:
        ``fold`` and ``cumulative`` may be called from different threads
        (the orchestrator and the periodic reporter); totals are lock-protected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._totals = CumulativeTotals()

    def cumulative(self) -> CumulativeTotals:
        """Snapshot of the totals since process start."""
        with self._lock:
            return self._totals

    def fold(self, results: Sequence[EndpointResult], duration: float = 0.0) -> CycleSummary:
        """Summarize one sweep and update the running totals.

        Args:
            results: Every endpoint result from the sweep.
            duration: Wall time the sweep took, in seconds.

        Returns:
            The cycle summary, including the updated cumulative totals.
        """
        counts = dict.fromkeys(SummaryBucket, 0)
        attempts = 0
        for result in results:
            counts[result.outcome.kind.bucket] += 1
            attempts += result.attempts

        with self._lock:
            totals = self._totals
            self._totals = replace(
                totals,
                cycles=totals.cycles + 1,
                endpoints=totals.endpoints + len(results),
                succeeded=totals.succeeded + counts[SummaryBucket.SUCCEEDED],
                failed=totals.failed + counts[SummaryBucket.FAILED],
                skipped=totals.skipped + counts[SummaryBucket.SKIPPED],
                attempts=totals.attempts + attempts,
            )
            cumulative = self._totals

        summary = CycleSummary(
            cycle=cumulative.cycles,
            total=len(results),
            succeeded=counts[SummaryBucket.SUCCEEDED],
            failed=counts[SummaryBucket.FAILED],
            skipped=counts[SummaryBucket.SKIPPED],
            duration=duration,
            cumulative=cumulative,
        )
        self._log_cycle(summary, results)
        return summary

    @staticmethod
    def _log_cycle(summary: CycleSummary, results: Sequence[EndpointResult]) -> None:
        for result in results:
            if result.failed:
                logger.warning(
                    "Endpoint down after %d attempt(s): %s",
                    result.attempts,
                    result.outcome.reason or result.outcome.kind.value,
                    extra={
                        "cycle": summary.cycle,
                        "endpoint": result.spec.display_url,
                        "reason": result.outcome.kind.value,
                    },
                )
        logger.info(
            "Cycle summary: total=%d succeeded=%d failed=%d skipped=%d (%.0fms)",
            summary.total,
            summary.succeeded,
            summary.failed,
            summary.skipped,
            summary.duration * 1000,
            extra={"cycle": summary.cycle},
        )

    def log_cumulative(self) -> None:
        """Log the running totals once."""
        totals = self.cumulative()
        logger.info(
            "Cumulative summary: cycles=%d endpoints=%d succeeded=%d failed=%d "
            "skipped=%d attempts=%d",
            totals.cycles,
            totals.endpoints,
            totals.succeeded,
            totals.failed,
            totals.skipped,
            totals.attempts,
        )


class MetricsReporter:
    """Background thread that logs cumulative totals every ``interval`` seconds."""

    def __init__(self, aggregator: MetricsAggregator, interval: float) -> None:
        """Initialize the reporter.

        Args:
            aggregator: Source of the cumulative totals.
            interval: Seconds between log lines (> 0).

        Raises:
            ValueError: If interval is not positive.
        """
        if interval <= 0:
            raise ValueError(f"metrics log interval must be positive, got {interval}")
        self._aggregator = aggregator
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="healthprobe-metrics", daemon=True
        )
        self._thread.start()
        logger.debug("Periodic metrics logging every %ss", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self._aggregator.log_cumulative()
