"""Concurrency scheduler for one sweep over all endpoints.

``ConcurrencyScheduler`` owns the thread pool that runs endpoint runners.
At most ``concurrency`` runners are active at any moment: the pool has that
many workers, and a bounded semaphore sized the same is held for the whole
runner call as the single admission resource.

``run_sweep()`` is a join barrier. It returns only once every endpoint has a
result, in the same order as the input specs. A runner that raises does not
affect any other endpoint; its exception is logged and turned into a failed
result with kind ``ENDPOINT_ERROR``.
"""

from __future__ import annotations

import threading
import time
import types
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TypeAlias

from healthprobe.logging import get_logger
from healthprobe.models import EndpointResult, EndpointSpec, ProbeOutcome
from healthprobe.types import OutcomeKind

logger = get_logger(__name__)

RunFunction: TypeAlias = Callable[[EndpointSpec], EndpointResult]


class ConcurrencyScheduler:
    """Runs one endpoint runner per spec with bounded parallelism.

    Thread Safety:
        ``run_sweep`` is meant to be called from a single thread (the
        orchestrator). Active-count bookkeeping is lock-protected because it
        is updated from worker threads.

    Usage:
        with ConcurrencyScheduler(concurrency=8) as scheduler:
            results = scheduler.run_sweep(specs, lambda spec: runner.run(spec, ...))
    """

    def __init__(self, concurrency: int) -> None:
        """Initialize the scheduler.

        Args:
            concurrency: Maximum simultaneous runner calls (>= 1).

        Raises:
            ValueError: If concurrency is less than 1.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._concurrency = concurrency
        self._admission = threading.BoundedSemaphore(concurrency)
        self._thread_pool: ThreadPoolExecutor | None = None
        self._count_lock = threading.Lock()
        self._active = 0
        self._peak_active = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def active(self) -> int:
        """Runner calls currently in progress."""
        with self._count_lock:
            return self._active

    @property
    def peak_active(self) -> int:
        """Highest number of simultaneous runner calls observed."""
        with self._count_lock:
            return self._peak_active

    def is_running(self) -> bool:
        return self._thread_pool is not None

    def start(self) -> None:
        """Start the thread pool. No-op if already started."""
        if self._thread_pool is not None:
            logger.warning("[SCHEDULER] Thread pool already started")
            return
        self._thread_pool = ThreadPoolExecutor(
            max_workers=self._concurrency,
            thread_name_prefix="healthprobe-probe-",
        )
        logger.debug("[SCHEDULER] Started thread pool with max %d workers", self._concurrency)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Shut down the thread pool.

        Args:
            wait_for_pending: Block until submitted runner calls finish.
        """
        if self._thread_pool is None:
            return
        self._thread_pool.shutdown(wait=wait_for_pending)
        self._thread_pool = None
        logger.debug("[SCHEDULER] Thread pool shut down")

    def __enter__(self) -> ConcurrencyScheduler:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.shutdown()

    def run_sweep(
        self, specs: Sequence[EndpointSpec], run_one: RunFunction
    ) -> list[EndpointResult]:
        """Run ``run_one`` for every spec and wait for all of them.

        Args:
            specs: Endpoints for this sweep.
            run_one: Produces the final result for one endpoint.

        Returns:
            One result per spec, in the order of ``specs``.
        """
        if not specs:
            return []
        if self._thread_pool is None:
            self.start()
        assert self._thread_pool is not None

        logger.debug(
            "[SCHEDULER] Sweeping %d endpoint(s) with concurrency %d",
            len(specs),
            self._concurrency,
        )
        futures: list[Future[EndpointResult]] = [
            self._thread_pool.submit(self._guarded, spec, run_one) for spec in specs
        ]
        wait(futures)
        return [future.result() for future in futures]

    def _guarded(self, spec: EndpointSpec, run_one: RunFunction) -> EndpointResult:
        """Run one endpoint under the admission semaphore, converting any error into a result."""
        start = time.monotonic()
        with self._admission:
            self._enter()
            try:
                return run_one(spec)
            except Exception as e:
                # INTENTIONAL BROAD CATCH: one endpoint's failure must never
                # lose another endpoint's result or abort the sweep.
                logger.exception(
                    "[SCHEDULER] Unexpected error while checking endpoint: %s",
                    e,
                    extra={"endpoint": spec.display_url, "reason": type(e).__name__},
                )
                return EndpointResult(
                    spec=spec,
                    attempts=0,
                    outcome=ProbeOutcome(
                        kind=OutcomeKind.ENDPOINT_ERROR,
                        elapsed=time.monotonic() - start,
                        reason=f"{type(e).__name__}: {e}",
                    ),
                )
            finally:
                self._exit()

    def _enter(self) -> None:
        with self._count_lock:
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)

    def _exit(self) -> None:
        with self._count_lock:
            self._active -= 1
