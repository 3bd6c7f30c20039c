"""Unit tests for the cycle orchestrator (one-shot and watch mode)."""

from __future__ import annotations

import threading

import pytest

from healthprobe.backoff import BackoffPolicy
from healthprobe.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry, CircuitState
from healthprobe.config import Config, EndpointSettings
from healthprobe.models import BackoffConfig, CycleSummary, EndpointSpec
from healthprobe.orchestrator import EXIT_ENDPOINT_FAILURE, EXIT_OK, CycleOrchestrator
from healthprobe.runner import EndpointRunner
from healthprobe.scheduler import ConcurrencyScheduler
from healthprobe.types import OutcomeKind
from tests.conftest import FakeClock, RecordingWait, ScriptedProber, failure, make_spec, success

OK_URL = "https://ok.example/health"
DOWN_URL = "https://down.example/health"


def build(
    specs: list[EndpointSpec],
    prober: ScriptedProber,
    clock: FakeClock,
    threshold: int = 3,
    cooldown: float = 60.0,
    concurrency: int = 4,
    wait_func: RecordingWait | None = None,
    on_summary=None,
) -> CycleOrchestrator:
    runner = EndpointRunner(
        prober,
        BackoffPolicy(BackoffConfig(base=0.1, max=0.15)),
        wait_func=RecordingWait(),
    )
    return CycleOrchestrator(
        specs=specs,
        runner=runner,
        scheduler=ConcurrencyScheduler(concurrency),
        registry=CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=threshold, cooldown=cooldown), clock
        ),
        on_summary=on_summary,
        time_func=clock,
        wait_func=wait_func,
    )


class TestRunOnce:
    """Tests for one-shot mode."""

    def test_healthy_and_down_endpoints(self, fake_clock: FakeClock) -> None:
        """Two endpoints, one up and one down: exit status 1."""
        prober = ScriptedProber({OK_URL: [success()], DOWN_URL: [failure()]})
        orchestrator = build([make_spec(OK_URL), make_spec(DOWN_URL)], prober, fake_clock)
        try:
            summary = orchestrator.run_once()
        finally:
            orchestrator.close()

        assert (summary.total, summary.succeeded, summary.failed, summary.skipped) == (2, 1, 1, 0)
        assert CycleOrchestrator.exit_code(summary) == EXIT_ENDPOINT_FAILURE

    def test_all_healthy_exits_zero(self, fake_clock: FakeClock) -> None:
        orchestrator = build([make_spec(OK_URL)], ScriptedProber(), fake_clock)
        try:
            summary = orchestrator.run_once()
        finally:
            orchestrator.close()
        assert CycleOrchestrator.exit_code(summary) == EXIT_OK

    def test_skips_alone_do_not_fail(self) -> None:
        summary = CycleSummary(cycle=1, total=2, succeeded=1, failed=0, skipped=1)
        assert CycleOrchestrator.exit_code(summary) == EXIT_OK

    def test_no_endpoints(self, fake_clock: FakeClock, caplog: pytest.LogCaptureFixture) -> None:
        orchestrator = build([], ScriptedProber(), fake_clock)
        summary = orchestrator.run_once()
        assert summary.total == 0
        assert CycleOrchestrator.exit_code(summary) == EXIT_OK
        assert "No endpoints configured" in caplog.text

    def test_on_summary_callback(self, fake_clock: FakeClock) -> None:
        seen: list[CycleSummary] = []
        orchestrator = build([make_spec(OK_URL)], ScriptedProber(), fake_clock, on_summary=seen.append)
        try:
            summary = orchestrator.run_once()
        finally:
            orchestrator.close()
        assert seen == [summary]

    def test_exception_in_one_endpoint_does_not_affect_others(self, fake_clock: FakeClock) -> None:
        def explode(spec: EndpointSpec) -> None:
            if spec.url == DOWN_URL:
                raise RuntimeError("unexpected")

        prober = ScriptedProber(on_call=explode)
        orchestrator = build([make_spec(OK_URL), make_spec(DOWN_URL)], prober, fake_clock)
        try:
            summary = orchestrator.run_once()
        finally:
            orchestrator.close()
        assert summary.succeeded == 1
        assert summary.failed == 1


class TestBreakerAcrossCycles:
    """Breaker state carries over between sweeps."""

    def test_open_breaker_skips_third_cycle(self, fake_clock: FakeClock) -> None:
        """threshold=2, retries=0: failed, failed, then skipped without a request."""
        prober = ScriptedProber({DOWN_URL: [failure()]})
        orchestrator = build([make_spec(DOWN_URL)], prober, fake_clock, threshold=2)
        try:
            first = orchestrator.run_cycle()
            second = orchestrator.run_cycle()
            third = orchestrator.run_cycle()
        finally:
            orchestrator.close()

        assert (first.failed, second.failed) == (1, 1)
        assert third.skipped == 1
        assert third.failed == 0
        assert prober.call_count(DOWN_URL) == 2
        assert third.cumulative.cycles == 3

    def test_recovers_after_cooldown(self, fake_clock: FakeClock) -> None:
        prober = ScriptedProber({DOWN_URL: [failure(), success()]})
        orchestrator = build([make_spec(DOWN_URL)], prober, fake_clock, threshold=1, cooldown=30.0)
        try:
            assert orchestrator.run_cycle().failed == 1
            assert orchestrator.run_cycle().skipped == 1
            fake_clock.advance(30.0)
            assert orchestrator.run_cycle().succeeded == 1
        finally:
            orchestrator.close()
        assert orchestrator.registry.get(f"GET {DOWN_URL}").state == CircuitState.CLOSED

    def test_crashing_trial_does_not_pin_endpoint_as_skipped(self, fake_clock: FakeClock) -> None:
        """A trial that raises is an endpoint error; later cycles still get a trial."""
        crash = {"armed": False}

        def maybe_crash(spec: EndpointSpec) -> None:
            if crash["armed"]:
                crash["armed"] = False
                raise RuntimeError("unexpected")

        prober = ScriptedProber({DOWN_URL: [failure(), success()]}, on_call=maybe_crash)
        orchestrator = build([make_spec(DOWN_URL)], prober, fake_clock, threshold=1, cooldown=10.0)
        try:
            assert orchestrator.run_cycle().failed == 1
            fake_clock.advance(100.0)
            crash["armed"] = True
            second = orchestrator.run_cycle()
            fake_clock.advance(100.0)
            third = orchestrator.run_cycle()
        finally:
            orchestrator.close()

        assert second.failed == 1
        assert third.succeeded == 1
        assert prober.call_count(DOWN_URL) == 3


class TestRunWatch:
    """Tests for watch mode."""

    def test_rejects_non_positive_interval(self, fake_clock: FakeClock) -> None:
        orchestrator = build([], ScriptedProber(), fake_clock)
        with pytest.raises(ValueError, match="must be positive"):
            orchestrator.run_watch(0)

    def test_sleeps_remaining_interval_from_sweep_start(self, fake_clock: FakeClock) -> None:
        """A 1s sweep with a 5s interval waits 4s before the next sweep."""
        prober = ScriptedProber(on_call=lambda spec: fake_clock.advance(1.0))
        orchestrator = build([make_spec(OK_URL)], prober, fake_clock, concurrency=1)
        wait = RecordingWait(clock=fake_clock, cancel_after=3, event=orchestrator._cancel_event)
        orchestrator._wait = wait
        try:
            last = orchestrator.run_watch(5.0)
        finally:
            orchestrator.close()

        assert wait.delays == pytest.approx([4.0, 4.0, 4.0])
        assert last is not None
        assert last.cycle == 3

    def test_overrun_starts_next_sweep_immediately(
        self, fake_clock: FakeClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        sweeps = 0

        def slow(spec: EndpointSpec) -> None:
            nonlocal sweeps
            sweeps += 1
            fake_clock.advance(2.0 if sweeps == 1 else 0.5)

        orchestrator = build([make_spec(OK_URL)], ScriptedProber(on_call=slow), fake_clock)
        wait = RecordingWait(clock=fake_clock, cancel_after=1, event=orchestrator._cancel_event)
        orchestrator._wait = wait
        try:
            orchestrator.run_watch(1.0)
        finally:
            orchestrator.close()

        assert sweeps == 2
        assert wait.delays == pytest.approx([0.5])
        assert "overran" in caplog.text

    def test_shutdown_during_sweep_stops_after_it(self, fake_clock: FakeClock) -> None:
        orchestrator: CycleOrchestrator

        def request_stop(spec: EndpointSpec) -> None:
            orchestrator.request_shutdown()

        prober = ScriptedProber(on_call=request_stop)
        orchestrator = build([make_spec(OK_URL)], prober, fake_clock, wait_func=RecordingWait())
        try:
            last = orchestrator.run_watch(10.0)
        finally:
            orchestrator.close()

        assert last is not None
        assert last.total == 1
        assert orchestrator.shutdown_requested is True
        assert orchestrator.aggregator.cumulative().cycles == 1

    def test_shutdown_before_start_runs_no_sweep(self, fake_clock: FakeClock) -> None:
        prober = ScriptedProber()
        orchestrator = build([make_spec(OK_URL)], prober, fake_clock)
        orchestrator.request_shutdown()
        assert orchestrator.run_watch(1.0) is None
        assert prober.calls == []

    def test_real_event_wait_is_interrupted_by_shutdown(self) -> None:
        """Uses the default cancellation-token wait with a real clock."""
        runner = EndpointRunner(ScriptedProber(), BackoffPolicy(BackoffConfig()))
        orchestrator = CycleOrchestrator(
            specs=[make_spec(OK_URL)],
            runner=runner,
            scheduler=ConcurrencyScheduler(1),
        )
        timer = threading.Timer(0.2, orchestrator.request_shutdown)
        timer.start()
        try:
            last = orchestrator.run_watch(60.0)
        finally:
            timer.cancel()
            orchestrator.close()
        assert last is not None
        assert last.cycle == 1

    def test_metrics_reporter_runs_in_watch_mode(
        self, fake_clock: FakeClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        import logging

        caplog.set_level(logging.INFO, logger="healthprobe")
        orchestrator = build([make_spec(OK_URL)], ScriptedProber(), fake_clock)
        orchestrator._metrics_log_interval = 0.01
        orchestrator._wait = RecordingWait(cancel_after=1, event=orchestrator._cancel_event)
        try:
            orchestrator.run_watch(1.0)
        finally:
            orchestrator.close()
        assert "Cumulative summary: cycles=1" in caplog.text


class TestFromConfig:
    """Tests for wiring from configuration."""

    def test_wires_specs_and_breakers(self) -> None:
        config = Config(
            endpoints=(EndpointSettings(url=OK_URL), EndpointSettings(url=DOWN_URL, retries=2)),
            concurrency=3,
            cb_failures_threshold=5,
            cb_cooldown_sec=9,
        )
        prober = ScriptedProber({DOWN_URL: [failure(OutcomeKind.TIMEOUT)]})
        orchestrator = CycleOrchestrator.from_config(config, prober=prober)
        orchestrator._runner._wait = RecordingWait()
        try:
            summary = orchestrator.run_once()
        finally:
            orchestrator.close()

        assert [s.url for s in orchestrator.specs] == [OK_URL, DOWN_URL]
        assert orchestrator.registry.config.failure_threshold == 5
        assert orchestrator.registry.config.cooldown == 9.0
        assert summary.failed == 1
        assert prober.call_count(DOWN_URL) == 3

    def test_builds_and_closes_http_executor(self) -> None:
        orchestrator = CycleOrchestrator.from_config(Config())
        probe = orchestrator._owned_probe
        assert probe is not None
        orchestrator.close()
        assert probe.client.is_closed
