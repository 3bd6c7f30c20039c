"""Shared pytest fixtures for healthprobe tests.

The fakes here keep tests off the network and off the wall clock:

- ``FakeClock``: manually advanced monotonic clock for breakers and cadence.
- ``ScriptedProber``: returns a scripted sequence of outcomes per URL and
  records every call.
- ``RecordingWait``: stands in for ``Event.wait`` and records each delay.

Direct instantiation is preferred::

    from tests.conftest import FakeClock, ScriptedProber
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

import pytest

from healthprobe.models import EndpointSpec, ProbeOutcome, StatusRange
from healthprobe.types import OutcomeKind

LEGACY_ENV_VARS = frozenset({"CONCURRENCY", "REQUEST_TIMEOUT_MS", "RETRIES", "CONFIG_PATH"})


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class RecordingWait:
    """Replacement for ``Event.wait`` that records delays instead of sleeping.

    Args:
        clock: Optional fake clock advanced by each recorded delay.
        cancel_after: Set ``event`` (and report interruption) once this many
            waits have been recorded.
        event: Cancellation token to set when ``cancel_after`` is reached.
    """

    def __init__(
        self,
        clock: FakeClock | None = None,
        cancel_after: int | None = None,
        event: threading.Event | None = None,
    ) -> None:
        self.delays: list[float] = []
        self._clock = clock
        self._cancel_after = cancel_after
        self._event = event

    def __call__(self, delay: float) -> bool:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)
        if self._cancel_after is not None and len(self.delays) >= self._cancel_after:
            if self._event is not None:
                self._event.set()
            return True
        return False


def success(status_code: int = 200) -> ProbeOutcome:
    return ProbeOutcome(kind=OutcomeKind.SUCCESS, status_code=status_code, elapsed=0.01)


def failure(kind: OutcomeKind = OutcomeKind.STATUS_OUT_OF_RANGE) -> ProbeOutcome:
    status_code = 500 if kind is OutcomeKind.STATUS_OUT_OF_RANGE else None
    return ProbeOutcome(kind=kind, status_code=status_code, elapsed=0.01, reason=kind.value)


class ScriptedProber:
    """Prober returning scripted outcomes.

    Each URL has a list of outcomes consumed in order; the last one repeats
    once the list is exhausted. URLs without a script use ``default``.

    Attributes:
        calls: URLs probed, in call order.
    """

    def __init__(
        self,
        scripts: dict[str, Iterable[ProbeOutcome]] | None = None,
        default: ProbeOutcome | None = None,
        delay: float = 0.0,
        on_call: Callable[[EndpointSpec], None] | None = None,
    ) -> None:
        self._scripts = {url: list(outcomes) for url, outcomes in (scripts or {}).items()}
        self._default = default or success()
        self._delay = delay
        self._on_call = on_call
        self._lock = threading.Lock()
        self.calls: list[str] = []

    def execute(
        self, spec: EndpointSpec, cancel_event: threading.Event | None = None
    ) -> ProbeOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return ProbeOutcome.cancelled()
        with self._lock:
            self.calls.append(spec.url)
            script = self._scripts.get(spec.url)
            if script:
                outcome = script.pop(0) if len(script) > 1 else script[0]
            else:
                outcome = self._default
        if self._on_call is not None:
            self._on_call(spec)
        if self._delay:
            time.sleep(self._delay)
        return outcome

    def call_count(self, url: str) -> int:
        with self._lock:
            return self.calls.count(url)


def make_spec(
    url: str = "https://svc.example/health",
    retries: int = 0,
    timeout: float = 1.0,
    method: str = "GET",
    expected_status: StatusRange | None = None,
    headers: dict[str, str] | None = None,
) -> EndpointSpec:
    """Build an EndpointSpec with test-friendly defaults."""
    return EndpointSpec.create(
        url=url,
        method=method,
        timeout=timeout,
        retries=retries,
        expected_status=expected_status,
        headers=headers,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cancel_event() -> threading.Event:
    return threading.Event()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove healthprobe variables so the host environment cannot leak in."""
    for key in list(os.environ):
        if key.startswith("HEALTHPROBE_") or key in LEGACY_ENV_VARS:
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[[str, str], Path]:
    """Factory writing a config document into tmp_path and returning its path."""

    def _write(content: str, name: str = "config.json") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
