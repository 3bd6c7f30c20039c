"""Data model for the probing engine.

``EndpointSpec`` and ``BackoffConfig`` are built once from configuration and
shared read-only. ``ProbeOutcome`` and ``EndpointResult`` are transient
per-attempt and per-cycle values; ``CycleSummary`` carries one sweep's counts
together with the cumulative totals at the time it was folded.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from healthprobe.types import HttpMethod, OutcomeKind

DEFAULT_STATUS_MIN = 200
DEFAULT_STATUS_MAX = 399

# Valid HTTP status code bounds
MIN_STATUS_CODE = 100
MAX_STATUS_CODE = 599


def redact_url(url: str) -> str:
    """Strip query string and fragment from a URL so secrets in them are never logged."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


@dataclass(frozen=True)
class StatusRange:
    """Inclusive range of HTTP status codes treated as healthy."""

    min: int = DEFAULT_STATUS_MIN
    max: int = DEFAULT_STATUS_MAX

    def __post_init__(self) -> None:
        for bound in (self.min, self.max):
            if not MIN_STATUS_CODE <= bound <= MAX_STATUS_CODE:
                raise ValueError(
                    f"status bound {bound} outside {MIN_STATUS_CODE}-{MAX_STATUS_CODE}"
                )
        if self.min > self.max:
            raise ValueError(f"status range min {self.min} is greater than max {self.max}")

    def contains(self, status_code: int) -> bool:
        """Return True if ``status_code`` lies within the range (inclusive)."""
        return self.min <= status_code <= self.max

    def __str__(self) -> str:
        return f"{self.min}-{self.max}"


@dataclass(frozen=True)
class EndpointSpec:
    """Immutable description of one probe target.

    Attributes:
        url: Absolute http(s) URL.
        method: HTTP method to issue.
        timeout: Per-request timeout in seconds.
        retries: Retries after the first attempt (total attempts = retries + 1).
        expected_status: Status codes counted as healthy.
        headers: Extra request headers as sorted (name, value) pairs.
    """

    url: str
    method: HttpMethod = HttpMethod.GET
    timeout: float = 5.0
    retries: int = 0
    expected_status: StatusRange = field(default_factory=StatusRange)
    headers: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.retries < 0:
            raise ValueError(f"retries must be non-negative, got {self.retries}")

    @classmethod
    def create(
        cls,
        url: str,
        method: str | HttpMethod = HttpMethod.GET,
        timeout: float = 5.0,
        retries: int = 0,
        expected_status: StatusRange | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> EndpointSpec:
        """Build a spec from loosely typed values, normalizing method and headers."""
        return cls(
            url=url,
            method=HttpMethod(method.upper()),
            timeout=timeout,
            retries=retries,
            expected_status=expected_status or StatusRange(),
            headers=tuple(sorted((headers or {}).items())),
        )

    @property
    def key(self) -> str:
        """Endpoint identity used to key per-endpoint state."""
        return f"{self.method} {self.url}"

    @property
    def display_url(self) -> str:
        """URL safe to log (query and fragment removed)."""
        return redact_url(self.url)

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def header_dict(self) -> dict[str, str]:
        return dict(self.headers)


@dataclass(frozen=True)
class BackoffConfig:
    """Bounds for the delay inserted between retry attempts (seconds).

    Attributes:
        base: Delay before the first retry.
        max: Upper bound for any delay.
        jitter: Randomize each delay within [delay/2, delay].
    """

    base: float = 0.2
    max: float = 5.0
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.base <= 0:
            raise ValueError(f"base backoff must be positive, got {self.base}")
        if self.max < self.base:
            raise ValueError(
                f"max backoff {self.max} must be greater than or equal to base {self.base}"
            )


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one HTTP attempt.

    Attributes:
        kind: What happened.
        status_code: Observed HTTP status, if a response arrived.
        elapsed: Seconds spent on the attempt.
        reason: Human-readable failure detail (empty on success).
    """

    kind: OutcomeKind
    status_code: int | None = None
    elapsed: float = 0.0
    reason: str = ""

    @property
    def success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @classmethod
    def circuit_open(cls) -> ProbeOutcome:
        return cls(kind=OutcomeKind.CIRCUIT_OPEN, reason="circuit breaker open")

    @classmethod
    def cancelled(cls) -> ProbeOutcome:
        return cls(kind=OutcomeKind.CANCELLED, reason="shutdown requested")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "elapsed_ms": round(self.elapsed * 1000, 2),
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass(frozen=True)
class EndpointResult:
    """Final outcome for one endpoint in one cycle."""

    spec: EndpointSpec
    attempts: int
    outcome: ProbeOutcome
    skipped: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome.success

    @property
    def failed(self) -> bool:
        return not self.outcome.success and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.spec.display_url,
            "method": self.spec.method.value,
            "attempts": self.attempts,
            "skipped": self.skipped,
            "outcome": self.outcome.to_dict(),
        }


@dataclass(frozen=True)
class CumulativeTotals:
    """Running totals since process start."""

    cycles: int = 0
    endpoints: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    attempts: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "cycles": self.cycles,
            "endpoints": self.endpoints,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class CycleSummary:
    """Aggregate counts for one sweep plus cumulative totals.

    Invariant: ``succeeded + failed + skipped == total``.
    """

    cycle: int
    total: int
    succeeded: int
    failed: int
    skipped: int
    duration: float = 0.0
    cumulative: CumulativeTotals = field(default_factory=CumulativeTotals)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation (used for JSON summaries)."""
        return {
            "cycle": self.cycle,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_ms": round(self.duration * 1000, 2),
            "cumulative": self.cumulative.to_dict(),
        }
