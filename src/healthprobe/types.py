"""Enums shared across the probing engine.

``OutcomeKind`` is the closed set of things that can happen to one endpoint
attempt. Every kind lands in exactly one summary bucket, see
:meth:`OutcomeKind.bucket`.

Usage:
    from healthprobe.types import OutcomeKind, SummaryBucket

    if outcome.kind is OutcomeKind.TIMEOUT:
        ...
    OutcomeKind.CIRCUIT_OPEN.bucket  # SummaryBucket.SKIPPED
"""

from __future__ import annotations

from enum import StrEnum


class SummaryBucket(StrEnum):
    """Summary counters an endpoint result can be counted under."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class OutcomeKind(StrEnum):
    """Kind of a single probe outcome.

    Values:
        SUCCESS: Response received in time with an expected status code.
        TIMEOUT: No response within the request timeout.
        CONNECTION_ERROR: Transport failure (DNS, refused connection, TLS handshake).
        STATUS_OUT_OF_RANGE: Response received with an unexpected status code.
        CIRCUIT_OPEN: Attempt withheld because the endpoint's breaker is open.
        ENDPOINT_ERROR: Unexpected error inside one endpoint's execution path.
        CANCELLED: Shutdown was requested before the attempt reached the network.
    """

    SUCCESS = "success"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    STATUS_OUT_OF_RANGE = "status_out_of_range"
    CIRCUIT_OPEN = "circuit_open"
    ENDPOINT_ERROR = "endpoint_error"
    CANCELLED = "cancelled"

    @property
    def bucket(self) -> SummaryBucket:
        """Summary bucket this kind is counted under."""
        match self:
            case OutcomeKind.SUCCESS:
                return SummaryBucket.SUCCEEDED
            case OutcomeKind.CIRCUIT_OPEN:
                return SummaryBucket.SKIPPED
            case (
                OutcomeKind.TIMEOUT
                | OutcomeKind.CONNECTION_ERROR
                | OutcomeKind.STATUS_OUT_OF_RANGE
                | OutcomeKind.ENDPOINT_ERROR
                | OutcomeKind.CANCELLED
            ):
                return SummaryBucket.FAILED
        raise AssertionError(f"Unhandled outcome kind: {self!r}")  # pragma: no cover

    @property
    def counts_against_breaker(self) -> bool:
        """Whether an outcome of this kind is reported to the circuit breaker as a failure."""
        return self.bucket is SummaryBucket.FAILED and self is not OutcomeKind.CANCELLED


class HttpMethod(StrEnum):
    """HTTP methods accepted for probes."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string is a supported method (case-insensitive).

        Args:
            value: The string value to validate.

        Returns:
            True if the value names a supported method.
        """
        return value.upper() in cls._value2member_map_
