"""Single-attempt HTTP probe.

``ProbeExecutor.execute()`` issues one request for one ``EndpointSpec`` and
classifies what happened into a ``ProbeOutcome``. It never retries; retry
orchestration belongs to the endpoint runner.

Classification:
- success: response within the timeout and status inside ``expected_status``
- timeout: ``httpx.TimeoutException`` (connect, read, write or pool), or a
  response that arrived after ``spec.timeout`` in total
- connection error: any other transport failure (DNS, refused, TLS handshake)
- status out of range: response received with an unexpected status code

The response body is never read: the request is streamed and closed as soon
as the status line and headers arrive. Redirects are not followed, so a 3xx
is judged against the expected range like any other status.
"""

from __future__ import annotations

import ssl
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from healthprobe import __version__
from healthprobe.logging import get_logger
from healthprobe.models import EndpointSpec, ProbeOutcome
from healthprobe.types import OutcomeKind

logger = get_logger(__name__)

DEFAULT_USER_AGENT = f"healthprobe/{__version__}"


@dataclass(frozen=True)
class TransportConfig:
    """Settings for the shared HTTP client.

    Attributes:
        user_agent: User-Agent header sent with every probe.
        timeout: Default timeout in seconds (each probe overrides it with its own).
        insecure_skip_verify: Disable TLS certificate verification.
        ca_bundle_path: Optional PEM bundle trusted in addition to the system store.
        max_connections: Connection pool size; matches the probe concurrency so
            no probe ever waits for a pool slot.
    """

    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 5.0
    insecure_skip_verify: bool = False
    ca_bundle_path: str | None = None
    max_connections: int = 8


def build_ssl_context(config: TransportConfig) -> ssl.SSLContext | bool:
    """Return the ``verify`` argument for httpx from TLS trust options.

    Raises:
        OSError: If the CA bundle cannot be read.
        ssl.SSLError: If the CA bundle is not valid PEM.
    """
    if config.insecure_skip_verify:
        logger.warning("TLS certificate verification is DISABLED for all probes")
        return False
    if config.ca_bundle_path:
        context = ssl.create_default_context()
        context.load_verify_locations(cafile=config.ca_bundle_path)
        logger.info("Trusting additional CA bundle %s", config.ca_bundle_path)
        return context
    return True


def build_http_client(config: TransportConfig) -> httpx.Client:
    """Build the ``httpx.Client`` shared by all probes.

    The client is thread-safe and pools connections across endpoints. The
    pool holds one connection per concurrent probe.
    """
    return httpx.Client(
        headers={"User-Agent": config.user_agent},
        timeout=httpx.Timeout(config.timeout),
        verify=build_ssl_context(config),
        follow_redirects=False,
        limits=httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_connections,
        ),
    )


class ProbeExecutor:
    """Issues one HTTP request per call and classifies the outcome.

    Attributes:
        client: Shared ``httpx.Client``.
        time_func: Monotonic clock used to measure each attempt.
    """

    def __init__(
        self, client: httpx.Client, time_func: Callable[[], float] = time.monotonic
    ) -> None:
        self.client = client
        self.time_func = time_func

    @classmethod
    def from_config(cls, config: TransportConfig) -> ProbeExecutor:
        return cls(build_http_client(config))

    def close(self) -> None:
        self.client.close()

    def execute(
        self,
        spec: EndpointSpec,
        cancel_event: threading.Event | None = None,
    ) -> ProbeOutcome:
        """Probe one endpoint once.

        httpx applies ``spec.timeout`` to each phase (connect, write, read,
        pool) separately, so a response whose headers trickle in can outlast
        it. The total time is checked as well: a response that arrives after
        ``spec.timeout`` counts as a timeout.

        Args:
            spec: The endpoint to probe.
            cancel_event: Cooperative cancellation token. When already set the
                request is not sent and a CANCELLED outcome is returned. An
                in-flight request is never interrupted; ``spec.timeout`` bounds it.

        Returns:
            The classified ProbeOutcome.
        """
        if cancel_event is not None and cancel_event.is_set():
            return ProbeOutcome.cancelled()

        start = self.time_func()
        try:
            with self.client.stream(
                spec.method.value,
                spec.url,
                headers=spec.header_dict(),
                timeout=spec.timeout,
            ) as response:
                status_code = response.status_code
        except httpx.TimeoutException as e:
            return ProbeOutcome(
                kind=OutcomeKind.TIMEOUT,
                elapsed=self.time_func() - start,
                reason=f"timed out after {spec.timeout:g}s ({type(e).__name__})",
            )
        except httpx.RequestError as e:
            return ProbeOutcome(
                kind=OutcomeKind.CONNECTION_ERROR,
                elapsed=self.time_func() - start,
                reason=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
            )

        elapsed = self.time_func() - start
        if elapsed > spec.timeout:
            return ProbeOutcome(
                kind=OutcomeKind.TIMEOUT,
                status_code=status_code,
                elapsed=elapsed,
                reason=f"response took {elapsed:.2f}s, deadline {spec.timeout:g}s",
            )
        if spec.expected_status.contains(status_code):
            return ProbeOutcome(kind=OutcomeKind.SUCCESS, status_code=status_code, elapsed=elapsed)
        return ProbeOutcome(
            kind=OutcomeKind.STATUS_OUT_OF_RANGE,
            status_code=status_code,
            elapsed=elapsed,
            reason=f"HTTP {status_code} outside expected {spec.expected_status}",
        )
