"""Graceful shutdown handling for healthprobe.

SIGINT (Ctrl+C) and SIGTERM request a graceful stop: the in-flight sweep
finishes without starting new attempts, then the watch loop exits. A second
signal while shutdown is already pending is logged and otherwise ignored;
in-flight requests are always bounded by their own timeout.
"""

from __future__ import annotations

import signal
from collections.abc import Callable
from types import FrameType

from healthprobe.logging import get_logger

logger = get_logger(__name__)


class ShutdownHandler:
    """Turns termination signals into a shutdown request.

    The ``on_shutdown`` callback is typically
    ``CycleOrchestrator.request_shutdown``.
    """

    def __init__(self, on_shutdown: Callable[[], None] | None = None) -> None:
        self._shutdown_requested = False
        self._on_shutdown = on_shutdown

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Request graceful shutdown.

        Can be called programmatically as well as from a signal handler.
        """
        if self._shutdown_requested:
            logger.info("Shutdown already in progress, waiting for in-flight probes")
            return
        self._shutdown_requested = True
        if self._on_shutdown is not None:
            self._on_shutdown()

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM).

        Args:
            signum: The signal number received.
            frame: The current stack frame (unused).
        """
        logger.info("Received %s, initiating graceful shutdown...", signal.Signals(signum).name)
        self.request_shutdown()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)
        logger.debug("Signal handlers installed for SIGINT and SIGTERM")


def create_shutdown_handler(on_shutdown: Callable[[], None] | None = None) -> ShutdownHandler:
    """Create a ShutdownHandler and install its signal handlers.

    Args:
        on_shutdown: Optional callback to invoke when shutdown is requested.

    Returns:
        Configured ShutdownHandler with signal handlers installed.
    """
    handler = ShutdownHandler(on_shutdown)
    handler.install_signal_handlers()
    return handler


__all__ = [
    "ShutdownHandler",
    "create_shutdown_handler",
]
