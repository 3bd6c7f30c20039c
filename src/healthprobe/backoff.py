"""Exponential backoff between retry attempts.

The delay before retry ``n`` (1-based, counting completed attempts) is
``base * 2**(n-1)``, capped at ``max``. With jitter enabled each delay is drawn
uniformly from ``[d/2, d]`` so the cap still holds.
"""

from __future__ import annotations

import random

from healthprobe.models import BackoffConfig

# 2**62 already exceeds any sane cap; clamping keeps huge attempt numbers cheap.
_MAX_EXPONENT = 62


class BackoffPolicy:
    """Computes the delay to wait after a failed attempt.

    Pure and non-blocking: it only returns a duration, the caller decides how
    to wait for it.

    Usage:
        policy = BackoffPolicy(BackoffConfig(base=0.1, max=0.15))
        policy.delay(1)  # 0.1
        policy.delay(2)  # 0.15 (capped)
    """

    def __init__(self, config: BackoffConfig, rng: random.Random | None = None) -> None:
        """Initialize the policy.

        Args:
            config: Base and max delay, and whether to jitter.
            rng: Random source for jitter. Defaults to a private ``random.Random``.
        """
        self._config = config
        self._rng = rng or random.Random()

    @property
    def config(self) -> BackoffConfig:
        return self._config

    def delay(self, attempt: int) -> float:
        """Return the delay in seconds after attempt number ``attempt``.

        Args:
            attempt: Number of the attempt that just failed (>= 1).

        Returns:
            Delay in seconds, never greater than ``config.max``.

        Raises:
            ValueError: If ``attempt`` is less than 1.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")

        exponent = min(attempt - 1, _MAX_EXPONENT)
        delay = min(self._config.base * (2**exponent), self._config.max)
        if self._config.jitter:
            delay = self._rng.uniform(delay / 2, delay)
        return delay
