"""Unit tests for the exponential backoff policy."""

from __future__ import annotations

import random

import pytest

from healthprobe.backoff import BackoffPolicy
from healthprobe.models import BackoffConfig


class TestBackoffConfig:
    """Tests for BackoffConfig validation."""

    def test_default_values(self) -> None:
        config = BackoffConfig()
        assert config.base == 0.2
        assert config.max == 5.0
        assert config.jitter is False

    def test_rejects_non_positive_base(self) -> None:
        with pytest.raises(ValueError, match="base backoff must be positive"):
            BackoffConfig(base=0.0, max=1.0)

    def test_rejects_max_below_base(self) -> None:
        with pytest.raises(ValueError, match="greater than or equal to base"):
            BackoffConfig(base=1.0, max=0.5)

    def test_max_equal_to_base_is_allowed(self) -> None:
        assert BackoffConfig(base=0.5, max=0.5).max == 0.5


class TestBackoffPolicy:
    """Tests for BackoffPolicy.delay()."""

    def test_doubles_each_attempt(self) -> None:
        policy = BackoffPolicy(BackoffConfig(base=0.1, max=10.0))
        assert [policy.delay(n) for n in range(1, 5)] == pytest.approx([0.1, 0.2, 0.4, 0.8])

    def test_capped_at_max(self) -> None:
        """base=100ms max=150ms gives 100ms then 150ms."""
        policy = BackoffPolicy(BackoffConfig(base=0.1, max=0.15))
        assert policy.delay(1) == pytest.approx(0.1)
        assert policy.delay(2) == pytest.approx(0.15)
        assert policy.delay(3) == pytest.approx(0.15)

    def test_non_decreasing_and_bounded(self) -> None:
        config = BackoffConfig(base=0.05, max=3.0)
        policy = BackoffPolicy(config)
        delays = [policy.delay(n) for n in range(1, 30)]
        assert delays == sorted(delays)
        assert all(d <= config.max for d in delays)

    def test_huge_attempt_number_does_not_overflow(self) -> None:
        policy = BackoffPolicy(BackoffConfig(base=0.2, max=5.0))
        assert policy.delay(10_000) == 5.0

    def test_attempt_must_be_positive(self) -> None:
        policy = BackoffPolicy(BackoffConfig())
        with pytest.raises(ValueError, match="attempt must be >= 1"):
            policy.delay(0)

    def test_jitter_stays_within_half_and_full_delay(self) -> None:
        policy = BackoffPolicy(BackoffConfig(base=0.2, max=1.0, jitter=True), rng=random.Random(42))
        for attempt in range(1, 10):
            full = min(0.2 * 2 ** (attempt - 1), 1.0)
            delay = policy.delay(attempt)
            assert full / 2 <= delay <= full

    def test_jitter_is_deterministic_with_seeded_rng(self) -> None:
        config = BackoffConfig(base=0.2, max=1.0, jitter=True)
        first = BackoffPolicy(config, rng=random.Random(7))
        second = BackoffPolicy(config, rng=random.Random(7))
        assert [first.delay(n) for n in range(1, 6)] == [second.delay(n) for n in range(1, 6)]
