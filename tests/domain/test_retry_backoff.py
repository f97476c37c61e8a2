"""Tests for taxflow_kernel.domain.backoff."""

from datetime import timedelta

import pytest

from taxflow_kernel.domain.backoff import (
    BackoffPolicy,
    compute_backoff_ms,
    deterministic_delay_ms,
)


class TestDeterministicDelay:
    def test_doubles_from_base(self):
        assert [deterministic_delay_ms(a) for a in range(4)] == [5000, 10000, 20000, 40000]

    def test_capped_at_max(self):
        assert deterministic_delay_ms(6) == 300000
        assert deterministic_delay_ms(10) == 300000

    def test_huge_attempt_returns_cap(self):
        assert deterministic_delay_ms(10_000) == 300000

    def test_non_decreasing(self):
        delays = [deterministic_delay_ms(a, 100, 50_000) for a in range(40)]
        assert delays == sorted(delays)

    def test_negative_attempt_rejected(self):
        with pytest.raises(ValueError):
            deterministic_delay_ms(-1)


class TestComputeBackoff:
    def test_no_jitter_when_rng_zero(self):
        assert compute_backoff_ms(0, rng=lambda: 0.0) == 5000

    def test_jitter_is_added(self):
        assert compute_backoff_ms(0, rng=lambda: 0.5) == 5500

    def test_jitter_bounded_by_jitter_max(self):
        assert compute_backoff_ms(1, rng=lambda: 0.999) < 10000 + 1000

    def test_never_exceeds_cap_with_jitter(self):
        assert compute_backoff_ms(20, rng=lambda: 0.999) == 300000

    def test_zero_jitter_max(self):
        assert compute_backoff_ms(2, jitter_max_ms=0, rng=lambda: 0.9) == 20000

    def test_growth_between_attempts(self):
        # deterministic part of attempt n+1 is at least that of attempt n
        for attempt in range(8):
            low = compute_backoff_ms(attempt, rng=lambda: 0.0)
            high = compute_backoff_ms(attempt + 1, rng=lambda: 0.0)
            assert high >= low


class TestBackoffPolicy:
    def test_delay_returns_timedelta(self):
        policy = BackoffPolicy(rng=lambda: 0.0)
        assert policy.delay(1) == timedelta(seconds=10)

    def test_custom_settings(self):
        policy = BackoffPolicy(base_delay_ms=100, max_delay_ms=250, jitter_max_ms=0)
        assert [policy.delay_ms(a) for a in range(4)] == [100, 200, 250, 250]
