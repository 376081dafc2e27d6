"""Unit tests for lifter_etl.rate_limit."""

from __future__ import annotations

import pytest

from lifter_etl.rate_limit import RateLimiter
from lifter_etl.shared import SourceUnavailable


class TestRateLimiter:
    def test_defaults(self):
        rl = RateLimiter()
        assert rl.min_delay == 2.0
        assert rl.jitter == 0.5
        assert rl.max_consecutive_failures == 5

    def test_first_wait_does_not_sleep(self, clock):
        rl = RateLimiter(min_delay=2.0, jitter=0.0, clock=clock, sleeper=clock.sleep)
        rl.wait()
        assert clock.sleeps == []

    def test_second_wait_sleeps_full_delay(self, clock):
        rl = RateLimiter(min_delay=2.0, jitter=0.0, clock=clock, sleeper=clock.sleep)
        rl.wait()
        rl.wait()
        assert clock.sleeps == [2.0]

    def test_elapsed_time_counts_toward_delay(self, clock):
        rl = RateLimiter(min_delay=2.0, jitter=0.0, clock=clock, sleeper=clock.sleep)
        rl.wait()
        clock.now += 1.5
        rl.wait()
        assert clock.sleeps == [pytest.approx(0.5)]

    def test_no_sleep_when_delay_already_passed(self, clock):
        rl = RateLimiter(min_delay=2.0, jitter=0.0, clock=clock, sleeper=clock.sleep)
        rl.wait()
        clock.now += 10
        rl.wait()
        assert clock.sleeps == []

    def test_jitter_bounded(self, clock):
        rl = RateLimiter(min_delay=1.0, jitter=0.5, clock=clock, sleeper=clock.sleep)
        rl.wait()
        rl.wait()
        assert 1.0 <= clock.sleeps[0] <= 1.5

    def test_on_success_resets(self):
        rl = RateLimiter(min_delay=0.0, jitter=0.0)
        rl.on_failure("x")
        rl.on_failure("x")
        assert rl.consecutive_failures == 2
        rl.on_success()
        assert rl.consecutive_failures == 0

    def test_on_failure_returns_true_at_threshold(self):
        rl = RateLimiter(max_consecutive_failures=3, min_delay=0.0, jitter=0.0)
        assert rl.on_failure("a") is False
        assert rl.on_failure("b") is False
        assert rl.on_failure("c") is True

    def test_backoff_multiplier_caps_at_32(self):
        rl = RateLimiter(max_consecutive_failures=100, min_delay=0.0, jitter=0.0)
        for _ in range(10):
            rl.on_failure("x")
        assert rl._backoff_mult == 32.0

    def test_backoff_stretches_delay(self, clock):
        rl = RateLimiter(min_delay=1.0, jitter=0.0, max_consecutive_failures=10, clock=clock, sleeper=clock.sleep)
        rl.wait()
        rl.on_failure("x")
        rl.wait()
        assert clock.sleeps == [2.0]

    def test_record_failure_raises_at_threshold(self):
        rl = RateLimiter(max_consecutive_failures=2, min_delay=0.0, jitter=0.0)
        rl.record_failure("timeout")
        with pytest.raises(SourceUnavailable, match="2 consecutive"):
            rl.record_failure("timeout")
