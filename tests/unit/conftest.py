"""Unit test fixtures. No database, network or browser access required."""

from __future__ import annotations

import pytest

from fakes import FakeClock
from lifter_etl.rate_limit import RateLimiter
from lifter_etl.table_session import TableSession


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_session(clock):
    """Factory: TableSession over a driver with zero-delay pacing and a fake clock."""

    def _make(driver, **kwargs) -> TableSession:
        limiter = kwargs.pop(
            "rate_limiter",
            RateLimiter(min_delay=0.0, jitter=0.0, clock=clock, sleeper=clock.sleep),
        )
        kwargs.setdefault("dwell_seconds", 0.0)
        kwargs.setdefault("poll_seconds", 0.25)
        kwargs.setdefault("settle_timeout", 5.0)
        kwargs.setdefault("restore_max_attempts", 2)
        return TableSession(driver, limiter, clock=clock, sleeper=clock.sleep, **kwargs)

    return _make
