"""lifter_etl.rate_limit

Single-session politeness control for the remote rankings source.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable

from lifter_etl.shared import SourceUnavailable

log = logging.getLogger(__name__)


@dataclass
class RateLimiter:
    """Fixed minimum spacing between requests, with jitter and exponential backoff.

    Unlike a plain sleep-per-request, wait() only blocks for whatever part of
    the delay has not already elapsed since the previous request, so slow
    page renders are not double-counted.
    """

    min_delay: float = 2.0
    jitter: float = 0.5
    max_consecutive_failures: int = 5
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleeper: Callable[[float], None] = field(default=time.sleep, repr=False)
    _last_request_at: float | None = field(default=None, init=False, repr=False)
    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _backoff_mult: float = field(default=1.0, init=False, repr=False)

    def wait(self) -> None:
        """Block until min_delay * backoff_mult (+ jitter) has passed since the last request."""
        if self._last_request_at is not None:
            delay = self.min_delay * self._backoff_mult
            if self.jitter:
                delay += random.uniform(0.0, self.jitter)
            remaining = delay - (self.clock() - self._last_request_at)
            if remaining > 0:
                self.sleeper(remaining)
        self._last_request_at = self.clock()

    def on_success(self) -> None:
        self._consecutive_failures = 0
        self._backoff_mult = 1.0

    def on_failure(self, reason: str = "") -> bool:
        """Record a failure. Returns True if the safe-stop threshold is reached."""
        self._consecutive_failures += 1
        self._backoff_mult = min(self._backoff_mult * 2.0, 32.0)
        log.debug(
            "source failure #%d (%s); backoff x%.0f",
            self._consecutive_failures, reason, self._backoff_mult,
        )
        return self._consecutive_failures >= self.max_consecutive_failures

    def record_failure(self, reason: str) -> None:
        """on_failure() that raises SourceUnavailable at the safe-stop threshold."""
        if self.on_failure(reason):
            log.error(
                "source failed %d times in a row; last reason: %s",
                self._consecutive_failures, reason,
            )
            raise SourceUnavailable(
                f"{self._consecutive_failures} consecutive source failures ({reason})"
            )

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures
