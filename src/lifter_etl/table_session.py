"""lifter_etl.table_session

TableSession: an owned cursor over one rendered, paginated rankings table.

The browser behind a rankings table is stateful in ways that matter to
identity extraction:
  - a freshly rendered or freshly paginated table is not clickable until
    its rows have stopped changing, so every navigation ends in
    wait_until_stable();
  - opening a row navigates away, and coming back lands on page 1, so the
    session tracks current_page itself and restore_to(page) replays the
    "next page" transitions, then checks the first row is the one it
    expects.

All browser specifics live behind the TableDriver protocol (see
lifter_etl.sport80 for the Playwright driver). One session is used by one
caller at a time; nothing here is thread-safe.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Protocol

from lifter_etl.normalize import normalize_name
from lifter_etl.rate_limit import RateLimiter
from lifter_etl.shared import NavigationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableRow:
    """One rendered listing row."""

    display_name: str
    interactive: bool = False
    stable_id: int | None = None  # only when the row carries a direct member link
    age_category: str | None = None
    weight_class: str | None = None
    lift_date: date | None = None
    body_weight_kg: float | None = None
    total_kg: float | None = None
    club: str | None = None
    gender: str | None = None
    membership_number: str | None = None

    @property
    def identity(self) -> tuple:
        return (
            normalize_name(self.display_name),
            self.lift_date,
            self.total_kg,
            normalize_name(self.club),
        )


RowIdentity = tuple


class TableDriver(Protocol):
    def goto(self, url: str) -> None:
        """Load url. Raises NavigationError on failure or timeout."""
        ...

    def current_url(self) -> str:
        ...

    def row_count(self) -> int:
        ...

    def is_loading(self) -> bool:
        ...

    def rows(self) -> list[TableRow]:
        ...

    def click_row(self, position: int) -> str:
        """Trigger the row and return the resulting location. Raises NavigationError."""
        ...

    def next_page(self) -> bool:
        """Advance the pager. False when there is no further page."""
        ...


class TableSession:
    def __init__(
        self,
        driver: TableDriver,
        rate_limiter: RateLimiter,
        *,
        dwell_seconds: float = 1.0,
        poll_seconds: float = 0.25,
        settle_timeout: float = 15.0,
        restore_max_attempts: int = 2,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self._driver = driver
        self._rate_limiter = rate_limiter
        self.dwell_seconds = dwell_seconds
        self.poll_seconds = poll_seconds
        self.settle_timeout = settle_timeout
        self.restore_max_attempts = restore_max_attempts
        self._clock = clock
        self._sleep = sleeper
        self._listing_url: str | None = None
        self._current_page = 0

    @property
    def current_page(self) -> int:
        """1-based page index of the listing; 0 before anything was opened."""
        return self._current_page

    @property
    def listing_url(self) -> str | None:
        return self._listing_url

    # ------------------------------------------------------------------ #
    # Navigation                                                           #
    # ------------------------------------------------------------------ #

    def open(self, url: str) -> bool:
        """Load a listing and wait for it to settle. False on a soft failure."""
        self._rate_limiter.wait()
        try:
            self._driver.goto(url)
        except NavigationError as exc:
            log.warning("listing load failed for %s: %s", url, exc)
            self._listing_url = None
            self._current_page = 0
            self._rate_limiter.record_failure(f"goto: {exc}")
            return False
        self._rate_limiter.on_success()
        self._listing_url = self._driver.current_url() or url
        self._current_page = 1
        return self.wait_until_stable()

    def next_page(self) -> bool:
        """Advance one page. False on the last page or when the new page never settles."""
        self._rate_limiter.wait()
        try:
            moved = self._driver.next_page()
        except NavigationError as exc:
            log.warning("next-page failed on page %d: %s", self._current_page, exc)
            self._rate_limiter.record_failure(f"next_page: {exc}")
            return False
        self._rate_limiter.on_success()
        if not moved:
            return False
        self._current_page += 1
        if not self.wait_until_stable():
            log.warning("page %d did not settle", self._current_page)
            return False
        return True

    def open_row(self, position: int) -> str:
        """Trigger a row; returns the new location. NavigationError propagates."""
        self._rate_limiter.wait()
        location = self._driver.click_row(position)
        self._rate_limiter.on_success()
        return location

    def restore_to(self, page: int, expected_first_row: RowIdentity | None = None) -> bool:
        """Put the session back on listing page `page` with the expected first row.

        Returns False when restoration could not be verified within
        restore_max_attempts.
        """
        if self._listing_url is None:
            return False
        for attempt in range(1, self.restore_max_attempts + 1):
            if self._on_listing_page(page, expected_first_row):
                return True
            self._rate_limiter.wait()
            try:
                self._driver.goto(self._listing_url)
            except NavigationError as exc:
                log.warning("restore attempt %d: reload failed: %s", attempt, exc)
                self._rate_limiter.record_failure(f"restore: {exc}")
                continue
            self._rate_limiter.on_success()
            self._current_page = 1
            if not self.wait_until_stable():
                continue
            while self._current_page < page:
                if not self.next_page():
                    break
            if self._on_listing_page(page, expected_first_row):
                log.debug("restored to page %d after %d attempt(s)", page, attempt)
                return True
            log.warning(
                "restore attempt %d landed on page %d with first row %r",
                attempt, self._current_page, self.first_row_identity(),
            )
        return False

    def _on_listing_page(self, page: int, expected_first_row: RowIdentity | None) -> bool:
        if self._driver.current_url() != self._listing_url or self._current_page != page:
            return False
        return expected_first_row is None or self.first_row_identity() == expected_first_row

    # ------------------------------------------------------------------ #
    # Rendering state                                                      #
    # ------------------------------------------------------------------ #

    def wait_until_stable(self) -> bool:
        """Block until the row count holds steady with no loading indicator.

        Stable means: two or more consecutive readings with the same row
        count, no loading indicator, for at least dwell_seconds.  Returns
        False once settle_timeout passes without that.
        """
        deadline = self._clock() + self.settle_timeout
        last_count: int | None = None
        stable_since: float | None = None
        while True:
            loading = self._driver.is_loading()
            count = self._driver.row_count()
            now = self._clock()
            if loading or count != last_count:
                stable_since = None
            elif stable_since is None:
                stable_since = now
            last_count = count
            if stable_since is not None and now - stable_since >= self.dwell_seconds:
                return True
            if now >= deadline:
                log.warning(
                    "table did not stabilize within %.1fs (rows=%s loading=%s)",
                    self.settle_timeout, count, loading,
                )
                return False
            self._sleep(self.poll_seconds)

    def rows(self) -> list[TableRow]:
        return self._driver.rows()

    def first_row_identity(self) -> RowIdentity | None:
        rows = self._driver.rows()
        return rows[0].identity if rows else None
