"""lifter_etl.sport80

Browser adapters for the Sport80 public rankings site.

  PlaywrightTableDriver   TableDriver over a rankings listing page
  PlaywrightProfileSource ProfileSource over member history pages
  browser_pages()         context manager owning the browser, yielding one
                          page for listings and one for profiles

The rankings table is client-rendered (Vuetify): rows carry no member link,
only a 'row-clickable' class, and the member id is only visible in the
location a click navigates to ('/public/rankings/member/<id>').  HTML is read
with page.content() and parsed with BeautifulSoup, so the parsers below are
plain functions over markup and are unit-tested against fixture HTML.

Every Playwright timeout or error is converted to NavigationError; callers
decide whether that is soft.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Iterator

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright

from lifter_etl.normalize import (
    find_membership_number,
    infer_gender,
    normalize_space,
    parse_date,
    parse_kg,
    parse_member_id,
    trim,
)
from lifter_etl.rate_limit import RateLimiter
from lifter_etl.shared import NavigationError, SourceUnavailable
from lifter_etl.table_session import TableRow
from lifter_etl.tier2 import MeetHistoryEntry, ProfileHistory

log = logging.getLogger(__name__)

HEADER_SELECTOR = ".v-data-table__wrapper thead th"
ROW_SELECTOR = ".v-data-table__wrapper tbody tr"
NEXT_PAGE_SELECTOR = ".v-data-footer__icons-after button:not([disabled])"
LOADING_SELECTOR = ".v-data-table__progress, .v-progress-linear--active"
HISTORY_ROW_SELECTOR = ".data-table div div.v-data-table div.v-data-table__wrapper table tbody tr"
MEMBER_URL_RE = re.compile(r".*/member/\d+")

_MIN_RANKING_CELLS = 5


def member_url(base_url: str, stable_id: int) -> str:
    return f"{base_url.rstrip('/')}/public/rankings/member/{stable_id}"


# ---------------------------------------------------------------------------
# Rankings listing parser
# ---------------------------------------------------------------------------

def _column_map(headers: list[str]) -> dict[str, int]:
    """Find columns by header text; the positional fallbacks match the
    default rankings layout."""

    def find(*predicates) -> int:
        for i, h in enumerate(headers):
            if any(p(h) for p in predicates):
                return i
        return -1

    cols = {
        "rank": find(lambda h: "rank" in h),
        "name": find(lambda h: "athlete" in h, lambda h: "lifter" in h and "age" not in h),
        "age": find(lambda h: "lifter" in h and "age" in h, lambda h: "comp" in h and "age" in h and "category" not in h),
        "category": find(lambda h: "category" in h or h == "age group"),
        "club": find(lambda h: "club" in h or "team" in h),
        "date": find(lambda h: "date" in h),
        "level": find(lambda h: "level" in h),
        "wso": find(lambda h: "wso" in h or "lws" in h or "state" in h),
        "total": find(lambda h: "total" in h),
        "gender": find(lambda h: "gender" in h),
        "membership": find(lambda h: "member" in h or h == "#"),
        "body_weight": find(lambda h: "bodyweight" in h or "body weight" in h or h in ("bw", "bwt")),
        "weight_class": find(lambda h: "weight class" in h),
    }
    for key, fallback in (("rank", 0), ("name", 3), ("club", 6), ("date", 9), ("level", 11), ("wso", 12)):
        if cols[key] == -1:
            cols[key] = fallback
    return cols


def _cell(cells: list[str], index: int) -> str | None:
    return trim(cells[index]) if 0 <= index < len(cells) else None


def _parse_rankings(html: str) -> list[tuple[int, TableRow]]:
    soup = BeautifulSoup(html, "html.parser")
    headers = [th.get_text(" ", strip=True).lower() for th in soup.select(HEADER_SELECTOR)]
    cols = _column_map(headers)

    out: list[tuple[int, TableRow]] = []
    for dom_index, tr in enumerate(soup.select(ROW_SELECTOR)):
        cells = [td.get_text(" ", strip=True) for td in tr.find_all("td")]
        if len(cells) < _MIN_RANKING_CELLS:
            continue
        name = normalize_space(_cell(cells, cols["name"]))
        if not name:
            continue
        link = tr.select_one('a[href*="/member/"]')
        gender_text = _cell(cells, cols["gender"])
        category = _cell(cells, cols["category"])
        row = TableRow(
            display_name=name,
            interactive="row-clickable" in (tr.get("class") or []),
            stable_id=parse_member_id(link.get("href")) if link else None,
            age_category=category,
            weight_class=_cell(cells, cols["weight_class"]),
            lift_date=parse_date(_cell(cells, cols["date"])),
            body_weight_kg=parse_kg(_cell(cells, cols["body_weight"])),
            total_kg=parse_kg(_cell(cells, cols["total"])),
            club=_cell(cells, cols["club"]),
            gender=infer_gender(gender_text) or infer_gender(category),
            membership_number=_cell(cells, cols["membership"]),
        )
        out.append((dom_index, row))
    return out


def parse_rankings_html(html: str) -> list[TableRow]:
    """Listing rows in display order; rows without a name are dropped."""
    return [row for _, row in _parse_rankings(html)]


# ---------------------------------------------------------------------------
# Member history parser
# ---------------------------------------------------------------------------

def parse_member_history_html(html: str) -> tuple[list[MeetHistoryEntry], str | None, str | None]:
    """Return (entries, gender, membership_number) from one history page.

    Cells: meet, date, category, bodyweight, snatch, clean & jerk, total.
    Gender comes from the first category that names one.
    """
    soup = BeautifulSoup(html, "html.parser")
    entries: list[MeetHistoryEntry] = []
    gender: str | None = None
    for tr in soup.select(HISTORY_ROW_SELECTOR):
        cells = [td.get_text(" ", strip=True) for td in tr.find_all("td")]
        if len(cells) < 2:
            continue
        meet_name = normalize_space(cells[0])
        if not meet_name:
            continue
        category = _cell(cells, 2)
        if gender is None:
            gender = infer_gender(category)
        entries.append(MeetHistoryEntry(
            meet_name=meet_name,
            meet_date=parse_date(cells[1]),
            category=category,
            body_weight_kg=parse_kg(_cell(cells, 3)),
            snatch_kg=parse_kg(_cell(cells, 4)),
            clean_jerk_kg=parse_kg(_cell(cells, 5)),
            total_kg=parse_kg(_cell(cells, 6)),
        ))
    membership = find_membership_number(soup.get_text(" ", strip=True))
    return entries, gender, membership


# ---------------------------------------------------------------------------
# Playwright adapters
# ---------------------------------------------------------------------------

class PlaywrightTableDriver:
    """TableDriver over one Playwright page showing a rankings listing."""

    def __init__(self, page: Page, timeout_seconds: float = 30.0) -> None:
        self._page = page
        self._timeout_ms = int(timeout_seconds * 1000)
        self._dom_index: list[int] = []

    def goto(self, url: str) -> None:
        try:
            self._page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)
            self._page.wait_for_selector(ROW_SELECTOR, timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise NavigationError(f"goto {url}: {exc}") from exc

    def current_url(self) -> str:
        return self._page.url

    def row_count(self) -> int:
        try:
            return self._page.locator(ROW_SELECTOR).count()
        except PlaywrightError as exc:
            log.debug("row count unavailable: %s", exc)
            return -1

    def is_loading(self) -> bool:
        try:
            indicator = self._page.locator(LOADING_SELECTOR)
            return indicator.count() > 0 and indicator.first.is_visible()
        except PlaywrightError:
            return True

    def rows(self) -> list[TableRow]:
        parsed = _parse_rankings(self._page.content())
        self._dom_index = [i for i, _ in parsed]
        return [row for _, row in parsed]

    def click_row(self, position: int) -> str:
        if not self._dom_index:
            self.rows()
        if not 0 <= position < len(self._dom_index):
            raise NavigationError(f"row {position} not on page")
        try:
            self._page.locator(ROW_SELECTOR).nth(self._dom_index[position]).click(timeout=self._timeout_ms)
            self._page.wait_for_url(MEMBER_URL_RE, timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise NavigationError(f"click row {position}: {exc}") from exc
        self._dom_index = []
        return self._page.url

    def next_page(self) -> bool:
        button = self._page.locator(NEXT_PAGE_SELECTOR)
        try:
            if button.count() == 0:
                return False
            button.first.click(timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise NavigationError(f"next page: {exc}") from exc
        self._dom_index = []
        return True


class PlaywrightProfileSource:
    """ProfileSource reading /public/rankings/member/<id> with its own page."""

    def __init__(
        self,
        page: Page,
        rate_limiter: RateLimiter,
        base_url: str,
        timeout_seconds: float = 30.0,
        max_pages: int = 25,
    ) -> None:
        self._page = page
        self._rate_limiter = rate_limiter
        self._base_url = base_url
        self._timeout_ms = int(timeout_seconds * 1000)
        self._max_pages = max_pages

    def fetch_history(self, stable_id: int) -> ProfileHistory | None:
        url = member_url(self._base_url, stable_id)
        self._rate_limiter.wait()
        try:
            self._page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)
            self._page.wait_for_selector(HISTORY_ROW_SELECTOR, timeout=self._timeout_ms)
        except PlaywrightError as exc:
            log.warning("profile %s unavailable: %s", url, exc)
            try:
                self._rate_limiter.record_failure(f"profile {stable_id}: {exc}")
            except SourceUnavailable:
                log.error("safe stop while loading profile %s", stable_id)
                raise
            return None
        self._rate_limiter.on_success()

        entries: list[MeetHistoryEntry] = []
        gender: str | None = None
        membership: str | None = None
        for page_no in range(1, self._max_pages + 1):
            page_entries, page_gender, page_membership = parse_member_history_html(self._page.content())
            entries.extend(page_entries)
            gender = gender or page_gender
            membership = membership or page_membership
            if not self._next_history_page(page_no):
                break

        log.debug("profile %s: %d meet(s)", stable_id, len(entries))
        return ProfileHistory(
            stable_id=stable_id,
            entries=tuple(entries),
            gender=gender,
            membership_number=membership,
        )

    def _next_history_page(self, page_no: int) -> bool:
        button = self._page.locator(NEXT_PAGE_SELECTOR)
        try:
            if button.count() == 0:
                return False
            first_before = self._page.locator(HISTORY_ROW_SELECTOR).first.inner_text()
            self._rate_limiter.wait()
            button.first.click(timeout=self._timeout_ms)
            self._page.wait_for_function(
                "([sel, before]) => { const r = document.querySelector(sel);"
                " return r && r.innerText !== before; }",
                arg=[HISTORY_ROW_SELECTOR, first_before],
                timeout=self._timeout_ms,
            )
        except PlaywrightError as exc:
            log.warning("history page %d did not load: %s", page_no + 1, exc)
            return False
        self._rate_limiter.on_success()
        return True


@contextmanager
def browser_pages(headless: bool = True) -> Iterator[tuple[Page, Page]]:
    """Launch Chromium and yield (listing_page, profile_page)."""
    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=headless)
        try:
            context = browser.new_context(viewport={"width": 1500, "height": 1000})
            yield context.new_page(), context.new_page()
        finally:
            browser.close()
