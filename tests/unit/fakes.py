"""In-process fakes for the browser-facing protocols.

FakeTableDriver behaves like the rankings listing in the ways the session
logic depends on: clicking a row navigates away, coming back (goto) lands on
page 1, and the pager only moves forward.
"""

from __future__ import annotations

from datetime import date

from lifter_etl.records import MeetReference, ScrapedResult
from lifter_etl.shared import NavigationError
from lifter_etl.table_session import TableRow
from lifter_etl.tier2 import ProfileHistory

LISTING_URL = "https://rankings.test/public/rankings/all?filters=abc"
MEMBER_URL = "https://rankings.test/public/rankings/member/{}"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTableDriver:
    """Paginated listing(s) with click-to-member navigation.

    listings maps url -> pages; a url not in listings shows one empty page.
    member_ids maps a TableRow to the member id its click navigates to;
    rows missing from it navigate to a location without a member id.
    """

    def __init__(
        self,
        pages: list[list[TableRow]] | None = None,
        listings: dict[str, list[list[TableRow]]] | None = None,
        member_ids: dict[TableRow, int] | None = None,
    ) -> None:
        self.listings = dict(listings or {})
        self.default_pages = pages
        self.member_ids = dict(member_ids or {})
        self.location = "about:blank"
        self.listing = None
        self.page_index = 0
        self.gotos: list[str] = []
        self.clicks: list[tuple[int, int]] = []
        self.click_failures: dict[tuple[int, int], int] = {}
        self.goto_failures = 0
        self.count_sequence: list[int] = []
        self.loading_polls = 0
        self.scramble_on_return = False

    def _pages(self) -> list[list[TableRow]]:
        if self.listing is None:
            return [[]]
        if self.listing in self.listings:
            return self.listings[self.listing]
        if self.default_pages is not None:
            return self.default_pages
        return [[]]

    def goto(self, url: str) -> None:
        self.gotos.append(url)
        if self.goto_failures > 0:
            self.goto_failures -= 1
            raise NavigationError(f"timeout loading {url}")
        self.location = url
        self.listing = url
        self.page_index = 0
        if self.scramble_on_return:
            pages = self._pages()
            pages[0] = list(reversed(pages[0]))
            self.scramble_on_return = False

    def current_url(self) -> str:
        return self.location

    def row_count(self) -> int:
        if self.count_sequence:
            return self.count_sequence.pop(0)
        return len(self.rows())

    def is_loading(self) -> bool:
        if self.loading_polls > 0:
            self.loading_polls -= 1
            return True
        return False

    def rows(self) -> list[TableRow]:
        if self.location != self.listing:
            return []
        pages = self._pages()
        return list(pages[self.page_index]) if self.page_index < len(pages) else []

    def click_row(self, position: int) -> str:
        key = (self.page_index + 1, position)
        self.clicks.append(key)
        if self.click_failures.get(key, 0) > 0:
            self.click_failures[key] -= 1
            raise NavigationError(f"click on row {position} timed out")
        row = self.rows()[position]
        member_id = self.member_ids.get(row)
        self.location = MEMBER_URL.format(member_id) if member_id else "https://rankings.test/public/error"
        self.page_index = 0
        return self.location

    def next_page(self) -> bool:
        if self.location != self.listing or self.page_index + 1 >= len(self._pages()):
            return False
        self.page_index += 1
        return True


class FakeProfileSource:
    def __init__(self, histories: dict[int, ProfileHistory] | None = None) -> None:
        self.histories = dict(histories or {})
        self.calls: list[int] = []
        self.failures: dict[int, int] = {}

    def fetch_history(self, stable_id: int) -> ProfileHistory | None:
        self.calls.append(stable_id)
        if self.failures.get(stable_id, 0) > 0:
            self.failures[stable_id] -= 1
            return None
        return self.histories.get(stable_id)


def row(name: str, **kwargs) -> TableRow:
    kwargs.setdefault("interactive", True)
    kwargs.setdefault("lift_date", date(2024, 3, 9))
    return TableRow(display_name=name, **kwargs)


def make_result(name: str = "Jane Doe", **kwargs) -> ScrapedResult:
    kwargs.setdefault("meet", MeetReference("Spring Open", date(2024, 3, 9)))
    return ScrapedResult(raw_name=name, **kwargs)

