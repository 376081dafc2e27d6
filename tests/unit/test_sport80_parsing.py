"""Unit tests for lifter_etl.sport80: HTML parsers and Playwright adapters
against a mocked page."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest
from playwright.sync_api import Error as PlaywrightError

from lifter_etl.rate_limit import RateLimiter
from lifter_etl.shared import NavigationError
from lifter_etl.sport80 import (
    ROW_SELECTOR,
    PlaywrightProfileSource,
    PlaywrightTableDriver,
    member_url,
    parse_member_history_html,
    parse_rankings_html,
)

RANKINGS_HTML = """
<div class="v-data-table__wrapper"><table>
  <thead><tr>
    <th>Rank</th><th>Lifter</th><th>Lifter Age</th><th>Age Category</th><th>Weight Class</th>
    <th>Club</th><th>Date</th><th>Level</th><th>Body Weight</th><th>Total</th><th>Gender</th>
    <th>Member #</th>
  </tr></thead>
  <tbody>
    <tr class="row-clickable">
      <td>1</td><td>Jane  Doe</td><td>28</td><td>Open Women's</td><td>64kg</td>
      <td>Iron Barbell</td><td>2024-03-09</td><td>Local</td><td>63.5</td><td>150</td><td>Female</td>
      <td>100234</td>
    </tr>
    <tr><td colspan="12">Loading</td></tr>
    <tr>
      <td>2</td><td><a href="/public/rankings/member/222">John Roe</a></td><td>31</td><td>Open Men's</td>
      <td>89kg</td><td>Other Club</td><td>Mar 10, 2024</td><td>Local</td><td>88.1</td><td>255 kg</td><td></td><td></td>
    </tr>
    <tr class="row-clickable">
      <td>3</td><td> </td><td>40</td><td>Open Men's</td><td>89kg</td>
      <td>Club</td><td>2024-03-09</td><td>Local</td><td>88</td><td>200</td><td>Male</td><td></td>
    </tr>
  </tbody>
</table></div>
"""

HEADERLESS_HTML = """
<div class="v-data-table__wrapper"><table><tbody>
  <tr class="row-clickable">
    <td>7</td><td>x</td><td>x</td><td>Amy Smith</td><td>x</td><td>x</td><td>Bay Lifting</td>
    <td>x</td><td>x</td><td>2025-07-12</td><td>x</td><td>National</td><td>Pacific</td>
  </tr>
</tbody></table></div>
"""

HISTORY_HTML = """
<div class="profile"><span>Membership #: 100234</span></div>
<div class="data-table"><div><div class="v-data-table"><div class="v-data-table__wrapper">
<table><tbody>
  <tr><td>Spring Open</td><td>2024-03-09</td><td>Open Women's 64kg</td>
      <td>63.5</td><td>65</td><td>85</td><td>150</td></tr>
  <tr><td>Winter  Classic</td><td>12/01/2023</td><td>Masters 35</td>
      <td>64</td><td>---</td><td>80</td><td>0</td></tr>
  <tr><td></td><td></td></tr>
</tbody></table>
</div></div></div></div>
"""


class TestParseRankings:
    def test_rows_with_header_mapping(self):
        rows = parse_rankings_html(RANKINGS_HTML)
        assert [r.display_name for r in rows] == ["Jane Doe", "John Roe"]
        jane = rows[0]
        assert jane.interactive is True
        assert jane.stable_id is None
        assert jane.age_category == "Open Women's"
        assert jane.weight_class == "64kg"
        assert jane.club == "Iron Barbell"
        assert jane.lift_date == date(2024, 3, 9)
        assert jane.body_weight_kg == 63.5
        assert jane.total_kg == 150.0
        assert jane.gender == "F"
        assert jane.membership_number == "100234"

    def test_direct_member_link(self):
        john = parse_rankings_html(RANKINGS_HTML)[1]
        assert john.interactive is False
        assert john.stable_id == 222
        assert john.total_kg == 255.0
        assert john.gender == "M"
        assert john.lift_date == date(2024, 3, 10)
        assert john.membership_number is None

    def test_positional_fallback_without_headers(self):
        [amy] = parse_rankings_html(HEADERLESS_HTML)
        assert amy.display_name == "Amy Smith"
        assert amy.club == "Bay Lifting"
        assert amy.lift_date == date(2025, 7, 12)
        assert amy.total_kg is None

    def test_empty_page(self):
        assert parse_rankings_html("<html><body>No results</body></html>") == []


class TestParseMemberHistory:
    def test_entries(self):
        entries, gender, membership = parse_member_history_html(HISTORY_HTML)
        assert len(entries) == 2
        spring = entries[0]
        assert spring.meet_name == "Spring Open"
        assert spring.meet_date == date(2024, 3, 9)
        assert spring.body_weight_kg == 63.5
        assert spring.snatch_kg == 65.0
        assert spring.clean_jerk_kg == 85.0
        assert spring.total_kg == 150.0
        assert gender == "F"
        assert membership == "100234"

    def test_missing_lifts_are_none(self):
        winter = parse_member_history_html(HISTORY_HTML)[0][1]
        assert winter.meet_name == "Winter Classic"
        assert winter.meet_date == date(2023, 12, 1)
        assert winter.snatch_kg is None
        assert winter.total_kg is None

    def test_no_table(self):
        assert parse_member_history_html("<p>Member not found</p>") == ([], None, None)


def test_member_url():
    assert member_url("https://rankings.test/", 38184) == "https://rankings.test/public/rankings/member/38184"


# ---------------------------------------------------------------------------
# Playwright adapters (mocked page)
# ---------------------------------------------------------------------------

class TestPlaywrightTableDriver:
    def test_goto_error_becomes_navigation_error(self):
        page = MagicMock()
        page.goto.side_effect = PlaywrightError("Timeout 30000ms exceeded")
        with pytest.raises(NavigationError, match="Timeout"):
            PlaywrightTableDriver(page).goto("https://rankings.test/public/rankings/all")

    def test_click_uses_dom_position(self):
        page = MagicMock()
        page.content.return_value = RANKINGS_HTML
        page.url = "https://rankings.test/public/rankings/member/111"
        driver = PlaywrightTableDriver(page)
        assert len(driver.rows()) == 2
        assert driver.click_row(1) == "https://rankings.test/public/rankings/member/111"
        page.locator.assert_called_with(ROW_SELECTOR)
        page.locator.return_value.nth.assert_called_with(2)

    def test_click_out_of_range(self):
        page = MagicMock()
        page.content.return_value = RANKINGS_HTML
        with pytest.raises(NavigationError):
            PlaywrightTableDriver(page).click_row(5)

    def test_click_timeout(self):
        page = MagicMock()
        page.content.return_value = RANKINGS_HTML
        page.wait_for_url.side_effect = PlaywrightError("Timeout")
        with pytest.raises(NavigationError):
            PlaywrightTableDriver(page).click_row(0)

    def test_no_next_page(self):
        page = MagicMock()
        page.locator.return_value.count.return_value = 0
        assert PlaywrightTableDriver(page).next_page() is False

    def test_next_page(self):
        page = MagicMock()
        page.locator.return_value.count.return_value = 1
        assert PlaywrightTableDriver(page).next_page() is True
        page.locator.return_value.first.click.assert_called_once()


class TestPlaywrightProfileSource:
    def _limiter(self) -> RateLimiter:
        return RateLimiter(min_delay=0.0, jitter=0.0)

    def test_fetch_single_page_history(self):
        page = MagicMock()
        page.content.return_value = HISTORY_HTML
        page.locator.return_value.count.return_value = 0
        history = PlaywrightProfileSource(page, self._limiter(), "https://rankings.test").fetch_history(111)
        assert history.stable_id == 111
        assert len(history.entries) == 2
        assert history.gender == "F"
        assert history.membership_number == "100234"
        assert page.goto.call_args.args[0] == "https://rankings.test/public/rankings/member/111"

    def test_load_failure_is_soft(self):
        page = MagicMock()
        page.goto.side_effect = PlaywrightError("net::ERR_CONNECTION_RESET")
        limiter = self._limiter()
        assert PlaywrightProfileSource(page, limiter, "https://rankings.test").fetch_history(111) is None
        assert limiter.consecutive_failures == 1
