"""Unit tests for lifter_etl.stable_id.StableIdExtractor."""

from __future__ import annotations

import pytest

from fakes import LISTING_URL, FakeTableDriver, row
from lifter_etl.shared import SessionDesyncError
from lifter_etl.stable_id import ExtractionState, StableIdExtractor

PAGE_1 = [row("Jane Doe", total_kg=121.0), row("John Roe", total_kg=200.0)]
PAGE_2 = [
    row("Amy Smith", total_kg=150.0),
    row("Bob Jones", total_kg=250.0),
    row("Cara Lee", total_kg=110.0),
    row("Dan Park", total_kg=275.0),
]
PAGE_3 = [row("Eve Moss", total_kg=99.0)]

MEMBER_IDS = {
    PAGE_1[0]: 101, PAGE_1[1]: 102,
    PAGE_2[0]: 201, PAGE_2[1]: 202, PAGE_2[2]: 203, PAGE_2[3]: 204,
    PAGE_3[0]: 301,
}


@pytest.fixture
def driver():
    return FakeTableDriver([list(PAGE_1), list(PAGE_2), list(PAGE_3)], member_ids=MEMBER_IDS)


@pytest.fixture
def session(make_session, driver):
    session = make_session(driver)
    session.open(LISTING_URL)
    return session


class TestExtraction:
    def test_extracts_id_from_navigated_location(self, session):
        extractor = StableIdExtractor()
        assert extractor.extract_stable_id(session, 1) == 102
        assert extractor.state is ExtractionState.EXTRACTED
        assert extractor.attempts_made == 1

    def test_sequential_extraction_on_later_page(self, session, driver):
        session.next_page()
        extractor = StableIdExtractor()
        for position, expected in enumerate([201, 202, 203, 204]):
            assert extractor.extract_stable_id(session, position) == expected
            assert session.current_page == 2
            assert session.rows()[0].display_name == "Amy Smith"
        assert driver.clicks == [(2, 0), (2, 1), (2, 2), (2, 3)]

    def test_direct_link_needs_no_navigation(self, make_session):
        linked = row("Jane Doe", stable_id=555)
        driver = FakeTableDriver([[linked]])
        session = make_session(driver)
        session.open(LISTING_URL)
        assert StableIdExtractor().extract_stable_id(session, 0) == 555
        assert driver.clicks == []

    def test_non_interactive_row(self, make_session):
        driver = FakeTableDriver([[row("Jane Doe", interactive=False)]])
        session = make_session(driver)
        session.open(LISTING_URL)
        extractor = StableIdExtractor()
        assert extractor.extract_stable_id(session, 0) is None
        assert extractor.state is ExtractionState.FAILED
        assert driver.clicks == []

    @pytest.mark.parametrize("position", [-1, 2, 50])
    def test_out_of_range(self, session, driver, position):
        assert StableIdExtractor().extract_stable_id(session, position) is None
        assert driver.clicks == []

    def test_location_without_member_id(self, make_session):
        driver = FakeTableDriver([[row("Jane Doe")]])
        session = make_session(driver)
        session.open(LISTING_URL)
        extractor = StableIdExtractor()
        assert extractor.extract_stable_id(session, 0) is None
        assert extractor.attempts_made == 1
        assert extractor.unextractable == 1
        assert session.current_page == 1


class TestRetries:
    def test_transient_failure_then_success(self, session, driver):
        driver.click_failures[(1, 1)] = 2
        extractor = StableIdExtractor(max_attempts=3)
        assert extractor.extract_stable_id(session, 1) == 102
        assert extractor.attempts_made == 3

    def test_exhausted_attempts_marks_unextractable(self, session, driver):
        driver.click_failures[(1, 0)] = 5
        extractor = StableIdExtractor(max_attempts=3)
        assert extractor.extract_stable_id(session, 0) is None
        assert extractor.attempts_made == 3
        assert extractor.unextractable == 1
        assert session.current_page == 1


class TestDesync:
    def test_unreachable_listing_raises(self, session, driver):
        session.next_page()
        driver.goto_failures = 10
        with pytest.raises(SessionDesyncError):
            StableIdExtractor().extract_stable_id(session, 0)

    def test_first_page_reordered_raises(self, session, driver):
        driver.scramble_on_return = True
        with pytest.raises(SessionDesyncError):
            StableIdExtractor().extract_stable_id(session, 1)
