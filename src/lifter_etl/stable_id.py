"""lifter_etl.stable_id

Stable-ID extraction by triggered navigation.

Listing rows in the rankings table usually carry no member link; the only
way to learn a row's stable id is to trigger the row and read the id out of
the location it navigates to ('.../member/<digits>').

Per attempt:

    IDLE -> NAVIGATING -> SETTLED -> EXTRACTED
                       `-> FAILED

  - non-interactive rows (and out-of-range positions) yield None without
    navigating;
  - a row that exposes a direct member link is answered without navigating;
  - a transient navigation failure is retried up to max_attempts;
  - a location without the member pattern is a soft failure (None, no retry);
  - after every attempt that may have left the listing, the session is
    restored to its starting page and the first-row identity is compared
    with the one captured before the attempt.  If that cannot be verified
    SessionDesyncError is raised: row positions on this session are no
    longer trustworthy.
"""

from __future__ import annotations

import enum
import logging

from lifter_etl.normalize import parse_member_id
from lifter_etl.shared import NavigationError, SessionDesyncError
from lifter_etl.table_session import TableSession

log = logging.getLogger(__name__)


class ExtractionState(str, enum.Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    SETTLED = "settled"
    EXTRACTED = "extracted"
    FAILED = "failed"


class StableIdExtractor:
    def __init__(self, max_attempts: int = 3) -> None:
        self.max_attempts = max_attempts
        self.state = ExtractionState.IDLE
        self.attempts_made = 0
        self.unextractable = 0

    def _transition(self, state: ExtractionState) -> None:
        log.debug("extractor %s -> %s", self.state.value, state.value)
        self.state = state

    def extract_stable_id(self, session: TableSession, row_position: int) -> int | None:
        self.state = ExtractionState.IDLE
        self.attempts_made = 0

        if not session.wait_until_stable():
            log.warning("table never settled; not touching row %d", row_position)
            self._transition(ExtractionState.FAILED)
            return None

        rows = session.rows()
        if not 0 <= row_position < len(rows):
            self._transition(ExtractionState.FAILED)
            return None
        row = rows[row_position]
        if row.stable_id is not None:
            self._transition(ExtractionState.EXTRACTED)
            return row.stable_id
        if not row.interactive:
            log.debug("row %d (%r) is not interactive", row_position, row.display_name)
            self._transition(ExtractionState.FAILED)
            return None

        origin_page = session.current_page
        origin_first_row = rows[0].identity
        stable_id: int | None = None

        for attempt in range(1, self.max_attempts + 1):
            self.attempts_made = attempt
            self._transition(ExtractionState.NAVIGATING)
            try:
                location = session.open_row(row_position)
            except NavigationError as exc:
                log.warning(
                    "row %d (%r) attempt %d/%d: %s",
                    row_position, row.display_name, attempt, self.max_attempts, exc,
                )
                self._transition(ExtractionState.FAILED)
                self._restore(session, origin_page, origin_first_row)
                if not self._same_row(session, row_position, row.identity):
                    break
                continue

            self._transition(ExtractionState.SETTLED)
            stable_id = parse_member_id(location)
            self._restore(session, origin_page, origin_first_row)
            if stable_id is None:
                log.warning(
                    "row %d (%r) led to %s, which has no member id",
                    row_position, row.display_name, location,
                )
                self._transition(ExtractionState.FAILED)
            else:
                self._transition(ExtractionState.EXTRACTED)
            break

        if stable_id is None:
            self.unextractable += 1
            log.info(
                "page %d row %d (%r) left without a stable id",
                origin_page, row_position, row.display_name,
            )
        return stable_id

    def _restore(self, session: TableSession, page: int, first_row) -> None:
        if not session.restore_to(page, first_row):
            log.error("could not restore listing to page %d with first row %r", page, first_row)
            raise SessionDesyncError(f"listing not restored to page {page}")

    @staticmethod
    def _same_row(session: TableSession, position: int, identity: tuple) -> bool:
        rows = session.rows()
        return 0 <= position < len(rows) and rows[position].identity == identity
