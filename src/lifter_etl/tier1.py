"""lifter_etl.tier1

Tier-1 verification: does the candidate show up in the rankings listing
for the result's division around the meet date?

A listing scan walks every page of one division query (bounded by
max_listing_pages) and collects the rows whose name equals the target name
(case/whitespace-insensitive).  A row's stable id is its direct member
link when the row carries one, otherwise whatever the Stable-ID Extractor
can get by triggering the row.  Scans are cached per (query url, name), so
several candidates sharing a name cost one scan.

verify_context() passes when:
  - a same-name row's stable id equals the candidate's stable id (strong), or
  - a same-name row exposes no stable id at all (weak: exact-name presence
    in the right window).

The declared division is searched first; the alternative divisions are
only tried when it has no same-name row at all.  A failed scan is a
negative outcome, not an error.  SourceUnavailable (safe stop) propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lifter_etl.config import ResolverConfig
from lifter_etl.divisions import DivisionCatalog, DivisionQuery, division_queries
from lifter_etl.normalize import infer_gender, normalize_name
from lifter_etl.records import ScrapedResult
from lifter_etl.shared import SessionDesyncError
from lifter_etl.stable_id import StableIdExtractor
from lifter_etl.table_session import TableRow, TableSession

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingHit:
    """A same-name listing row, with the stable id it resolved to (if any)."""

    row: TableRow
    stable_id: int | None
    page: int
    position: int


@dataclass
class ContextCheck:
    passed: bool
    strong: bool = False
    division: str | None = None
    hits: list[ListingHit] = field(default_factory=list)
    reason: str = ""


class ContextVerifier:
    def __init__(
        self,
        catalog: DivisionCatalog,
        extractor: StableIdExtractor,
        config: ResolverConfig,
    ) -> None:
        self._catalog = catalog
        self._extractor = extractor
        self._config = config
        self._scan_cache: dict[tuple[str, str], list[ListingHit]] = {}
        self.scans = 0
        self.stable_ids_extracted = 0

    # ------------------------------------------------------------------ #
    # Tier-1                                                               #
    # ------------------------------------------------------------------ #

    def check_context(
        self,
        session: TableSession,
        stable_id: int,
        result: ScrapedResult,
        candidate_name: str | None = None,
    ) -> ContextCheck:
        name = candidate_name or result.raw_name
        queries = division_queries(self._catalog, result, self._config)
        if not queries:
            return ContextCheck(passed=False, reason="no division code for result")

        for query in queries:
            hits = self.scan(session, query, name)
            if not hits:
                continue
            if any(hit.stable_id == stable_id for hit in hits):
                return ContextCheck(True, strong=True, division=query.division_name, hits=hits,
                                    reason=f"stable id {stable_id} listed in {query.division_name}")
            if any(hit.stable_id is None for hit in hits):
                return ContextCheck(True, strong=False, division=query.division_name, hits=hits,
                                    reason=f"name listed without id in {query.division_name}")
            ids = sorted({hit.stable_id for hit in hits})
            return ContextCheck(False, division=query.division_name, hits=hits,
                                reason=f"name listed in {query.division_name} with other id(s) {ids}")
        return ContextCheck(False, reason=f"name not listed in {len(queries)} division(s)")

    def verify_context(
        self,
        session: TableSession,
        stable_id: int,
        result: ScrapedResult,
        candidate_name: str | None = None,
    ) -> bool:
        check = self.check_context(session, stable_id, result, candidate_name)
        log.debug("tier1 stable_id=%s: %s (%s)", stable_id, check.passed, check.reason)
        return check.passed

    # ------------------------------------------------------------------ #
    # Result identification                                                #
    # ------------------------------------------------------------------ #

    def identify_result(self, session: TableSession, result: ScrapedResult) -> int | None:
        """Stable id of the listing row that is this result, if exactly one id fits.

        A row fits when its name equals the result's name, its gender does
        not contradict the result's category, and its total and bodyweight
        (where both sides have one) agree within the Tier-2 tolerances.
        """
        for query in division_queries(self._catalog, result, self._config):
            hits = self.scan(session, query, result.raw_name)
            if not hits:
                continue
            fitting = [hit for hit in hits if self._fits(hit.row, result)]
            ids = {hit.stable_id for hit in fitting if hit.stable_id is not None}
            if len(ids) == 1:
                return ids.pop()
            log.debug(
                "result %r in %s: %d fitting row(s), ids=%s",
                result.raw_name, query.division_name, len(fitting), sorted(ids),
            )
            return None
        return None

    def _fits(self, row: TableRow, result: ScrapedResult) -> bool:
        result_gender = infer_gender(result.age_category)
        if row.gender and result_gender and row.gender != result_gender:
            return False
        if row.total_kg is not None and result.total_kg is not None:
            if abs(row.total_kg - result.total_kg) > self._config.total_tolerance_kg:
                return False
        if row.body_weight_kg is not None and result.body_weight_kg is not None:
            if abs(row.body_weight_kg - result.body_weight_kg) > self._config.bodyweight_tolerance_kg:
                return False
        return True

    # ------------------------------------------------------------------ #
    # Listing scan                                                         #
    # ------------------------------------------------------------------ #

    def scan(self, session: TableSession, query: DivisionQuery, name: str) -> list[ListingHit]:
        """Same-name rows across every page of one division query."""
        url = query.url(self._config.source_base_url)
        key = (url, normalize_name(name) or "")
        if key in self._scan_cache:
            return self._scan_cache[key]

        self.scans += 1
        hits: list[ListingHit] = []
        if not self._open(session, url):
            log.warning(
                "could not open listing %s after %d attempt(s) (%s)",
                query.division_name, self._config.load_max_attempts, url,
            )
            return hits

        try:
            while True:
                page = session.current_page
                rows = session.rows()
                for position, row in enumerate(rows):
                    if normalize_name(row.display_name) != key[1]:
                        continue
                    stable_id = row.stable_id
                    if stable_id is None and row.interactive:
                        stable_id = self._extractor.extract_stable_id(session, position)
                        if stable_id is not None:
                            self.stable_ids_extracted += 1
                    hits.append(ListingHit(row, stable_id, page, position))
                if page >= self._config.max_listing_pages:
                    log.warning("stopping %s at page limit %d", query.division_name, page)
                    break
                if not session.next_page():
                    break
        except SessionDesyncError as exc:
            log.warning("abandoning scan of %s: %s", query.division_name, exc)
            return hits

        log.debug("%s: %d row(s) named %r", query.division_name, len(hits), name)
        self._scan_cache[key] = hits
        return hits

    def _open(self, session: TableSession, url: str) -> bool:
        for attempt in range(1, self._config.load_max_attempts + 1):
            if session.open(url):
                return True
            log.debug("listing load attempt %d/%d failed", attempt, self._config.load_max_attempts)
        return False

    # ------------------------------------------------------------------ #
    # Listing facts                                                        #
    # ------------------------------------------------------------------ #

    def membership_number(self, stable_id: int) -> str | None:
        """Membership number shown on a scanned row for stable_id, if any."""
        for hits in self._scan_cache.values():
            for hit in hits:
                if hit.stable_id == stable_id and hit.row.membership_number:
                    return hit.row.membership_number
        return None

    @property
    def rows_unextractable(self) -> int:
        return self._extractor.unextractable
