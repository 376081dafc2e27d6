"""lifter_etl.engine

ResolutionEngine: decides which canonical athlete a scraped result belongs to.

States (recorded in the decision trace):

    start -> candidates-fetched -> {no-candidates, one-candidate, many-candidates}
          -> {id-matched, tier1-checked, tier2-checked} -> decided

Strategy precedence:
  1. stable-id-exact          the result's stable id (hint, or identified
                              from its own listing row) is already registered
  2. created-new              no name-matching candidate
  3. single-unambiguous-name  exactly one name-matching candidate
  4. tier1-verified           exactly one stable-id candidate passes Tier-1
  5. tier2-verified           exactly one Tier-2 pass among the Tier-1 passes
                              (or among all stable-id candidates if none passed)
  6. created-new              two or more candidates remain plausible; the
                              ambiguity is written to the trace
  7. single-unambiguous-name  nothing verified, the result's stable id is
                              known, name_only_fallback is on and exactly
                              one candidate has no stable id (the id is
                              back-filled onto it)
  8. created-new              otherwise

Hard errors (RegistryUnavailable, RegistrySchemaError, SourceUnavailable)
propagate; every other outcome ends in a ResolutionDecision.
"""

from __future__ import annotations

import logging

from lifter_etl.candidate_locator import CandidateLocator
from lifter_etl.config import ResolverConfig
from lifter_etl.gateway import RegistryGateway
from lifter_etl.normalize import infer_gender, names_match, normalize_space
from lifter_etl.records import (
    AthleteDraft,
    Candidate,
    CanonicalAthlete,
    ResolutionDecision,
    ScrapedResult,
    Strategy,
    TraceStep,
    VerificationOutcome,
)
from lifter_etl.shared import (
    RegistrySchemaError,
    RegistryUnavailable,
    RunCounters,
    SourceUnavailable,
)
from lifter_etl.table_session import TableSession
from lifter_etl.tier1 import ContextVerifier
from lifter_etl.tier2 import PerformanceVerifier

log = logging.getLogger(__name__)

_STRATEGY_COUNTERS = {
    Strategy.STABLE_ID_EXACT: "stable_id_exact",
    Strategy.TIER1_VERIFIED: "tier1_verified",
    Strategy.TIER2_VERIFIED: "tier2_verified",
    Strategy.SINGLE_UNAMBIGUOUS_NAME: "single_unambiguous_name",
    Strategy.CREATED_NEW: "created_new",
}


class _Trace:
    def __init__(self) -> None:
        self.steps: list[TraceStep] = []

    def add(self, state: str, detail: str) -> None:
        log.debug("[%s] %s", state, detail)
        self.steps.append(TraceStep(state, detail))


class ResolutionEngine:
    def __init__(
        self,
        gateway: RegistryGateway,
        locator: CandidateLocator,
        config: ResolverConfig | None = None,
        context_verifier: ContextVerifier | None = None,
        performance_verifier: PerformanceVerifier | None = None,
        counters: RunCounters | None = None,
    ) -> None:
        self._gateway = gateway
        self._locator = locator
        self._config = config or ResolverConfig()
        self._context = context_verifier
        self._performance = performance_verifier
        self.counters = counters or RunCounters()

    def resolve(self, result: ScrapedResult, session: TableSession | None = None) -> ResolutionDecision:
        """Resolve one scraped result. `session` may be None (no browser)."""
        try:
            return self._resolve(result, session)
        except (RegistryUnavailable, RegistrySchemaError, SourceUnavailable) as exc:
            log.error("resolution aborted for %r at %s: %s", result.raw_name, result.meet.name, exc)
            raise

    # ------------------------------------------------------------------ #
    # State machine                                                        #
    # ------------------------------------------------------------------ #

    def _resolve(self, result: ScrapedResult, session: TableSession | None) -> ResolutionDecision:
        trace = _Trace()
        trace.add("start", f"name={result.raw_name!r} meet={result.meet.name!r} date={result.meet.meet_date}")

        candidates = self._locator.find_candidates(result.raw_name)
        if not candidates and self._config.containment_pass:
            candidates = self._locator.find_candidates_containing(result.raw_name)
            trace.add("containment-pass", f"{len(candidates)} candidate(s) by name containment")
        considered = [c.registry_id for c in candidates]
        trace.add("candidates-fetched", f"{len(candidates)} candidate(s): {considered}")

        known_id = result.stable_id_hint
        if known_id is not None:
            decision = self._try_id_match(result, known_id, "hint", considered, trace)
            if decision is not None:
                return decision

        if not candidates:
            trace.add("no-candidates", "no registry record with this name")
            return self._create_new(result, known_id, considered, trace)

        if len(candidates) == 1:
            return self._one_candidate(result, candidates[0], known_id, considered, trace)

        trace.add("many-candidates", f"{len(candidates)} candidates share this name")
        if known_id is None and session is not None and self._context is not None:
            known_id = self._context.identify_result(session, result)
            if known_id is not None:
                trace.add("stable-id-extracted", f"result row identified as stable id {known_id}")
                decision = self._try_id_match(result, known_id, "listing", considered, trace)
                if decision is not None:
                    return decision
            else:
                trace.add("stable-id-extracted", "result row not identifiable from listing")
        return self._many_candidates(result, candidates, known_id, session, considered, trace)

    def _try_id_match(
        self,
        result: ScrapedResult,
        stable_id: int,
        origin: str,
        considered: list[int],
        trace: _Trace,
    ) -> ResolutionDecision | None:
        holder = self._gateway.find_by_stable_id(stable_id)
        if holder is None:
            trace.add("id-matched", f"stable id {stable_id} ({origin}) not registered")
            return None
        if not names_match(holder.display_name, result.raw_name):
            trace.add(
                "id-matched",
                f"stable id {stable_id} held by {holder.display_name!r}; name differs from result",
            )
        else:
            trace.add("id-matched", f"stable id {stable_id} ({origin}) held by registry_id={holder.registry_id}")
        if holder.registry_id not in considered:
            considered.append(holder.registry_id)
        holder = self._attach(holder, None, trace)
        return self._decide(holder, Strategy.STABLE_ID_EXACT, considered, trace)

    def _one_candidate(
        self,
        result: ScrapedResult,
        candidate: Candidate,
        known_id: int | None,
        considered: list[int],
        trace: _Trace,
    ) -> ResolutionDecision:
        if known_id is not None and candidate.stable_id is not None and candidate.stable_id != known_id:
            trace.add(
                "one-candidate",
                f"registry_id={candidate.registry_id} holds stable id {candidate.stable_id}, "
                f"result is {known_id}",
            )
            return self._create_new(result, known_id, considered, trace)
        trace.add("one-candidate", f"registry_id={candidate.registry_id} stable_id={candidate.stable_id}")
        athlete = self._attach(candidate.athlete, known_id, trace)
        return self._decide(athlete, Strategy.SINGLE_UNAMBIGUOUS_NAME, considered, trace)

    def _many_candidates(
        self,
        result: ScrapedResult,
        candidates: list[Candidate],
        known_id: int | None,
        session: TableSession | None,
        considered: list[int],
        trace: _Trace,
    ) -> ResolutionDecision:
        with_id = [c for c in candidates if c.stable_id is not None]
        without_id = [c for c in candidates if c.stable_id is None]

        if known_id is not None:
            excluded = [c for c in with_id if c.stable_id != known_id]
            if excluded:
                trace.add(
                    "id-excluded",
                    f"result is stable id {known_id}; not considering "
                    f"{[(c.registry_id, c.stable_id) for c in excluded]}",
                )
            with_id = [c for c in with_id if c.stable_id == known_id]

        # ---- Tier-1 ----
        tier1_passed: list[Candidate] = []
        if session is not None and self._context is not None:
            for candidate in with_id:
                self.counters.tier1_checks += 1
                passed = self._context.verify_context(
                    session, candidate.stable_id, result, candidate.display_name
                )
                candidate.verification_outcome = (
                    VerificationOutcome.TIER1_PASS if passed else VerificationOutcome.TIER1_FAIL
                )
                if passed:
                    tier1_passed.append(candidate)
                trace.add("tier1-checked", f"registry_id={candidate.registry_id}: {'pass' if passed else 'fail'}")
        else:
            trace.add("tier1-checked", "skipped: no listing session")

        if len(tier1_passed) == 1:
            athlete = self._attach(tier1_passed[0].athlete, known_id, trace)
            return self._decide(athlete, Strategy.TIER1_VERIFIED, considered, trace)

        # ---- Tier-2 ----
        plausible = tier1_passed
        pool = tier1_passed or with_id
        if self._performance is not None and pool:
            plausible = []
            gender = infer_gender(result.age_category)
            for candidate in pool:
                self.counters.tier2_checks += 1
                passed = self._performance.verify_performance(
                    candidate.stable_id, result.meet, result.body_weight_kg, result.total_kg,
                    expected_gender=gender,
                )
                candidate.verification_outcome = (
                    VerificationOutcome.TIER2_PASS if passed else VerificationOutcome.TIER2_FAIL
                )
                if passed:
                    plausible.append(candidate)
                trace.add("tier2-checked", f"registry_id={candidate.registry_id}: {'pass' if passed else 'fail'}")
            if len(plausible) == 1:
                athlete = self._attach(plausible[0].athlete, known_id, trace)
                return self._decide(athlete, Strategy.TIER2_VERIFIED, considered, trace)
        elif pool:
            trace.add("tier2-checked", "skipped: no profile source")

        # ---- Unresolved ----
        if len(plausible) >= 2:
            ids = [c.registry_id for c in plausible]
            log.warning(
                "ambiguous result %r at %s: %d plausible candidates %s; creating new record",
                result.raw_name, result.meet.name, len(plausible), ids,
            )
            trace.add("ambiguous", f"{len(plausible)} candidates remain plausible {ids}; not guessing")
            self.counters.created_new_ambiguous += 1
            return self._create_new(result, known_id, considered, trace)

        if self._config.name_only_fallback and known_id is not None and len(without_id) == 1:
            candidate = without_id[0]
            trace.add(
                "name-only-fallback",
                f"no stable-id candidate verified; registry_id={candidate.registry_id} is the only one "
                f"without an id and takes stable id {known_id}",
            )
            athlete = self._attach(candidate.athlete, known_id, trace)
            return self._decide(athlete, Strategy.SINGLE_UNAMBIGUOUS_NAME, considered, trace)

        trace.add("unverified", f"no candidate verified among {len(candidates)}")
        return self._create_new(result, known_id, considered, trace)

    # ------------------------------------------------------------------ #
    # Outcomes                                                             #
    # ------------------------------------------------------------------ #

    def _attach(self, athlete: CanonicalAthlete, known_id: int | None, trace: _Trace) -> CanonicalAthlete:
        """Back-fill the identifiers learned while resolving onto the chosen record.

        The stable id only when the record has none; the membership number
        only when the record has none and a listing row or loaded profile
        for that stable id showed one.
        """
        stable_id = known_id if athlete.stable_id is None else None
        membership = None
        if athlete.membership_number is None:
            membership = self._membership_number(
                athlete.stable_id if athlete.stable_id is not None else known_id
            )
        if stable_id is None and membership is None:
            return athlete

        updated = self._gateway.backfill(athlete, stable_id=stable_id, membership_number=membership)
        if stable_id is not None:
            if updated.stable_id == stable_id:
                self.counters.stable_ids_backfilled += 1
                trace.add("backfill", f"stable id {stable_id} recorded on registry_id={athlete.registry_id}")
            else:
                trace.add("backfill", f"stable id {stable_id} not recorded on registry_id={athlete.registry_id}")
        if membership is not None and updated.membership_number == membership:
            trace.add("backfill", f"membership number {membership} recorded on registry_id={athlete.registry_id}")
        return updated

    def _membership_number(self, stable_id: int | None) -> str | None:
        if stable_id is None:
            return None
        for source in (self._context, self._performance):
            if source is not None:
                number = source.membership_number(stable_id)
                if number:
                    return number
        return None

    def _create_new(
        self,
        result: ScrapedResult,
        stable_id: int | None,
        considered: list[int],
        trace: _Trace,
    ) -> ResolutionDecision:
        draft = AthleteDraft(display_name=normalize_space(result.raw_name) or result.raw_name, stable_id=stable_id)
        athlete = self._gateway.lookup_or_create(draft)
        trace.add("create", f"registry_id={athlete.registry_id} stable_id={athlete.stable_id}")
        return self._decide(athlete, Strategy.CREATED_NEW, considered, trace)

    def _decide(
        self,
        athlete: CanonicalAthlete,
        strategy: Strategy,
        considered: list[int],
        trace: _Trace,
    ) -> ResolutionDecision:
        trace.add("decided", f"registry_id={athlete.registry_id} strategy={strategy.value}")
        counter = _STRATEGY_COUNTERS[strategy]
        setattr(self.counters, counter, getattr(self.counters, counter) + 1)
        log.info("decided registry_id=%s via %s", athlete.registry_id, strategy.value)
        return ResolutionDecision(
            registry_id=athlete.registry_id,
            strategy=strategy,
            candidates_considered=tuple(considered),
            trace=tuple(trace.steps),
        )
