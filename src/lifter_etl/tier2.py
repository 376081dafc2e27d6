"""lifter_etl.tier2

Tier-2 verification: did the candidate lift this meet at this bodyweight
and total?

The candidate's profile history is loaded once per stable id and cached for
the life of the verifier.  A load that returns nothing is retried up to
max_attempts times and is not cached, so a later check loads it again.
The meet is located by exact name (case and whitespace folded) and exact
date.  Both tolerances are inclusive and both must hold; deltas are
computed in Decimal so 2.0 / 5.0 boundaries are not lost to float rounding.

Outcomes:
  meet not in history          -> fail ("did not compete")
  history unavailable          -> fail
  expected or actual missing   -> fail
  profile gender differs       -> fail
  found, outside tolerance     -> fail, logged with both deltas
  found, within tolerance      -> pass
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from lifter_etl.normalize import normalize_name
from lifter_etl.records import MeetReference

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeetHistoryEntry:
    meet_name: str
    meet_date: date | None
    category: str | None = None
    body_weight_kg: float | None = None
    snatch_kg: float | None = None
    clean_jerk_kg: float | None = None
    total_kg: float | None = None


@dataclass(frozen=True)
class ProfileHistory:
    stable_id: int
    entries: tuple[MeetHistoryEntry, ...] = ()
    gender: str | None = None
    membership_number: str | None = None


class ProfileSource(Protocol):
    def fetch_history(self, stable_id: int) -> ProfileHistory | None:
        """Full meet history for a member, or None when it cannot be loaded."""
        ...


@dataclass(frozen=True)
class PerformanceCheck:
    passed: bool
    found: bool
    body_weight_delta: Decimal | None = None
    total_delta: Decimal | None = None
    reason: str = ""


def _delta(actual: float | None, expected: float | None) -> Decimal | None:
    if actual is None or expected is None:
        return None
    return abs(Decimal(str(actual)) - Decimal(str(expected)))


class PerformanceVerifier:
    def __init__(
        self,
        source: ProfileSource,
        bodyweight_tolerance_kg: float = 2.0,
        total_tolerance_kg: float = 5.0,
        max_attempts: int = 2,
    ) -> None:
        self._source = source
        self.max_attempts = max_attempts
        self._bw_tolerance = Decimal(str(bodyweight_tolerance_kg))
        self._total_tolerance = Decimal(str(total_tolerance_kg))
        self._histories: dict[int, ProfileHistory] = {}
        self.profiles_fetched = 0

    def history(self, stable_id: int) -> ProfileHistory | None:
        cached = self._histories.get(stable_id)
        if cached is not None:
            return cached
        for attempt in range(1, self.max_attempts + 1):
            self.profiles_fetched += 1
            history = self._source.fetch_history(stable_id)
            if history is not None:
                self._histories[stable_id] = history
                return history
            log.warning(
                "profile history for stable_id=%s unavailable (attempt %d/%d)",
                stable_id, attempt, self.max_attempts,
            )
        return None

    def membership_number(self, stable_id: int) -> str | None:
        """Membership number from an already loaded history; never loads one."""
        history = self._histories.get(stable_id)
        return history.membership_number if history is not None else None

    def check_performance(
        self,
        stable_id: int,
        meet: MeetReference,
        expected_body_weight_kg: float | None,
        expected_total_kg: float | None,
        *,
        expected_gender: str | None = None,
    ) -> PerformanceCheck:
        history = self.history(stable_id)
        if history is None:
            return PerformanceCheck(False, False, reason="profile history unavailable")
        if expected_gender and history.gender and history.gender != expected_gender:
            return PerformanceCheck(
                False, False, reason=f"profile gender {history.gender}, result {expected_gender}"
            )

        meet_norm = normalize_name(meet.name)
        entries = [
            e for e in history.entries
            if e.meet_date == meet.meet_date and normalize_name(e.meet_name) == meet_norm
        ]
        if not entries:
            return PerformanceCheck(False, False, reason="meet not in history")

        best: PerformanceCheck | None = None
        for entry in entries:
            bw_delta = _delta(entry.body_weight_kg, expected_body_weight_kg)
            total_delta = _delta(entry.total_kg, expected_total_kg)
            if bw_delta is None or total_delta is None:
                check = PerformanceCheck(False, True, bw_delta, total_delta,
                                         reason="bodyweight or total missing")
            elif bw_delta <= self._bw_tolerance and total_delta <= self._total_tolerance:
                return PerformanceCheck(True, True, bw_delta, total_delta, reason="within tolerance")
            else:
                log.warning(
                    "tier2 stable_id=%s meet=%r: bodyweight %s vs %s (delta %s), "
                    "total %s vs %s (delta %s) outside tolerance",
                    stable_id, meet.name,
                    entry.body_weight_kg, expected_body_weight_kg, bw_delta,
                    entry.total_kg, expected_total_kg, total_delta,
                )
                check = PerformanceCheck(False, True, bw_delta, total_delta,
                                         reason="outside tolerance")
            best = best or check
        return best

    def verify_performance(
        self,
        stable_id: int,
        meet: MeetReference,
        expected_body_weight_kg: float | None,
        expected_total_kg: float | None,
        *,
        expected_gender: str | None = None,
    ) -> bool:
        check = self.check_performance(
            stable_id, meet, expected_body_weight_kg, expected_total_kg, expected_gender=expected_gender
        )
        log.debug("tier2 stable_id=%s: %s (%s)", stable_id, check.passed, check.reason)
        return check.passed
