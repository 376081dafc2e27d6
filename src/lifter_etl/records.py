"""lifter_etl.records

Value types shared by the resolution pipeline:

  CanonicalAthlete    one real person in the registry (owned by the gateway)
  AthleteDraft        the insert payload for a not-yet-registered athlete
  MeetReference       competition name + date
  ScrapedResult       one scraped result row, read-only during resolution
  Candidate           a registry record under consideration for one result
  ResolutionDecision  the engine's output contract
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from typing import Any

from lifter_etl.normalize import build_result_key


class Strategy(str, enum.Enum):
    STABLE_ID_EXACT = "stable-id-exact"
    TIER1_VERIFIED = "tier1-verified"
    TIER2_VERIFIED = "tier2-verified"
    CREATED_NEW = "created-new"
    SINGLE_UNAMBIGUOUS_NAME = "single-unambiguous-name"


class VerificationOutcome(str, enum.Enum):
    UNVERIFIED = "unverified"
    TIER1_PASS = "tier1-pass"
    TIER1_FAIL = "tier1-fail"
    TIER2_PASS = "tier2-pass"
    TIER2_FAIL = "tier2-fail"


# ---------------------------------------------------------------------------
# Registry records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CanonicalAthlete:
    registry_id: int
    display_name: str
    stable_id: int | None = None
    membership_number: str | None = None


@dataclass(frozen=True)
class AthleteDraft:
    display_name: str
    stable_id: int | None = None
    membership_number: str | None = None


# ---------------------------------------------------------------------------
# Scraped input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MeetReference:
    name: str
    meet_date: date


@dataclass(frozen=True)
class ScrapedResult:
    raw_name: str
    meet: MeetReference
    age_category: str | None = None
    weight_class_declared: str | None = None
    body_weight_kg: float | None = None
    total_kg: float | None = None
    stable_id_hint: int | None = None

    @property
    def result_key(self) -> str:
        return build_result_key(
            self.meet.name,
            self.meet.meet_date,
            self.raw_name,
            self.weight_class_declared,
            self.total_kg,
        )


# ---------------------------------------------------------------------------
# Resolution working state + output
# ---------------------------------------------------------------------------

@dataclass
class Candidate:
    """A CanonicalAthlete considered while resolving one ScrapedResult."""

    athlete: CanonicalAthlete
    verification_outcome: VerificationOutcome = VerificationOutcome.UNVERIFIED

    @property
    def registry_id(self) -> int:
        return self.athlete.registry_id

    @property
    def display_name(self) -> str:
        return self.athlete.display_name

    @property
    def stable_id(self) -> int | None:
        return self.athlete.stable_id


@dataclass(frozen=True)
class TraceStep:
    state: str
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {"state": self.state, "detail": self.detail}


@dataclass(frozen=True)
class ResolutionDecision:
    registry_id: int
    strategy: Strategy
    candidates_considered: tuple[int, ...]
    trace: tuple[TraceStep, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "registry_id": self.registry_id,
            "strategy": self.strategy.value,
            "candidates_considered": list(self.candidates_considered),
            "trace": [step.to_dict() for step in self.trace],
        }
