"""lifter_etl.gateway

RegistryGateway: the single read/write path to canonical athlete records.

Guarantees:
  - lookup_or_create() with a draft creates at most one record per call, and
    never a second record for a stable_id that already has one: the
    stable_id is re-checked immediately before the insert, and the insert
    itself is an upsert keyed by stable_id for the remaining race window.
  - backfill() only fills NULL stable_id / membership_number columns and
    refuses a stable_id that another record already holds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from lifter_etl.records import AthleteDraft, CanonicalAthlete
from lifter_etl.registry import AthleteRegistry, StableIdConflict
from lifter_etl.shared import RegistrySchemaError

log = logging.getLogger(__name__)


@dataclass
class GatewayCounters:
    created: int = 0
    reused_on_collision: int = 0
    stable_ids_backfilled: int = 0
    backfills_refused: int = 0


class RegistryGateway:
    def __init__(self, registry: AthleteRegistry) -> None:
        self._registry = registry
        self.counters = GatewayCounters()

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    def find_by_name(self, name: str) -> list[CanonicalAthlete]:
        return self._registry.find_by_name(name)

    def find_by_normalized_name(self, name_norm: str) -> list[CanonicalAthlete]:
        return self._registry.find_by_normalized_name(name_norm)

    def find_by_name_containing(self, name_norm: str) -> list[CanonicalAthlete]:
        return self._registry.find_by_name_containing(name_norm)

    def find_by_stable_id(self, stable_id: int) -> CanonicalAthlete | None:
        return self._registry.find_by_stable_id(stable_id)

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    def lookup_or_create(self, target: int | AthleteDraft) -> CanonicalAthlete:
        """Return the record for a registry_id, or the record for a new-athlete draft.

        Drafts carrying a stable_id resolve to the existing holder when one
        exists (idempotent); otherwise exactly one record is inserted.
        """
        if not isinstance(target, AthleteDraft):
            athlete = self._registry.get(target)
            if athlete is None:
                raise RegistrySchemaError(f"no canonical athlete with registry_id={target}")
            return athlete

        if target.stable_id is not None:
            existing = self._registry.find_by_stable_id(target.stable_id)
            if existing is not None:
                self.counters.reused_on_collision += 1
                log.info(
                    "stable_id %s already registered as registry_id=%s; not creating %r",
                    target.stable_id, existing.registry_id, target.display_name,
                )
                return existing

        result = self._registry.upsert(target)
        if result.inserted:
            self.counters.created += 1
            log.info(
                "created canonical athlete registry_id=%s name=%r stable_id=%s",
                result.athlete.registry_id, result.athlete.display_name, result.athlete.stable_id,
            )
        else:
            self.counters.reused_on_collision += 1
            log.info(
                "concurrent insert for stable_id %s; reusing registry_id=%s",
                target.stable_id, result.athlete.registry_id,
            )
        return result.athlete

    def backfill(
        self,
        athlete: CanonicalAthlete,
        stable_id: int | None = None,
        membership_number: str | None = None,
    ) -> CanonicalAthlete:
        """Fill missing identifiers on an existing record.

        Returns the updated record, or the record unchanged when there is
        nothing to fill or the stable_id belongs to someone else.
        """
        fill_stable = stable_id if athlete.stable_id is None else None
        fill_membership = membership_number if athlete.membership_number is None else None
        if athlete.stable_id is not None and stable_id is not None and stable_id != athlete.stable_id:
            log.warning(
                "refusing to overwrite stable_id %s with %s on registry_id=%s",
                athlete.stable_id, stable_id, athlete.registry_id,
            )
            self.counters.backfills_refused += 1
        if fill_stable is None and fill_membership is None:
            return athlete

        if fill_stable is not None:
            holder = self._registry.find_by_stable_id(fill_stable)
            if holder is not None and holder.registry_id != athlete.registry_id:
                log.warning(
                    "stable_id %s already held by registry_id=%s; not back-filling registry_id=%s",
                    fill_stable, holder.registry_id, athlete.registry_id,
                )
                self.counters.backfills_refused += 1
                fill_stable = None
                if fill_membership is None:
                    return athlete

        draft = replace(
            athlete,
            stable_id=fill_stable if fill_stable is not None else athlete.stable_id,
            membership_number=fill_membership or athlete.membership_number,
        )
        try:
            updated = self._registry.upsert(draft).athlete
        except StableIdConflict as exc:
            log.warning("back-fill lost a race on registry_id=%s: %s", athlete.registry_id, exc)
            self.counters.backfills_refused += 1
            return athlete
        if fill_stable is not None and updated.stable_id == fill_stable:
            self.counters.stable_ids_backfilled += 1
            log.info("back-filled stable_id %s on registry_id=%s", fill_stable, athlete.registry_id)
        return updated
