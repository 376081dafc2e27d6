"""lifter_etl.candidate_locator

Name-based candidate lookup against the registry (read-only).

find_candidates() is the primary rule: exact display_name equality, then a
case/whitespace-normalized pass when the exact pass finds nothing.
find_candidates_containing() is a separate, explicit substring pass; the
engine only calls it when the config enables it.
"""

from __future__ import annotations

import logging

from lifter_etl.gateway import RegistryGateway
from lifter_etl.normalize import normalize_name, trim
from lifter_etl.records import Candidate

log = logging.getLogger(__name__)


class CandidateLocator:
    def __init__(self, gateway: RegistryGateway) -> None:
        self._gateway = gateway

    def find_candidates(self, name: str) -> list[Candidate]:
        """Return candidates in registry order. RegistryUnavailable propagates."""
        exact_name = trim(name)
        if exact_name is None:
            return []
        athletes = self._gateway.find_by_name(exact_name)
        if not athletes:
            name_norm = normalize_name(exact_name)
            athletes = self._gateway.find_by_normalized_name(name_norm) if name_norm else []
            if athletes:
                log.debug("normalized pass matched %d record(s) for %r", len(athletes), name)
        return [Candidate(athlete=a) for a in athletes]

    def find_candidates_containing(self, name: str) -> list[Candidate]:
        """Containment pass: registry names inside the target name, or vice versa."""
        name_norm = normalize_name(name)
        if name_norm is None:
            return []
        athletes = self._gateway.find_by_name_containing(name_norm)
        log.debug("containment pass matched %d record(s) for %r", len(athletes), name)
        return [Candidate(athlete=a) for a in athletes]
