"""lifter_etl.registry

Storage backends for canonical athlete records.

Two implementations share the AthleteRegistry protocol:
  - PostgresAthleteRegistry: psycopg against the canonical_athlete table
    (see migrations/0001_canonical_athlete.sql).
  - InMemoryAthleteRegistry: process-local, lock-protected; used for
    rehearsal runs and unit tests.

Write semantics (both backends):
  - record with registry_id        → update that row; stable_id and
                                     membership_number are only filled when
                                     currently NULL
  - draft with stable_id           → single-row upsert keyed by stable_id;
                                     an existing holder is returned unchanged
  - draft without stable_id        → insert-only

Only lifter_etl.gateway calls upsert().
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, replace
from typing import Any, Protocol, Sequence

import psycopg
from psycopg.errors import UniqueViolation

from lifter_etl.normalize import normalize_name
from lifter_etl.records import AthleteDraft, CanonicalAthlete
from lifter_etl.shared import RegistrySchemaError, RegistryUnavailable


@dataclass(frozen=True)
class UpsertResult:
    athlete: CanonicalAthlete
    inserted: bool


class StableIdConflict(Exception):
    """A stable_id back-fill hit a row already holding that stable_id."""


class AthleteRegistry(Protocol):
    def find_by_name(self, name: str) -> list[CanonicalAthlete]:
        """Exact display_name match, registry order."""
        ...

    def find_by_normalized_name(self, name_norm: str) -> list[CanonicalAthlete]:
        ...

    def find_by_name_containing(self, name_norm: str) -> list[CanonicalAthlete]:
        """Records whose normalized name contains, or is contained by, name_norm."""
        ...

    def find_by_stable_id(self, stable_id: int) -> CanonicalAthlete | None:
        ...

    def get(self, registry_id: int) -> CanonicalAthlete | None:
        ...

    def upsert(self, record: CanonicalAthlete | AthleteDraft) -> UpsertResult:
        ...


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_COLUMNS = "registry_id, display_name, stable_id, membership_number"


def _row_to_athlete(row: Sequence[Any] | None) -> CanonicalAthlete:
    if row is None or len(row) < 4:
        raise RegistrySchemaError(f"malformed canonical_athlete row: {row!r}")
    registry_id, display_name, stable_id, membership_number = row[:4]
    if registry_id is None or not display_name:
        raise RegistrySchemaError(f"canonical_athlete row missing id or name: {row!r}")
    try:
        return CanonicalAthlete(
            registry_id=int(registry_id),
            display_name=str(display_name),
            stable_id=int(stable_id) if stable_id is not None else None,
            membership_number=str(membership_number) if membership_number is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise RegistrySchemaError(f"canonical_athlete row has bad types: {row!r}") from exc


class PostgresAthleteRegistry:
    """canonical_athlete access through a caller-owned psycopg connection.

    The caller manages the enclosing transaction; the stable_id back-fill
    runs inside a nested transaction (SAVEPOINT) so a unique violation does
    not poison the caller's transaction.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[CanonicalAthlete]:
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise RegistryUnavailable(str(exc)) from exc
        return [_row_to_athlete(r) for r in rows]

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> CanonicalAthlete | None:
        try:
            row = self._conn.execute(sql, params).fetchone()
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise RegistryUnavailable(str(exc)) from exc
        return _row_to_athlete(row) if row is not None else None

    def find_by_name(self, name: str) -> list[CanonicalAthlete]:
        return self._fetchall(
            f"SELECT {_COLUMNS} FROM canonical_athlete WHERE display_name = %s ORDER BY registry_id",
            (name,),
        )

    def find_by_normalized_name(self, name_norm: str) -> list[CanonicalAthlete]:
        return self._fetchall(
            f"SELECT {_COLUMNS} FROM canonical_athlete WHERE normalized_name = %s ORDER BY registry_id",
            (name_norm,),
        )

    def find_by_name_containing(self, name_norm: str) -> list[CanonicalAthlete]:
        return self._fetchall(
            f"""
            SELECT {_COLUMNS} FROM canonical_athlete
            WHERE strpos(normalized_name, %s) > 0
               OR strpos(%s, normalized_name) > 0
            ORDER BY registry_id
            """,
            (name_norm, name_norm),
        )

    def find_by_stable_id(self, stable_id: int) -> CanonicalAthlete | None:
        return self._fetchone(
            f"SELECT {_COLUMNS} FROM canonical_athlete WHERE stable_id = %s",
            (stable_id,),
        )

    def get(self, registry_id: int) -> CanonicalAthlete | None:
        return self._fetchone(
            f"SELECT {_COLUMNS} FROM canonical_athlete WHERE registry_id = %s",
            (registry_id,),
        )

    def upsert(self, record: CanonicalAthlete | AthleteDraft) -> UpsertResult:
        try:
            if isinstance(record, CanonicalAthlete):
                return UpsertResult(self._update(record), inserted=False)
            if record.stable_id is not None:
                row = self._conn.execute(
                    f"""
                    INSERT INTO canonical_athlete
                      (display_name, normalized_name, stable_id, membership_number)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (stable_id) DO UPDATE SET
                      membership_number = COALESCE(canonical_athlete.membership_number,
                                                   EXCLUDED.membership_number)
                    RETURNING {_COLUMNS}, (xmax = 0) AS was_inserted
                    """,
                    (record.display_name, normalize_name(record.display_name),
                     record.stable_id, record.membership_number),
                ).fetchone()
            else:
                row = self._conn.execute(
                    f"""
                    INSERT INTO canonical_athlete
                      (display_name, normalized_name, membership_number)
                    VALUES (%s, %s, %s)
                    RETURNING {_COLUMNS}, TRUE AS was_inserted
                    """,
                    (record.display_name, normalize_name(record.display_name),
                     record.membership_number),
                ).fetchone()
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise RegistryUnavailable(str(exc)) from exc
        if row is None:
            raise RegistrySchemaError("INSERT ... RETURNING produced no row")
        return UpsertResult(_row_to_athlete(row), inserted=bool(row[4]))

    def _update(self, record: CanonicalAthlete) -> CanonicalAthlete:
        try:
            with self._conn.transaction():
                row = self._conn.execute(
                    f"""
                    UPDATE canonical_athlete SET
                      display_name = %s,
                      normalized_name = %s,
                      stable_id = COALESCE(stable_id, %s),
                      membership_number = COALESCE(membership_number, %s),
                      updated_at = now()
                    WHERE registry_id = %s
                    RETURNING {_COLUMNS}
                    """,
                    (record.display_name, normalize_name(record.display_name),
                     record.stable_id, record.membership_number, record.registry_id),
                ).fetchone()
        except UniqueViolation as exc:
            raise StableIdConflict(
                f"stable_id {record.stable_id} already held by another athlete"
            ) from exc
        if row is None:
            raise RegistrySchemaError(f"no canonical_athlete with registry_id={record.registry_id}")
        return _row_to_athlete(row)


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryAthleteRegistry:
    """Thread-safe dict-backed registry with the same write semantics."""

    def __init__(self, athletes: Sequence[CanonicalAthlete] = ()) -> None:
        self._lock = threading.Lock()
        self._rows: dict[int, CanonicalAthlete] = {}
        self._by_stable_id: dict[int, int] = {}
        start = max((a.registry_id for a in athletes), default=0) + 1
        self._ids = itertools.count(start)
        for athlete in athletes:
            self._rows[athlete.registry_id] = athlete
            if athlete.stable_id is not None:
                if athlete.stable_id in self._by_stable_id:
                    raise ValueError(f"duplicate stable_id {athlete.stable_id} in seed data")
                self._by_stable_id[athlete.stable_id] = athlete.registry_id

    def _select(self, predicate) -> list[CanonicalAthlete]:
        with self._lock:
            return [a for _, a in sorted(self._rows.items()) if predicate(a)]

    def find_by_name(self, name: str) -> list[CanonicalAthlete]:
        return self._select(lambda a: a.display_name == name)

    def find_by_normalized_name(self, name_norm: str) -> list[CanonicalAthlete]:
        return self._select(lambda a: normalize_name(a.display_name) == name_norm)

    def find_by_name_containing(self, name_norm: str) -> list[CanonicalAthlete]:
        def _contains(a: CanonicalAthlete) -> bool:
            norm = normalize_name(a.display_name) or ""
            return bool(norm) and (name_norm in norm or norm in name_norm)
        return self._select(_contains)

    def find_by_stable_id(self, stable_id: int) -> CanonicalAthlete | None:
        with self._lock:
            rid = self._by_stable_id.get(stable_id)
            return self._rows.get(rid) if rid is not None else None

    def get(self, registry_id: int) -> CanonicalAthlete | None:
        with self._lock:
            return self._rows.get(registry_id)

    def upsert(self, record: CanonicalAthlete | AthleteDraft) -> UpsertResult:
        with self._lock:
            if isinstance(record, CanonicalAthlete):
                return UpsertResult(self._update_locked(record), inserted=False)
            if record.stable_id is not None and record.stable_id in self._by_stable_id:
                existing = self._rows[self._by_stable_id[record.stable_id]]
                if existing.membership_number is None and record.membership_number:
                    existing = replace(existing, membership_number=record.membership_number)
                    self._rows[existing.registry_id] = existing
                return UpsertResult(existing, inserted=False)
            athlete = CanonicalAthlete(
                registry_id=next(self._ids),
                display_name=record.display_name,
                stable_id=record.stable_id,
                membership_number=record.membership_number,
            )
            self._rows[athlete.registry_id] = athlete
            if athlete.stable_id is not None:
                self._by_stable_id[athlete.stable_id] = athlete.registry_id
            return UpsertResult(athlete, inserted=True)

    def _update_locked(self, record: CanonicalAthlete) -> CanonicalAthlete:
        current = self._rows.get(record.registry_id)
        if current is None:
            raise RegistrySchemaError(f"no canonical_athlete with registry_id={record.registry_id}")
        stable_id = current.stable_id
        if stable_id is None and record.stable_id is not None:
            holder = self._by_stable_id.get(record.stable_id)
            if holder is not None and holder != record.registry_id:
                raise StableIdConflict(
                    f"stable_id {record.stable_id} already held by registry_id={holder}"
                )
            stable_id = record.stable_id
            self._by_stable_id[stable_id] = record.registry_id
        updated = CanonicalAthlete(
            registry_id=current.registry_id,
            display_name=record.display_name,
            stable_id=stable_id,
            membership_number=current.membership_number or record.membership_number,
        )
        self._rows[updated.registry_id] = updated
        return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
