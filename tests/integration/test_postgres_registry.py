"""Integration tests: PostgresAthleteRegistry against a real canonical_athlete table."""

from __future__ import annotations

import psycopg
import pytest

from lifter_etl.gateway import RegistryGateway
from lifter_etl.records import AthleteDraft, CanonicalAthlete
from lifter_etl.registry import PostgresAthleteRegistry, StableIdConflict
from lifter_etl.shared import RegistrySchemaError


@pytest.fixture
def registry(db_conn):
    conn, _ = db_conn
    return PostgresAthleteRegistry(conn)


class TestReads:
    def test_find_by_name_exact_in_registry_order(self, registry, seed_athletes):
        ids = seed_athletes(("Jane Doe", 111), ("Jane Doe", 222), ("jane doe", None))
        assert [a.registry_id for a in registry.find_by_name("Jane Doe")] == ids[:2]

    def test_find_by_normalized_name(self, registry, seed_athletes):
        ids = seed_athletes(("Jane Doe", 111), ("JANE  DOE", None), ("John Roe", None))
        assert [a.registry_id for a in registry.find_by_normalized_name("jane doe")] == ids[:2]

    def test_find_by_name_containing(self, registry, seed_athletes):
        ids = seed_athletes(("Jane Doe", None), ("Mary Jane Doe", None), ("John Roe", None))
        assert [a.registry_id for a in registry.find_by_name_containing("jane doe")] == ids[:2]

    def test_find_by_stable_id(self, registry, seed_athletes):
        [rid] = seed_athletes(("Jane Doe", 111))
        athlete = registry.find_by_stable_id(111)
        assert athlete == CanonicalAthlete(rid, "Jane Doe", stable_id=111)
        assert registry.find_by_stable_id(999) is None

    def test_get_missing(self, registry):
        assert registry.get(12345) is None


class TestUpsert:
    def test_draft_without_stable_id_inserts(self, registry):
        a = registry.upsert(AthleteDraft("Jane Doe"))
        b = registry.upsert(AthleteDraft("Jane Doe"))
        assert a.inserted and b.inserted
        assert a.athlete.registry_id != b.athlete.registry_id

    def test_draft_with_existing_stable_id_returns_holder(self, registry, seed_athletes):
        [rid] = seed_athletes(("Jane Doe", 111))
        result = registry.upsert(AthleteDraft("Someone Else", stable_id=111, membership_number="100234"))
        assert result.inserted is False
        assert result.athlete.registry_id == rid
        assert result.athlete.display_name == "Jane Doe"
        assert result.athlete.membership_number == "100234"

    def test_update_fills_null_only(self, registry, seed_athletes):
        [rid] = seed_athletes(("Jane Doe", 111))
        updated = registry.upsert(CanonicalAthlete(rid, "Jane Doe", stable_id=999)).athlete
        assert updated.stable_id == 111

    def test_update_conflict_leaves_transaction_usable(self, db_conn, registry, seed_athletes):
        conn, _ = db_conn
        ids = seed_athletes(("Jane Doe", 111), ("Jane Doe", None))
        with pytest.raises(StableIdConflict):
            registry.upsert(CanonicalAthlete(ids[1], "Jane Doe", stable_id=111))
        assert registry.get(ids[1]).stable_id is None
        conn.commit()

    def test_update_unknown_registry_id(self, registry):
        with pytest.raises(RegistrySchemaError):
            registry.upsert(CanonicalAthlete(12345, "Ghost"))

    def test_blank_name_rejected_by_schema(self, registry):
        with pytest.raises(psycopg.IntegrityError):
            registry.upsert(AthleteDraft("   "))


class TestGatewayOnPostgres:
    def test_create_is_idempotent_per_stable_id(self, db_conn, registry):
        conn, _ = db_conn
        gateway = RegistryGateway(registry)
        first = gateway.lookup_or_create(AthleteDraft("Jane Doe", stable_id=555))
        second = gateway.lookup_or_create(AthleteDraft("Jane Doe", stable_id=555))
        assert first.registry_id == second.registry_id
        count = conn.execute("SELECT count(*) FROM canonical_athlete WHERE stable_id = 555").fetchone()[0]
        assert count == 1

    def test_concurrent_upsert_from_two_connections(self, db_conn):
        conn, dsn = db_conn
        other = psycopg.connect(dsn, autocommit=True)
        try:
            conn.autocommit = True
            a = PostgresAthleteRegistry(conn).upsert(AthleteDraft("Jane Doe", stable_id=777))
            b = PostgresAthleteRegistry(other).upsert(AthleteDraft("Jane Doe", stable_id=777))
        finally:
            other.close()
        assert a.inserted is True
        assert b.inserted is False
        assert a.athlete.registry_id == b.athlete.registry_id

    def test_backfill_writes_stable_id(self, db_conn, registry, seed_athletes):
        [rid] = seed_athletes(("Jane Doe", None))
        gateway = RegistryGateway(registry)
        gateway.backfill(registry.get(rid), stable_id=321, membership_number="100234")
        athlete = registry.get(rid)
        assert athlete.stable_id == 321
        assert athlete.membership_number == "100234"
