"""Integration test fixtures.

Applies the canonical_athlete and athlete_result_link migrations against an
ephemeral PostgreSQL database provided by pytest-postgresql.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_canonical_athlete.sql",
    PROJECT_ROOT / "migrations" / "0002_athlete_result_link.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (connection, dsn) with the schema applied.

    Each test gets a fresh database via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def seed_athletes(db_conn):
    """Insert (display_name, stable_id) pairs; returns their registry_ids in order."""
    conn, _ = db_conn

    def _seed(*athletes: tuple[str, int | None]) -> list[int]:
        ids = []
        for name, stable_id in athletes:
            row = conn.execute(
                """
                INSERT INTO canonical_athlete (display_name, normalized_name, stable_id)
                VALUES (%s, lower(regexp_replace(btrim(%s), '\\s+', ' ', 'g')), %s)
                RETURNING registry_id
                """,
                (name, name, stable_id),
            ).fetchone()
            ids.append(row[0])
        conn.commit()
        return ids

    return _seed
