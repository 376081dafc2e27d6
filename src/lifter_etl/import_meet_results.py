"""lifter_etl.import_meet_results

Batch pipeline: scraped meet results CSV -> ResolutionDecision per row ->
athlete_result_link.

CSV columns (headers trimmed and lowercased):
  lifter_name, meet_name, meet_date       required
  age_category, weight_class,
  body_weight_kg, total_kg                optional
  member_id                               optional stable id (digits or member URL)

Phases:
  1. Pre-scan: parse every row; malformed rows go to the reject CSV.
  2. Resolve: each row is resolved inside its own SAVEPOINT together with
     its result link, so a database error on one row leaves no partial
     registry writes behind.  Hard errors (registry or source unavailable)
     abort the run.
  3. Commit, or roll everything back on --dry-run.

Result links are keyed by a deterministic result_key, so re-running the
same CSV updates links in place instead of duplicating them.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path

import click
import psycopg

from lifter_etl.engine import ResolutionEngine
from lifter_etl.normalize import normalize_space, parse_date, parse_kg, parse_stable_id, trim
from lifter_etl.records import MeetReference, ResolutionDecision, ScrapedResult
from lifter_etl.shared import (
    RegistrySchemaError,
    RegistryUnavailable,
    RejectWriter,
    RunCounters,
    SourceUnavailable,
    UnresolvedResultError,
    normalize_headers,
)
from lifter_etl.table_session import TableSession

log = logging.getLogger(__name__)

REQUIRED_HEADERS = {"lifter_name", "meet_name", "meet_date"}

_DECISION_FIELDS = [
    "result_key", "lifter_name", "meet_name", "meet_date",
    "registry_id", "strategy", "candidates_considered", "trace",
]


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------

def parse_result_row(row: dict[str, str]) -> tuple[ScrapedResult | None, str | None]:
    """Return (result, None) or (None, reject_reason)."""
    name = normalize_space(row.get("lifter_name"))
    if not name:
        return None, "blank_lifter_name"
    meet_name = normalize_space(row.get("meet_name"))
    if not meet_name:
        return None, "blank_meet_name"
    meet_date = parse_date(row.get("meet_date"))
    if meet_date is None:
        return None, f"bad_meet_date: {row.get('meet_date')!r}"

    member_raw = trim(row.get("member_id"))
    stable_id = parse_stable_id(member_raw)
    if member_raw and stable_id is None:
        return None, f"bad_member_id: {member_raw!r}"

    return ScrapedResult(
        raw_name=name,
        meet=MeetReference(meet_name, meet_date),
        age_category=normalize_space(row.get("age_category")),
        weight_class_declared=normalize_space(row.get("weight_class")),
        body_weight_kg=parse_kg(row.get("body_weight_kg")),
        total_kg=parse_kg(row.get("total_kg")),
        stable_id_hint=stable_id,
    ), None


def load_results(
    csv_path: Path,
    counters: RunCounters,
    rejects: RejectWriter,
) -> list[tuple[dict[str, str], ScrapedResult]]:
    """Pre-scan the CSV. Raises ValueError when required headers are missing."""
    out: list[tuple[dict[str, str], ScrapedResult]] = []
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        headers = {h.strip().lower() for h in (reader.fieldnames or [])}
        missing = REQUIRED_HEADERS - headers
        if missing:
            raise ValueError(f"missing headers after trim: {sorted(missing)}")
        for raw_row in reader:
            row = normalize_headers(raw_row)
            counters.rows_read += 1
            result, reason = parse_result_row(row)
            if result is None:
                rejects.write(row, reason or "unparseable")
                counters.rows_rejected += 1
                continue
            out.append((row, result))
    return out


# ---------------------------------------------------------------------------
# Result links
# ---------------------------------------------------------------------------

def persist_result_link(
    conn: psycopg.Connection,
    result: ScrapedResult,
    decision: ResolutionDecision | None,
    run_id: str,
) -> bool:
    """Upsert the athlete_result_link row for a resolved result.

    Returns True when a new link was inserted.  Raises UnresolvedResultError
    when there is no decision: a result is never linked by default.
    """
    if decision is None:
        raise UnresolvedResultError(
            f"refusing to persist {result.raw_name!r} at {result.meet.name!r} without a resolution decision"
        )
    row = conn.execute(
        """
        INSERT INTO athlete_result_link
          (result_key, run_id, meet_name, meet_date, raw_name, age_category,
           weight_class, body_weight_kg, total_kg, registry_id, strategy,
           candidates_considered, trace)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (result_key) DO UPDATE SET
          run_id                = EXCLUDED.run_id,
          registry_id           = EXCLUDED.registry_id,
          strategy              = EXCLUDED.strategy,
          candidates_considered = EXCLUDED.candidates_considered,
          trace                 = EXCLUDED.trace,
          updated_at            = now()
        RETURNING (xmax = 0) AS was_inserted
        """,
        (
            result.result_key, run_id, result.meet.name, result.meet.meet_date,
            result.raw_name, result.age_category, result.weight_class_declared,
            result.body_weight_kg, result.total_kg, decision.registry_id,
            decision.strategy.value, list(decision.candidates_considered),
            json.dumps([step.to_dict() for step in decision.trace]),
        ),
    ).fetchone()
    return bool(row[0])


class DecisionWriter:
    """Lazy-open CSV writer for resolution decisions."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, result: ScrapedResult, decision: ResolutionDecision) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._fh, fieldnames=_DECISION_FIELDS)
            self._writer.writeheader()
        self._writer.writerow({
            "result_key": result.result_key,
            "lifter_name": result.raw_name,
            "meet_name": result.meet.name,
            "meet_date": result.meet.meet_date.isoformat(),
            "registry_id": decision.registry_id,
            "strategy": decision.strategy.value,
            "candidates_considered": " ".join(str(i) for i in decision.candidates_considered),
            "trace": json.dumps([step.to_dict() for step in decision.trace]),
        })
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# Resolution run
# ---------------------------------------------------------------------------

def resolve_rows(
    engine: ResolutionEngine,
    rows: list[tuple[dict[str, str], ScrapedResult]],
    run_id: str,
    counters: RunCounters,
    rejects: RejectWriter,
    conn: psycopg.Connection | None = None,
    session: TableSession | None = None,
    decisions: DecisionWriter | None = None,
) -> list[ResolutionDecision]:
    """Resolve every row; link results when a connection is given.

    The caller owns the transaction: commit or roll back afterwards.
    """
    out: list[ResolutionDecision] = []
    for idx, (row, result) in enumerate(rows):
        sp_name = f"row_{idx}"
        if conn is not None:
            conn.execute(f"SAVEPOINT {sp_name}")
        try:
            decision = engine.resolve(result, session)
            if conn is not None:
                persist_result_link(conn, result, decision, run_id)
                conn.execute(f"RELEASE SAVEPOINT {sp_name}")
                counters.result_links_upserted += 1
        except (RegistryUnavailable, RegistrySchemaError, SourceUnavailable) as exc:
            counters.safe_stop_reason = f"{type(exc).__name__}: {exc}"
            raise
        except psycopg.Error as exc:
            if conn is None:
                raise
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
            log.warning("row %d (%r) rolled back: %s", idx, result.raw_name, exc)
            counters.warnings.append(f"row {idx} db error: {exc}")
            rejects.write(row, f"db_error: {exc}")
            counters.rows_rejected += 1
            counters.db_phase_errors += 1
            continue

        counters.rows_resolved += 1
        if decisions is not None:
            decisions.write(result, decision)
        out.append(decision)
        if counters.rows_resolved % 100 == 0:
            click.echo(f"[{run_id}] resolved {counters.rows_resolved}/{len(rows)}")
    return out


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def build_resolution_report(counters: RunCounters, dry_run: bool = False) -> str:
    """Plain-text summary of a resolution run."""
    c = counters
    lines = [
        "=" * 60,
        f"Lifter resolution report{' (DRY RUN)' if dry_run else ''}",
        "=" * 60,
        f"Rows read:                  {c.rows_read}",
        f"Rows rejected:              {c.rows_rejected}",
        f"Rows resolved:              {c.rows_resolved}",
        f"Result links upserted:      {c.result_links_upserted}",
        f"Row DB errors:              {c.db_phase_errors}",
        "-" * 60,
        "Decisions by strategy:",
        f"  stable-id-exact           {c.stable_id_exact}",
        f"  tier1-verified            {c.tier1_verified}",
        f"  tier2-verified            {c.tier2_verified}",
        f"  single-unambiguous-name   {c.single_unambiguous_name}",
        f"  created-new               {c.created_new}"
        f"  (ambiguous: {c.created_new_ambiguous})",
        "-" * 60,
        f"Tier-1 checks:              {c.tier1_checks}",
        f"Tier-2 checks:              {c.tier2_checks}",
        f"Stable ids extracted:       {c.stable_ids_extracted}",
        f"Rows without a stable id:   {c.rows_unextractable}",
        f"Stable ids back-filled:     {c.stable_ids_backfilled}",
    ]
    if c.safe_stop_reason:
        lines.append(f"Safe stop:                  {c.safe_stop_reason}")
    if c.warnings:
        lines.append(f"Warnings ({len(c.warnings)}):")
        lines.extend(f"  {w}" for w in c.warnings[:10])
    lines.append("=" * 60)
    return "\n".join(lines)

