"""lifter_etl.cli

Command-line entrypoint: resolve a CSV of scraped meet results to canonical
athletes.

Usage:
    lifter-etl \\
        --csv-path "artifacts/scrapes/meet_7011.csv" \\
        --db-dsn "$DB_DSN" \\
        --config config/resolver.yml \\
        --decisions-path artifacts/decisions/meet_7011.csv

Rehearsal without a database or browser (name and stable-id strategies only):
    lifter-etl --csv-path results.csv --in-memory --no-browser
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import ExitStack
from datetime import datetime
from pathlib import Path

import click
import psycopg

from lifter_etl.candidate_locator import CandidateLocator
from lifter_etl.config import ConfigValidationError, ResolverConfig, config_to_dict, load_config
from lifter_etl.divisions import load_division_catalog
from lifter_etl.engine import ResolutionEngine
from lifter_etl.gateway import RegistryGateway
from lifter_etl.import_meet_results import (
    DecisionWriter,
    build_resolution_report,
    load_results,
    resolve_rows,
)
from lifter_etl.rate_limit import RateLimiter
from lifter_etl.registry import InMemoryAthleteRegistry, PostgresAthleteRegistry
from lifter_etl.shared import (
    RegistrySchemaError,
    RegistryUnavailable,
    RejectWriter,
    RunCounters,
    SourceUnavailable,
    write_run_report,
)
from lifter_etl.stable_id import StableIdExtractor
from lifter_etl.table_session import TableSession
from lifter_etl.tier1 import ContextVerifier
from lifter_etl.tier2 import PerformanceVerifier

log = logging.getLogger(__name__)


def _build_browser_stack(stack: ExitStack, config: ResolverConfig, headed: bool, codes_path: Path | None):
    """Open the browser and return (session, context_verifier, performance_verifier)."""
    from lifter_etl.sport80 import (
        PlaywrightProfileSource,
        PlaywrightTableDriver,
        browser_pages,
    )

    listing_page, profile_page = stack.enter_context(browser_pages(headless=not headed))
    rate_limiter = RateLimiter(
        min_delay=config.request_delay_seconds,
        jitter=config.request_jitter_seconds,
        max_consecutive_failures=config.max_consecutive_failures,
    )
    session = TableSession(
        PlaywrightTableDriver(listing_page, config.navigation_timeout_seconds),
        rate_limiter,
        dwell_seconds=config.settle_dwell_seconds,
        poll_seconds=config.settle_poll_seconds,
        settle_timeout=config.settle_timeout_seconds,
        restore_max_attempts=config.restore_max_attempts,
    )
    context_verifier = ContextVerifier(
        load_division_catalog(codes_path),
        StableIdExtractor(max_attempts=config.extraction_max_attempts),
        config,
    )
    profile_source = PlaywrightProfileSource(
        profile_page,
        rate_limiter,
        config.source_base_url,
        timeout_seconds=config.navigation_timeout_seconds,
        max_pages=config.max_listing_pages,
    )
    performance_verifier = PerformanceVerifier(
        profile_source,
        bodyweight_tolerance_kg=config.bodyweight_tolerance_kg,
        total_tolerance_kg=config.total_tolerance_kg,
        max_attempts=config.load_max_attempts,
    )
    return session, context_verifier, performance_verifier


@click.command()
@click.option("--csv-path", required=True, type=click.Path(exists=True, dir_okay=False), help="Scraped meet results CSV")
@click.option("--db-dsn", default=None, help="PostgreSQL DSN of the athlete registry")
@click.option("--in-memory", is_flag=True, default=False, help="Use an empty in-memory registry instead of --db-dsn")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False), help="Resolver YAML config")
@click.option("--division-codes", default=None, type=click.Path(exists=True, dir_okay=False), help="Division code map (overrides division_codes_path)")
@click.option("--no-browser", is_flag=True, default=False, help="Skip extraction and Tier-1/Tier-2 verification")
@click.option("--headed", is_flag=True, default=False, help="Show the browser window")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/lifter_rejects.csv",
    show_default=True,
)
@click.option("--decisions-path", default=None, type=click.Path(), help="Write one CSV row per decision")
@click.option(
    "--max-reject-rate",
    default=0.05,
    type=float,
    show_default=True,
    help="Fraction of rows that may be rejected before the run fails",
)
@click.option("--verbose", is_flag=True, default=False, help="DEBUG logging")
def main(
    csv_path: str,
    db_dsn: str | None,
    in_memory: bool,
    config_path: str | None,
    division_codes: str | None,
    no_browser: bool,
    headed: bool,
    dry_run: bool,
    run_id: str | None,
    rejects_path: str,
    decisions_path: str | None,
    max_reject_rate: float,
    verbose: bool,
) -> None:
    """Resolve scraped meet results to canonical athletes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    counters = RunCounters()

    if not db_dsn and not in_memory:
        click.echo(f"[{run_id}] ERROR: --db-dsn is required unless --in-memory is set.", err=True)
        sys.exit(1)

    try:
        config = load_config(Path(config_path) if config_path else None)
    except ConfigValidationError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    codes_path = Path(division_codes) if division_codes else (
        Path(config.division_codes_path) if config.division_codes_path else None
    )

    click.echo(f"[{run_id}] Starting lifter resolution (dry_run={dry_run}, browser={not no_browser})")

    # Phase 1: Pre-scan
    rejects = RejectWriter(Path(rejects_path))
    try:
        rows = load_results(Path(csv_path), counters, rejects)
    except ValueError as exc:
        rejects.close()
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    click.echo(
        f"[{run_id}] Pre-scan: {counters.rows_read} rows read, "
        f"{counters.rows_rejected} rejected, {len(rows)} valid"
    )
    if counters.rows_read > 0 and (counters.rows_rejected / counters.rows_read) > max_reject_rate:
        rejects.close()
        click.echo(
            f"[{run_id}] FATAL: reject rate "
            f"{counters.rows_rejected}/{counters.rows_read} exceeds threshold {max_reject_rate:.1%}",
            err=True,
        )
        sys.exit(1)

    # Phase 2: Resolve
    decisions = DecisionWriter(Path(decisions_path)) if decisions_path else None
    conn = None if in_memory else psycopg.connect(db_dsn, autocommit=False)
    hard_failure = False
    try:
        with ExitStack() as stack:
            registry = InMemoryAthleteRegistry() if conn is None else PostgresAthleteRegistry(conn)
            gateway = RegistryGateway(registry)
            session = context_verifier = performance_verifier = None
            if not no_browser:
                session, context_verifier, performance_verifier = _build_browser_stack(
                    stack, config, headed, codes_path
                )
            engine = ResolutionEngine(
                gateway,
                CandidateLocator(gateway),
                config=config,
                context_verifier=context_verifier,
                performance_verifier=performance_verifier,
                counters=counters,
            )
            try:
                resolve_rows(
                    engine, rows, run_id, counters, rejects,
                    conn=conn, session=session, decisions=decisions,
                )
            except (RegistryUnavailable, RegistrySchemaError, SourceUnavailable) as exc:
                hard_failure = True
                click.echo(f"[{run_id}] FATAL: {exc}", err=True)
            finally:
                if context_verifier is not None:
                    counters.stable_ids_extracted = context_verifier.stable_ids_extracted
                    counters.rows_unextractable = context_verifier.rows_unextractable

        if conn is not None:
            if dry_run or hard_failure:
                conn.rollback()
                click.echo(f"[{run_id}] {'DRY RUN — rolled back.' if dry_run else 'Rolled back.'}")
            else:
                conn.commit()
                click.echo(f"[{run_id}] Committed.")
    except Exception:
        if conn is not None:
            conn.rollback()
        raise
    finally:
        if conn is not None:
            conn.close()
        rejects.close()
        if decisions is not None:
            decisions.close()

    click.echo(build_resolution_report(counters, dry_run=dry_run))
    report_path = write_run_report(
        run_id, started_at, "lifter_resolution", dry_run,
        {
            "csv_path": csv_path,
            "registry": "in_memory" if in_memory else "postgres",
            "config": config_to_dict(config),
        },
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if hard_failure:
        sys.exit(1)
    if counters.db_phase_errors > 0:
        click.echo(f"[{run_id}] {counters.db_phase_errors} DB errors — exiting non-zero", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
