"""lifter_etl.shared

Shared utilities used across the resolution pipeline.
Includes the exception taxonomy, RejectWriter, RunCounters, and
report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RegistryUnavailable(Exception):
    """Raised when the athlete registry cannot be reached or queried."""


class RegistrySchemaError(Exception):
    """Raised when the registry returns a row that does not fit the record shape."""


class SourceUnavailable(Exception):
    """Raised when the remote source keeps failing past the safe-stop threshold."""


class NavigationError(Exception):
    """A single navigation or wait step failed or timed out (retryable)."""


class SessionDesyncError(RuntimeError):
    """A table session could not be put back on its starting page and ordering."""


class UnresolvedResultError(ValueError):
    """Raised when a result is persisted without a resolution decision."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    rows_read: int = 0
    rows_rejected: int = 0
    rows_resolved: int = 0
    db_phase_errors: int = 0
    result_links_upserted: int = 0
    # Decisions by strategy
    stable_id_exact: int = 0
    tier1_verified: int = 0
    tier2_verified: int = 0
    single_unambiguous_name: int = 0
    created_new: int = 0
    created_new_ambiguous: int = 0
    # Work done against the source
    tier1_checks: int = 0
    tier2_checks: int = 0
    stable_ids_extracted: int = 0
    rows_unextractable: int = 0
    stable_ids_backfilled: int = 0
    safe_stop_reason: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Header normalization
# ---------------------------------------------------------------------------

def normalize_headers(raw: dict[str, str]) -> dict[str, str]:
    """Return a new dict with header keys whitespace-stripped and lowercased."""
    return {k.strip().lower(): v for k, v in raw.items() if k is not None}


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = Path(f"./artifacts/reports/{run_id}.json")
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
