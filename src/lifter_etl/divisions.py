"""lifter_etl.divisions

Division catalogue and rankings queries for the Tier-1 context check.

A rankings division is named "<age category> <weight class>", e.g.
"Open Men's 89kg", and each name maps to a numeric code in the rankings
filter.  Divisions retired by the June 2025 weight-class change are listed
with an "(Inactive) " prefix.  Class boundaries changed in 1998, Nov 2018
and June 2025, and each era spells its heavyweight class differently.

Usage:
    catalog = load_division_catalog(Path("config/division_codes.yml"))
    for query in division_queries(catalog, result, config):
        url = query.url(config.source_base_url)
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.parse
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any

import yaml

from lifter_etl.config import ConfigValidationError, ResolverConfig
from lifter_etl.normalize import infer_gender, normalize_space
from lifter_etl.records import ScrapedResult

log = logging.getLogger(__name__)

ACTIVE_DIVISION_CUTOFF = date(2025, 6, 1)
ERA_2018_START = date(2018, 11, 1)
ERA_1998_START = date(1998, 1, 1)
INACTIVE_PREFIX = "(Inactive) "

_ADULT = {
    "current": {"M": [60, 65, 71, 79, 88, 94, 110], "F": [48, 53, 58, 63, 69, 77, 86]},
    "2018": {"M": [55, 61, 67, 73, 81, 89, 96, 102, 109], "F": [45, 49, 55, 59, 64, 71, 76, 81, 87]},
    "1998": {"M": [56, 62, 69, 77, 85, 94, 105], "F": [48, 53, 58, 63, 69, 75, 90]},
}

WEIGHT_CLASSES: dict[str, dict[str, dict[str, list[int]]]] = {
    "current": {
        "13U": {"M": [32, 36, 40, 44, 48, 52, 56, 60, 65], "F": [30, 33, 36, 40, 44, 48, 53, 58, 63]},
        "14-15": {"M": [48, 52, 56, 60, 65, 71, 79], "F": [40, 44, 48, 53, 58, 63, 69]},
        "16-17": {"M": [56, 60, 65, 71, 79, 88, 94], "F": [44, 48, 53, 58, 63, 69, 77]},
        "junior": _ADULT["current"],
        "open": _ADULT["current"],
    },
    "2018": {
        "13U": {"M": [32, 36, 39, 44, 49, 55, 61, 67, 73], "F": [30, 33, 36, 40, 45, 55, 59, 64]},
        "14-15": {"M": [39, 44, 49, 55, 61, 67, 73, 81, 89], "F": [36, 40, 45, 49, 55, 59, 64, 71, 76]},
        "16-17": {"M": [49, 55, 61, 67, 73, 81, 89, 96, 102], "F": [40, 45, 49, 55, 59, 64, 71, 76, 81]},
        "junior": _ADULT["2018"],
        "open": _ADULT["2018"],
    },
    "1998": {
        "13U": {"M": [31, 35, 39, 44, 50, 56, 62, 69], "F": [31, 35, 39, 44, 48, 53, 58]},
        "14-15": {"M": [44, 50, 56, 62, 69, 77, 85], "F": [44, 48, 53, 58, 63, 69]},
        "16-17": {"M": [50, 56, 62, 69, 77, 85, 94, 105], "F": [44, 48, 53, 58, 63, 69]},
        "junior": _ADULT["1998"],
        "open": _ADULT["1998"],
    },
}
WEIGHT_CLASSES["current"]["11U"] = WEIGHT_CLASSES["current"]["13U"]
WEIGHT_CLASSES["2018"]["11U"] = WEIGHT_CLASSES["2018"]["13U"]
WEIGHT_CLASSES["1998"]["11U"] = WEIGHT_CLASSES["1998"]["13U"]

# Youngest to oldest; "{g}" is "Men's" or "Women's".
AGE_GROUP_LADDER = (
    ("11U", "{g} 11 Under Age Group"),
    ("13U", "{g} 13 Under Age Group"),
    ("14-15", "{g} 14-15 Age Group"),
    ("16-17", "{g} 16-17 Age Group"),
    ("junior", "Junior {g}"),
    ("open", "Open {g}"),
)


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

class DivisionCatalog:
    """Division name → rankings filter code."""

    def __init__(self, codes: dict[str, int]) -> None:
        self._codes = {normalize_space(k) or k: v for k, v in codes.items()}

    def __len__(self) -> int:
        return len(self._codes)

    def code_for(self, division_name: str, meet_date: date) -> int | None:
        """Look up a division, preferring the active or inactive spelling by era."""
        name = normalize_space(division_name)
        if not name:
            return None
        inactive = f"{INACTIVE_PREFIX}{name}"
        order = (name, inactive) if meet_date >= ACTIVE_DIVISION_CUTOFF else (inactive, name)
        for key in order:
            if key in self._codes:
                return self._codes[key]
        return None

    def lookup(self, age_category: str, weight_class: str, meet_date: date) -> tuple[str, int] | None:
        """Return (division_name, code), also trying the other 'kg' spacing."""
        base = f"{normalize_space(age_category)} {normalize_space(weight_class)}"
        if " kg" in base:
            alternate = base.replace(" kg", "kg")
        else:
            alternate = base.replace("kg", " kg")
        for name in (base, alternate):
            code = self.code_for(name, meet_date)
            if code is not None:
                return name, code
        return None


def load_division_catalog(path: Path | None) -> DivisionCatalog:
    """Load a YAML or JSON code map, flat or nested under 'division_codes'."""
    if path is None:
        return DivisionCatalog({})
    data: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if isinstance(data, dict) and "division_codes" in data:
        data = data["division_codes"]
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path}: division codes must be a mapping.")
    codes: dict[str, int] = {}
    for name, code in data.items():
        try:
            codes[str(name)] = int(code)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"{path}: division {name!r} has non-numeric code {code!r}.")
    log.info("loaded %d division codes from %s", len(codes), path)
    return DivisionCatalog(codes)


# ---------------------------------------------------------------------------
# Weight classes
# ---------------------------------------------------------------------------

def weight_class_era(meet_date: date) -> str:
    if meet_date >= ACTIVE_DIVISION_CUTOFF:
        return "current"
    if meet_date >= ERA_2018_START:
        return "2018"
    if meet_date >= ERA_1998_START:
        return "1998"
    return "legacy"


def age_group_key(age_category: str | None) -> str:
    cat = (age_category or "").lower()
    if "11 under" in cat:
        return "11U"
    if "13 under" in cat:
        return "13U"
    if "14-15" in cat:
        return "14-15"
    if "16-17" in cat:
        return "16-17"
    if "junior" in cat:
        return "junior"
    if "youth" in cat:
        return "16-17"
    return "open"


def calculate_weight_class(age_category: str | None, body_weight_kg: float | None, meet_date: date) -> str | None:
    """Return the weight class a bodyweight falls in for this category and era."""
    if body_weight_kg is None or body_weight_kg <= 0:
        return None
    era = weight_class_era(meet_date)
    if era not in WEIGHT_CLASSES:
        return None
    gender = infer_gender(age_category) or "M"
    limits = WEIGHT_CLASSES[era][age_group_key(age_category)][gender]
    for limit in limits:
        if body_weight_kg <= limit:
            return f"{limit}kg"
    top = limits[-1]
    if era == "current":
        return f"{top}+kg"
    if era == "2018":
        return f"+{top}kg"
    return f"+{top} Kg"


def alternative_divisions(
    age_category: str | None,
    body_weight_kg: float | None,
    meet_date: date,
) -> list[tuple[str, str]]:
    """Divisions worth searching when the declared one turns up nothing.

    Order: the declared age group with the calculated class, then up to two
    neighbouring age groups either side (youngest first), then Open.
    """
    if not age_category or body_weight_kg is None:
        return []
    gender = "Women's" if infer_gender(age_category) == "F" else "Men's"
    labels = [label.format(g=gender) for _, label in AGE_GROUP_LADDER]
    current = next(
        (i for i, (key, _) in enumerate(AGE_GROUP_LADDER) if key == age_group_key(age_category)),
        len(AGE_GROUP_LADDER) - 1,
    )
    indices = sorted({current - 2, current - 1, current + 1, current + 2, len(labels) - 1} - {current})
    ordered = [current] + [i for i in indices if 0 <= i < len(labels)]

    seen: set[tuple[str, str]] = set()
    out: list[tuple[str, str]] = []
    for i in ordered:
        weight_class = calculate_weight_class(labels[i], body_weight_kg, meet_date)
        if weight_class and (labels[i], weight_class) not in seen:
            seen.add((labels[i], weight_class))
            out.append((labels[i], weight_class))
    return out


# ---------------------------------------------------------------------------
# Rankings queries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DivisionQuery:
    division_name: str
    code: int
    start: date
    end: date

    def url(self, base_url: str) -> str:
        filters = {
            "date_range_start": self.start.isoformat(),
            "date_range_end": self.end.isoformat(),
            "weight_class": self.code,
        }
        encoded = base64.b64encode(json.dumps(filters, separators=(",", ":")).encode()).decode()
        return f"{base_url.rstrip('/')}/public/rankings/all?filters={urllib.parse.quote(encoded, safe='')}"


def date_window(meet_date: date, days_before: int, days_after: int) -> tuple[date, date]:
    return meet_date - timedelta(days=days_before), meet_date + timedelta(days=days_after)


def division_queries(
    catalog: DivisionCatalog,
    result: ScrapedResult,
    config: ResolverConfig,
) -> list[DivisionQuery]:
    """Rankings queries for a result: declared division first, then alternatives.

    The declared division is skipped when it has no code; alternatives are
    only produced when enabled and a bodyweight is known.
    """
    start, end = date_window(
        result.meet.meet_date, config.window_days_before, config.window_days_after
    )
    meet_date = result.meet.meet_date
    queries: list[DivisionQuery] = []
    seen_codes: set[int] = set()

    def _add(age_category: str, weight_class: str) -> None:
        found = catalog.lookup(age_category, weight_class, meet_date)
        if found is None:
            log.debug("no division code for %r %r", age_category, weight_class)
            return
        name, code = found
        if code not in seen_codes:
            seen_codes.add(code)
            queries.append(DivisionQuery(name, code, start, end))

    if result.age_category and result.weight_class_declared:
        _add(result.age_category, result.weight_class_declared)

    if config.search_alternative_divisions and result.age_category:
        budget = config.max_alternative_divisions
        for age_category, weight_class in alternative_divisions(
            result.age_category, result.body_weight_kg, meet_date
        ):
            if budget <= 0:
                break
            before = len(queries)
            _add(age_category, weight_class)
            if len(queries) > before:
                budget -= 1
    return queries
