"""Normalization functions for scraped meet results and registry names.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
)

_MEMBER_PATH_RE = re.compile(r"/member/(\d+)")
_WEIGHT_CLASS_RE = re.compile(r"^\s*(\+)?\s*(\d+(?:\.\d+)?)\s*(\+)?\s*kg\s*$", re.IGNORECASE)
_MEMBERSHIP_PATTERNS = (
    re.compile(r"Membership\s*#\.?\s*:?\s*(\d+)", re.IGNORECASE),
    re.compile(r"Member\s*ID\.?\s*:?\s*(\d+)", re.IGNORECASE),
    re.compile(r"Member\s*Number\.?\s*:?\s*(\d+)", re.IGNORECASE),
    re.compile(r"USA\s*Weightlifting\s*#\s*:?\s*(\d+)", re.IGNORECASE),
)


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_name  (case/whitespace folding for athlete lookup)
# ---------------------------------------------------------------------------

def normalize_name(value: str | None) -> str | None:
    """Casefold and collapse whitespace.

    Punctuation and accents are kept: "O'Brien" and "OBrien" stay distinct,
    so this is a near-exact comparison key, never a fuzzy one.  Stored as
    canonical_athlete.normalized_name.
    """
    v = normalize_space(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFC", v)
    return v.casefold()


def names_match(left: str | None, right: str | None) -> bool:
    """True when both names are present and equal after normalize_name."""
    a = normalize_name(left)
    return a is not None and a == normalize_name(right)


# ---------------------------------------------------------------------------
# Rule 4: parse_numeric / parse_kg
# ---------------------------------------------------------------------------

def parse_numeric(value: str | None) -> Decimal | None:
    """Parse a decimal number from a string, returning None on failure."""
    v = trim(value)
    if v is None:
        return None
    try:
        return Decimal(v)
    except InvalidOperation:
        return None


def parse_kg(value: str | None) -> float | None:
    """Parse a kilogram figure such as '60.4', '60.4 kg' or '121kg'.

    Bombed-out totals ('0', '---') and negative lifts yield None.
    """
    v = trim(value)
    if v is None:
        return None
    v = re.sub(r"\s*kg\s*$", "", v, flags=re.IGNORECASE)
    num = parse_numeric(v)
    if num is None or not num.is_finite() or num <= 0:
        return None
    return float(num)


# ---------------------------------------------------------------------------
# Rule 5: parse_date
# ---------------------------------------------------------------------------

def parse_date(value: str | None) -> date | None:
    """Parse the date layouts seen in result exports and rankings tables.

    e.g. '2024-03-09', '03/09/2024', 'Mar 9, 2024', '9 Mar 2024'.
    """
    v = normalize_space(value)
    if v is None:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Rule 6: parse_member_id  (stable id from a profile location)
# ---------------------------------------------------------------------------

def parse_member_id(url: str | None) -> int | None:
    """Return the numeric id from a '.../member/<digits>' location, or None."""
    v = trim(url)
    if not v:
        return None
    m = _MEMBER_PATH_RE.search(v)
    return int(m.group(1)) if m else None


def parse_stable_id(value: str | None) -> int | None:
    """Parse a stable id given either as bare digits or as a member URL."""
    v = trim(value)
    if v is None:
        return None
    if v.isdigit():
        return int(v)
    return parse_member_id(v)


def find_membership_number(text: str | None) -> str | None:
    """Scan labelled profile text for a membership number."""
    if not text:
        return None
    for pattern in _MEMBERSHIP_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1)
    return None


# ---------------------------------------------------------------------------
# Rule 7: weight classes and age categories
# ---------------------------------------------------------------------------

def parse_weight_class(value: str | None) -> tuple[float, bool] | None:
    """Parse '81kg', '81 kg', '+109kg', '110+kg' into (limit, is_heavyweight)."""
    v = trim(value)
    if v is None:
        return None
    m = _WEIGHT_CLASS_RE.match(v)
    if not m:
        return None
    return float(m.group(2)), bool(m.group(1) or m.group(3))


def infer_gender(category: str | None) -> str | None:
    """Return 'M' / 'F' from an age-category label, or None if it says neither."""
    v = normalize_name(category)
    if v is None:
        return None
    if "women" in v or "girls" in v or "female" in v:
        return "F"
    if "men" in v or "boys" in v or "male" in v:
        return "M"
    return None


# ---------------------------------------------------------------------------
# Helper: result_key
# ---------------------------------------------------------------------------

def build_result_key(
    meet_name: str,
    meet_date: date | None,
    raw_name: str,
    weight_class: str | None,
    total_kg: float | None,
) -> str:
    """Return a deterministic 32-hex key for one scraped result row.

    Used as athlete_result_link.result_key so reruns update in place.
    """
    key = "|".join([
        normalize_name(meet_name) or "",
        meet_date.isoformat() if meet_date else "",
        normalize_name(raw_name) or "",
        normalize_name(weight_class) or "",
        f"{total_kg:g}" if total_kg is not None else "",
    ])
    return hashlib.sha256(key.encode()).hexdigest()[:32]
