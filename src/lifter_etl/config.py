"""lifter_etl.config

YAML-backed settings for the resolver: verification tolerances, the Tier-1
date window, politeness/timeout knobs for the remote source, and the
location of the division-code map.

Usage:
    from pathlib import Path
    from lifter_etl.config import load_config

    config = load_config(Path("config/resolver.yml"))
    config.bodyweight_tolerance_kg  # 2.0
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a resolver config file fails schema validation."""


# ---------------------------------------------------------------------------
# ResolverConfig dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolverConfig:
    """Validated resolver settings. Every field has a working default."""

    source_base_url: str = "https://usaweightlifting.sport80.com"
    # Tier-2 tolerances, inclusive
    bodyweight_tolerance_kg: float = 2.0
    total_tolerance_kg: float = 5.0
    # Tier-1 rankings window around the meet date
    window_days_before: int = 3
    window_days_after: int = 10
    # Politeness
    request_delay_seconds: float = 2.0
    request_jitter_seconds: float = 0.5
    max_consecutive_failures: int = 5
    # Timeouts and row-count stabilization
    navigation_timeout_seconds: float = 30.0
    settle_dwell_seconds: float = 1.0
    settle_poll_seconds: float = 0.25
    settle_timeout_seconds: float = 15.0
    # Retry bounds
    extraction_max_attempts: int = 3
    restore_max_attempts: int = 2
    load_max_attempts: int = 2
    max_listing_pages: int = 25
    # Matching policy
    containment_pass: bool = False
    search_alternative_divisions: bool = True
    max_alternative_divisions: int = 4
    name_only_fallback: bool = True
    division_codes_path: str | None = None


_FIELD_TYPES: dict[str, type] = {
    "source_base_url": str,
    "bodyweight_tolerance_kg": float,
    "total_tolerance_kg": float,
    "window_days_before": int,
    "window_days_after": int,
    "request_delay_seconds": float,
    "request_jitter_seconds": float,
    "max_consecutive_failures": int,
    "navigation_timeout_seconds": float,
    "settle_dwell_seconds": float,
    "settle_poll_seconds": float,
    "settle_timeout_seconds": float,
    "extraction_max_attempts": int,
    "restore_max_attempts": int,
    "load_max_attempts": int,
    "max_listing_pages": int,
    "containment_pass": bool,
    "search_alternative_divisions": bool,
    "max_alternative_divisions": int,
    "name_only_fallback": bool,
    "division_codes_path": str,
}

# Must be strictly positive; every other numeric field must be >= 0.
_POSITIVE_FIELDS = frozenset({
    "bodyweight_tolerance_kg",
    "total_tolerance_kg",
    "navigation_timeout_seconds",
    "settle_timeout_seconds",
    "extraction_max_attempts",
    "restore_max_attempts",
    "load_max_attempts",
    "max_listing_pages",
    "max_consecutive_failures",
})


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_config(yaml_path: Path | None) -> ResolverConfig:
    """Load, validate, and return a ResolverConfig.

    A None path yields the defaults.  Relative division_codes_path values
    are resolved against the config file's directory.

    Raises:
        ConfigValidationError: If any key is unknown or any value invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    if yaml_path is None:
        return ResolverConfig()
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw) or {}
    values = validate_config(data)
    codes_path = values.get("division_codes_path")
    if codes_path and not Path(codes_path).is_absolute():
        values["division_codes_path"] = str(yaml_path.parent / codes_path)
    return ResolverConfig(**values)


def validate_config(data: dict[str, Any]) -> dict[str, Any]:
    """Return coerced field values, or raise ConfigValidationError.

    Validates:
      - root is a mapping with no unknown keys
      - each value coerces to its field type (bools must be real booleans)
      - numeric values are >= 0; tolerances, timeouts and retry bounds > 0
    """
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    unknown = set(data) - set(_FIELD_TYPES)
    if unknown:
        raise ConfigValidationError(f"Unknown config keys: {sorted(unknown)}")

    values: dict[str, Any] = {}
    for key, raw in data.items():
        if raw is None:
            continue
        kind = _FIELD_TYPES[key]
        if kind is bool:
            if not isinstance(raw, bool):
                raise ConfigValidationError(f"'{key}' must be true or false, got {raw!r}.")
            values[key] = raw
            continue
        if kind is str:
            values[key] = str(raw)
            continue
        if isinstance(raw, bool):
            raise ConfigValidationError(f"'{key}' value {raw!r} is not numeric.")
        try:
            num = kind(raw)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"'{key}' value {raw!r} is not numeric.")
        if key in _POSITIVE_FIELDS and num <= 0:
            raise ConfigValidationError(f"'{key}' value {num} must be > 0.")
        if num < 0:
            raise ConfigValidationError(f"'{key}' value {num} must be >= 0.")
        values[key] = num
    return values


def config_to_dict(config: ResolverConfig) -> dict[str, Any]:
    return dataclasses.asdict(config)
