from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
import math
import re
from typing import Any, Iterable, Mapping

from drledger.core.errors import ValidationError


BACKUP_TYPES: tuple[str, ...] = ("full", "incremental", "differential", "logical", "physical")
BACKUP_STATUSES: tuple[str, ...] = ("pending", "running", "success", "failed", "expired")
BACKUP_VERIFICATION_STATUSES: tuple[str, ...] = ("unverified", "in_progress", "verified", "failed")
DRILL_STATUSES: tuple[str, ...] = ("scheduled", "running", "passed", "failed", "cancelled")
DRILL_SCENARIOS: tuple[str, ...] = (
    "regional_outage",
    "ransomware_response",
    "config_corruption",
    "operator_error",
    "cloud_provider_failure",
    "data_center_loss",
)

KEY_MAX_LENGTH = 160

_INVALID_KEY_CHARS = re.compile(r"[^a-z0-9._-]+")
_REPEATED_SEPARATORS = re.compile(r"([._-])[._-]+")
_SEPARATORS = "._-"


def normalize_key(value: Any) -> str:
    """Lower-kebab a caller-chosen key.

    Invalid characters become ``-``, runs of separators collapse to their first
    character, edge separators are trimmed and the result is capped at 160
    characters. The function is idempotent.
    """
    if value is None:
        return ""
    lowered = str(value).strip().lower()
    cleaned = _INVALID_KEY_CHARS.sub("-", lowered)
    collapsed = _REPEATED_SEPARATORS.sub(r"\1", cleaned)
    trimmed = collapsed.strip(_SEPARATORS)
    return trimmed[:KEY_MAX_LENGTH].rstrip(_SEPARATORS)


def sanitize_choice(value: Any, allowed: Iterable[str], default: str) -> str:
    # Case-insensitive enum match that silently downgrades to the default.
    if value is None:
        return default
    candidate = str(value).strip().lower()
    return candidate if candidate in tuple(allowed) else default


def assert_in_set(value: Any, allowed: Iterable[str], message: str) -> str | None:
    # Strict counterpart of sanitize_choice for caller intent and list filters.
    if value is None:
        return None
    candidate = str(value).strip().lower()
    if candidate not in tuple(allowed):
        raise ValidationError(message)
    return candidate


def _finite_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        parsed = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            parsed = float(stripped)
        except ValueError:
            return None
    else:
        return None
    return parsed if math.isfinite(parsed) else None


def coerce_integer(value: Any, fallback: int | None = None) -> int | None:
    # Truncate numeric-like input toward zero; non-finite or junk yields the fallback.
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if re.fullmatch(r"[+-]?\d+", stripped):
            return int(stripped)
    parsed = _finite_float(value)
    if parsed is None:
        return fallback
    return int(parsed)


def coerce_float(value: Any, fallback: float | None = None) -> float | None:
    parsed = _finite_float(value)
    return fallback if parsed is None else parsed


def coerce_non_negative_integer(value: Any) -> int | None:
    # Durations and sizes collapse to null instead of going negative.
    parsed = coerce_integer(value)
    if parsed is None or parsed < 0:
        return None
    return parsed


def coerce_positive_integer(value: Any, fallback: int | None = None) -> int | None:
    parsed = coerce_integer(value)
    if parsed is None or parsed <= 0:
        return fallback
    return parsed


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; treat them as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_timestamp(value: Any) -> datetime | None:
    # Lenient timestamp parse for the model pass; junk becomes null.
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip()))
        except ValueError:
            return None
    return None


def to_iso(value: Any) -> str | None:
    parsed = coerce_timestamp(value)
    return parsed.isoformat() if parsed is not None else None


def normalize_dataset_scope(scope: Any) -> dict[str, Any]:
    if not scope:
        return {}
    if isinstance(scope, Mapping):
        return dict(scope)
    if isinstance(scope, (list, tuple)):
        return {"datasets": list(scope)}
    return {"description": str(scope)}


def normalize_metadata(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def normalize_issues(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = [value]
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return []
    return [text for text in (clean_text(item) for item in items) if text]
