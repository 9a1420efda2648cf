from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from drledger.domain.normalization import (
    BACKUP_STATUSES,
    DRILL_STATUSES,
    coerce_timestamp,
    normalize_issues,
    sanitize_choice,
    to_iso,
)


def _field(record: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return None


def _as_mapping(record: Any) -> Mapping[str, Any]:
    return record if isinstance(record, Mapping) else {}


def _verification_status(record: Mapping[str, Any]) -> Any:
    value = _field(record, "verification_status", "verificationStatus")
    if value is None:
        # Serialized records nest the verification sub-state.
        nested = record.get("verification")
        if isinstance(nested, Mapping):
            value = nested.get("status")
    return value


def summarize_backup_health(records: Iterable[Any]) -> dict[str, Any]:
    """Fold snapshot records into fleet-wide backup health counters.

    Records may use column names or their camelCase public form. Unknown
    statuses count as ``pending`` so the per-status tally always sums to total.
    ``latestSuccessAt`` is the newest completion among ``success`` rows only;
    completions of failed or pending rows never move it.
    """
    by_status = {status: 0 for status in BACKUP_STATUSES}
    total = 0
    verified = 0
    unhealthy = 0
    latest_success_at: datetime | None = None
    oldest_snapshot_at: datetime | None = None

    for raw in records:
        record = _as_mapping(raw)
        total += 1
        status = sanitize_choice(record.get("status"), BACKUP_STATUSES, "pending")
        by_status[status] += 1
        if str(_verification_status(record) or "").strip().lower() == "verified":
            verified += 1
        if status in {"failed", "expired"}:
            unhealthy += 1

        completed_at = coerce_timestamp(_field(record, "completed_at", "completedAt"))
        if status == "success" and completed_at is not None:
            if latest_success_at is None or completed_at > latest_success_at:
                latest_success_at = completed_at
        started_at = coerce_timestamp(_field(record, "started_at", "startedAt"))
        if started_at is not None:
            if oldest_snapshot_at is None or started_at < oldest_snapshot_at:
                oldest_snapshot_at = started_at

    return {
        "total": total,
        "byStatus": by_status,
        "verified": verified,
        "unhealthy": unhealthy,
        "latestSuccessAt": to_iso(latest_success_at),
        "oldestSnapshotAt": to_iso(oldest_snapshot_at),
    }


def summarize_drill_readiness(
    records: Iterable[Any],
    *,
    now: datetime | None = None,
    window_days: int = 90,
) -> dict[str, Any]:
    by_status = {status: 0 for status in DRILL_STATUSES}
    total = 0
    passed_within_window = 0
    outstanding_issues = 0
    latest_passed_at: datetime | None = None
    window_start = (now or datetime.now(timezone.utc)) - timedelta(days=window_days)

    for raw in records:
        record = _as_mapping(raw)
        total += 1
        status = sanitize_choice(record.get("status"), DRILL_STATUSES, "scheduled")
        by_status[status] += 1
        verified_at = coerce_timestamp(_field(record, "verified_at", "verifiedAt"))
        if status == "passed" and verified_at is not None:
            if verified_at >= window_start:
                passed_within_window += 1
            if latest_passed_at is None or verified_at > latest_passed_at:
                latest_passed_at = verified_at
        issues = normalize_issues(_field(record, "issues_found", "issuesFound"))
        if issues and status != "passed":
            outstanding_issues += 1

    return {
        "total": total,
        "byStatus": by_status,
        "passedWithinQuarter": passed_within_window,
        "outstandingIssues": outstanding_issues,
        "latestPassedAt": to_iso(latest_passed_at),
    }
