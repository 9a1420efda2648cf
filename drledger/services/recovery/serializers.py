from __future__ import annotations

from typing import Any, Callable, Literal

from sqlalchemy import inspect

from drledger.domain.models import BackupSnapshot, DisasterRecoveryDrill
from drledger.domain.normalization import to_iso


RecordKind = Literal["backup_snapshot", "recovery_drill"]


def serialize_snapshot(snapshot: BackupSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "key": snapshot.snapshot_key,
        "type": snapshot.backup_type,
        "source": snapshot.source,
        "environment": snapshot.environment,
        "region": snapshot.region,
        "status": snapshot.status,
        "storage": {
            "locationKey": snapshot.storage_location_key,
            "class": snapshot.storage_class,
            "uri": snapshot.storage_uri,
        },
        "checksum": (
            {"value": snapshot.checksum, "algorithm": snapshot.checksum_algorithm}
            if snapshot.checksum
            else None
        ),
        "retentionDays": snapshot.retention_days,
        "initiatedBy": snapshot.initiated_by,
        "initiatedFrom": snapshot.initiated_from,
        "verification": {
            "status": snapshot.verification_status,
            "verifiedAt": to_iso(snapshot.verified_at),
        },
        "startedAt": to_iso(snapshot.started_at),
        "completedAt": to_iso(snapshot.completed_at),
        "expiresAt": to_iso(snapshot.expires_at),
        "sizeBytes": snapshot.size_bytes,
        "failureReason": snapshot.failure_reason,
        "notes": snapshot.notes,
        "datasetScope": dict(snapshot.dataset_scope or {}),
        "metadata": dict(snapshot.metadata_json or {}),
        "createdAt": to_iso(snapshot.created_at),
        "updatedAt": to_iso(snapshot.updated_at),
    }


def serialize_drill(drill: DisasterRecoveryDrill) -> dict[str, Any]:
    return {
        "id": drill.id,
        "key": drill.drill_key,
        "name": drill.name,
        "scenario": drill.scenario,
        "status": drill.status,
        "environment": drill.environment,
        "region": drill.region,
        "objectives": {"rtoMinutes": drill.rto_minutes, "rpoMinutes": drill.rpo_minutes},
        "restore": {
            "durationMs": drill.restore_duration_ms,
            "dataLossSeconds": drill.data_loss_seconds,
        },
        "initiatedBy": drill.initiated_by,
        "initiatedFrom": drill.initiated_from,
        "startedAt": to_iso(drill.started_at),
        "restoreStartedAt": to_iso(drill.restore_started_at),
        "restoreCompletedAt": to_iso(drill.restore_completed_at),
        "completedAt": to_iso(drill.completed_at),
        "verifiedAt": to_iso(drill.verified_at),
        "summary": drill.summary,
        "issuesFound": list(drill.issues_found or []),
        "evidenceUri": drill.evidence_uri,
        "metadata": dict(drill.metadata_json or {}),
        "createdAt": to_iso(drill.created_at),
        "updatedAt": to_iso(drill.updated_at),
    }


_SERIALIZERS: dict[str, Callable[[Any], dict[str, Any]]] = {
    "backup_snapshot": serialize_snapshot,
    "recovery_drill": serialize_drill,
}


def serialize_record(kind: RecordKind, record: Any) -> dict[str, Any]:
    # Dispatch on the declared kind; records are never probed for methods.
    serializer = _SERIALIZERS.get(kind)
    if serializer is None:
        raise ValueError(f"unknown record kind: {kind}")
    return serializer(record)


def record_to_plain(record: BackupSnapshot | DisasterRecoveryDrill) -> dict[str, Any]:
    # Detach column values so summaries work on plain mappings.
    return {attr.key: getattr(record, attr.key) for attr in inspect(record).mapper.column_attrs}
