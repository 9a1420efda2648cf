from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from drledger.core.config import get_settings
from drledger.core.errors import DuplicateKeyError, NotFoundError, ValidationError
from drledger.domain.models import BackupSnapshot
from drledger.domain.normalization import (
    BACKUP_STATUSES,
    BACKUP_TYPES,
    BACKUP_VERIFICATION_STATUSES,
    assert_in_set,
    clean_text,
    coerce_positive_integer,
    ensure_utc,
    normalize_dataset_scope,
    normalize_key,
)
from drledger.persistence.db import Store
from drledger.persistence.repos import snapshots as snapshots_repo
from drledger.services.audit import (
    AuditContext,
    build_audit_metadata,
    coerce_context,
    resolve_initiated_by,
    resolve_initiated_from,
)
from drledger.services.recovery.common import (
    managed_session,
    require_transition,
    resolve_limit,
    utc_now,
)
from drledger.services.recovery.payloads import (
    SnapshotCompletePayload,
    SnapshotFailPayload,
    SnapshotListFilters,
    SnapshotSchedulePayload,
    SnapshotVerifyPayload,
    parse_payload,
)
from drledger.services.recovery.serializers import serialize_record


logger = logging.getLogger(__name__)

ENTITY = "backup snapshot"
VERIFICATION_FAILED_REASON = "Backup verification failed."
UNSPECIFIED_FAILURE_REASON = "Backup failed without a specified reason."

_RUNNABLE_FROM = {"pending", "running"}
_COMPLETABLE_FROM = {"pending", "running"}

Payload = Mapping[str, Any] | None
Context = AuditContext | Mapping[str, Any] | None


def resolve_expires_at(
    completed_at: datetime | None,
    retention_days: int | None,
    fallback: datetime | None = None,
) -> datetime | None:
    # Expiry is anchored on completion; without both inputs the previous value stands.
    completion = ensure_utc(completed_at)
    if not retention_days or completion is None:
        return fallback
    return completion + timedelta(days=retention_days)


async def _load_snapshot(session: AsyncSession, id_or_key: Any, *, lock: bool = False) -> BackupSnapshot:
    snapshot = await snapshots_repo.find_by_id_or_key(session, id_or_key, lock=lock)
    if snapshot is None:
        raise NotFoundError("Backup snapshot not found.")
    return snapshot


def _merged_metadata(snapshot: BackupSnapshot, extra: Mapping[str, Any] | None) -> dict[str, Any]:
    return {**(snapshot.metadata_json or {}), **(extra or {})}


async def schedule_backup_snapshot(
    store: Store,
    payload: SnapshotSchedulePayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(SnapshotSchedulePayload, payload)
    audit = coerce_context(context)
    if not clean_text(data.snapshot_key):
        raise ValidationError("snapshotKey is required to schedule a backup snapshot.")
    snapshot_key = normalize_key(data.snapshot_key)
    if not snapshot_key:
        raise ValidationError("snapshotKey must contain at least one letter or digit.")
    source = clean_text(data.source)
    if not source:
        raise ValidationError("source is required to schedule a backup snapshot.")
    environment = clean_text(data.environment)
    if not environment:
        raise ValidationError("environment is required to schedule a backup snapshot.")
    backup_type = assert_in_set(data.backup_type, BACKUP_TYPES, "Unsupported backup type.") or "full"
    status = assert_in_set(data.status, BACKUP_STATUSES, "Unsupported backup status.") or "pending"
    verification_status = (
        assert_in_set(
            data.verification_status,
            BACKUP_VERIFICATION_STATUSES,
            "Unsupported verification status.",
        )
        or "unverified"
    )
    retention_days = coerce_positive_integer(
        data.retention_days, get_settings().backup_default_retention_days
    )
    metadata = build_audit_metadata(data.metadata, audit)

    async with managed_session(store, session) as active:
        # Lock any existing row so concurrent schedulers serialize on the key.
        existing = await snapshots_repo.find_by_key(active, snapshot_key, lock=True)
        if existing is not None:
            raise DuplicateKeyError("A snapshot with this key already exists.")

        snapshot = BackupSnapshot(
            snapshot_key=snapshot_key,
            backup_type=backup_type,
            source=source,
            environment=environment,
            region=data.region,
            status=status,
            storage_location_key=data.storage_location_key,
            storage_class=data.storage_class,
            storage_uri=data.storage_uri,
            checksum=data.checksum,
            checksum_algorithm=data.checksum_algorithm,
            retention_days=retention_days,
            size_bytes=data.size_bytes,
            initiated_by=resolve_initiated_by(data.initiated_by, audit),
            initiated_from=resolve_initiated_from(data.initiated_from, audit),
            verification_status=verification_status,
            started_at=data.started_at,
            completed_at=data.completed_at,
            expires_at=data.expires_at,
            failure_reason=data.failure_reason,
            notes=data.notes,
            dataset_scope=normalize_dataset_scope(data.dataset_scope),
            metadata_json=metadata,
        )
        active.add(snapshot)
        try:
            await active.flush()
        except IntegrityError as exc:
            # The unique index catches inserts that raced past the locked read.
            raise DuplicateKeyError("A snapshot with this key already exists.") from exc

        logger.info("backup_snapshot_scheduled snapshot_key=%s", snapshot_key)
        return serialize_record("backup_snapshot", snapshot)


async def mark_backup_snapshot_running(
    store: Store,
    snapshot_id_or_key: Any,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    audit = coerce_context(context)
    async with managed_session(store, session) as active:
        snapshot = await _load_snapshot(active, snapshot_id_or_key, lock=True)
        require_transition(ENTITY, snapshot.status, _RUNNABLE_FROM, "start")
        snapshot.apply(
            {
                "status": "running",
                # Re-entry keeps the original start time.
                "started_at": snapshot.started_at or utc_now(),
                "metadata_json": build_audit_metadata(snapshot.metadata_json, audit),
            }
        )
        await active.flush()
        logger.info("backup_snapshot_running snapshot_key=%s", snapshot.snapshot_key)
        return serialize_record("backup_snapshot", snapshot)


async def complete_backup_snapshot(
    store: Store,
    snapshot_id_or_key: Any,
    payload: SnapshotCompletePayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(SnapshotCompletePayload, payload)
    audit = coerce_context(context)
    verification_override = assert_in_set(
        data.verification_status, BACKUP_VERIFICATION_STATUSES, "Unsupported verification status."
    )
    status_override = assert_in_set(
        data.status, BACKUP_STATUSES, "Unsupported backup status override."
    )
    retention_override = coerce_positive_integer(data.retention_days)

    async with managed_session(store, session) as active:
        snapshot = await _load_snapshot(active, snapshot_id_or_key, lock=True)
        require_transition(ENTITY, snapshot.status, _COMPLETABLE_FROM, "complete")
        now = utc_now()
        completed_at = data.completed_at or now
        verification_status = verification_override or snapshot.verification_status or "unverified"
        if verification_status in {"verified", "failed"}:
            verified_at = data.verified_at or now
        else:
            verified_at = snapshot.verified_at
        final_status = status_override or ("failed" if verification_status == "failed" else "success")
        retention_days = retention_override or snapshot.retention_days
        expires_at = (
            resolve_expires_at(completed_at, retention_days, snapshot.expires_at)
            if final_status == "success"
            else None
        )
        failure_reason = (
            data.failure_reason or snapshot.failure_reason or VERIFICATION_FAILED_REASON
            if final_status == "failed"
            else None
        )

        snapshot.apply(
            {
                "status": final_status,
                "completed_at": completed_at,
                "size_bytes": data.size_bytes if data.size_bytes is not None else snapshot.size_bytes,
                "checksum": data.checksum or snapshot.checksum,
                "checksum_algorithm": data.checksum_algorithm or snapshot.checksum_algorithm,
                "storage_uri": data.storage_uri or snapshot.storage_uri,
                "storage_class": data.storage_class or snapshot.storage_class,
                "storage_location_key": data.storage_location_key or snapshot.storage_location_key,
                "retention_days": retention_days,
                "verification_status": verification_status,
                "verified_at": verified_at,
                "expires_at": expires_at,
                "failure_reason": failure_reason,
                "notes": data.notes or snapshot.notes,
                "metadata_json": build_audit_metadata(_merged_metadata(snapshot, data.metadata), audit),
            }
        )
        await active.flush()
        logger.info(
            "backup_snapshot_completed snapshot_key=%s status=%s verification=%s",
            snapshot.snapshot_key,
            snapshot.status,
            snapshot.verification_status,
        )
        return serialize_record("backup_snapshot", snapshot)


async def fail_backup_snapshot(
    store: Store,
    snapshot_id_or_key: Any,
    payload: SnapshotFailPayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(SnapshotFailPayload, payload)
    audit = coerce_context(context)
    failure_reason = clean_text(data.failure_reason) or UNSPECIFIED_FAILURE_REASON
    verification_status = assert_in_set(
        data.verification_status or "failed",
        BACKUP_VERIFICATION_STATUSES,
        "Unsupported verification status.",
    )

    async with managed_session(store, session) as active:
        snapshot = await _load_snapshot(active, snapshot_id_or_key, lock=True)
        snapshot.apply(
            {
                "status": "failed",
                "failure_reason": failure_reason,
                "verification_status": verification_status,
                "completed_at": data.completed_at or utc_now(),
                "expires_at": None,
                "metadata_json": build_audit_metadata(_merged_metadata(snapshot, data.metadata), audit),
            }
        )
        await active.flush()
        logger.warning(
            "backup_snapshot_failed snapshot_key=%s reason=%s", snapshot.snapshot_key, failure_reason
        )
        return serialize_record("backup_snapshot", snapshot)


async def verify_backup_snapshot(
    store: Store,
    snapshot_id_or_key: Any,
    payload: SnapshotVerifyPayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    """Record an integrity check; the outcome may flip status between success and failed.

    ``verified`` derives ``success`` and ``failed`` derives ``failed`` unless a
    ``backupStatus`` override is given. Any current status may be verified.
    Retention overrides are stored even when the status does not become
    ``success`` so a later success picks them up.
    """
    data = parse_payload(SnapshotVerifyPayload, payload)
    audit = coerce_context(context)
    verification_status = assert_in_set(
        data.verification_status or data.status or "verified",
        BACKUP_VERIFICATION_STATUSES,
        "Unsupported verification status.",
    )
    backup_status_override = assert_in_set(
        data.backup_status or data.snapshot_status,
        BACKUP_STATUSES,
        "Unsupported backup status override.",
    )
    retention_override = coerce_positive_integer(data.retention_days)

    async with managed_session(store, session) as active:
        snapshot = await _load_snapshot(active, snapshot_id_or_key, lock=True)
        now = utc_now()
        changes: dict[str, Any] = {
            "verification_status": verification_status,
            "verified_at": now,
            "metadata_json": build_audit_metadata(
                {**(snapshot.metadata_json or {}), "verification": data.metadata or {}},
                audit,
            ),
        }
        derived_status = backup_status_override or {"verified": "success", "failed": "failed"}.get(
            verification_status
        )
        if derived_status:
            changes["status"] = derived_status
            if derived_status == "failed":
                changes["failure_reason"] = (
                    data.failure_reason or snapshot.failure_reason or VERIFICATION_FAILED_REASON
                )
                changes["expires_at"] = None
            elif derived_status == "success":
                changes["failure_reason"] = data.failure_reason
                changes["expires_at"] = resolve_expires_at(
                    snapshot.completed_at or now,
                    retention_override or snapshot.retention_days,
                    snapshot.expires_at,
                )
        elif data.failure_reason:
            changes["failure_reason"] = data.failure_reason
        if retention_override is not None:
            changes["retention_days"] = retention_override
        if "notes" in data.model_fields_set:
            changes["notes"] = data.notes

        snapshot.apply(changes)
        await active.flush()
        logger.info(
            "backup_snapshot_verified snapshot_key=%s verification=%s status=%s",
            snapshot.snapshot_key,
            snapshot.verification_status,
            snapshot.status,
        )
        return serialize_record("backup_snapshot", snapshot)


async def list_backup_snapshots(
    store: Store,
    filters: SnapshotListFilters | Payload = None,
    *,
    session: AsyncSession | None = None,
) -> list[dict[str, Any]]:
    data = parse_payload(SnapshotListFilters, filters)
    status = assert_in_set(data.status, BACKUP_STATUSES, "Unsupported status filter.")
    verification_status = assert_in_set(
        data.verification_status, BACKUP_VERIFICATION_STATUSES, "Unsupported verification filter."
    )
    limit = resolve_limit(data.limit)
    async with managed_session(store, session) as active:
        snapshots = await snapshots_repo.list_snapshots(
            active,
            environment=clean_text(data.environment),
            status=status,
            verification_status=verification_status,
            source=clean_text(data.source),
            limit=limit,
        )
        return [serialize_record("backup_snapshot", snapshot) for snapshot in snapshots]


async def get_backup_snapshot(
    store: Store,
    snapshot_id_or_key: Any,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    async with managed_session(store, session) as active:
        snapshot = await _load_snapshot(active, snapshot_id_or_key)
        return serialize_record("backup_snapshot", snapshot)
