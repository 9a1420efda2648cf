from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from drledger.core.config import get_settings
from drledger.core.errors import ValidationError
from drledger.domain.normalization import (
    BACKUP_STATUSES,
    BACKUP_TYPES,
    BACKUP_VERIFICATION_STATUSES,
    DRILL_SCENARIOS,
    DRILL_STATUSES,
    KEY_MAX_LENGTH,
    clean_text,
    coerce_non_negative_integer,
    coerce_positive_integer,
    coerce_timestamp,
    ensure_utc,
    normalize_dataset_scope,
    normalize_issues,
    normalize_key,
    normalize_metadata,
    sanitize_choice,
)


class UtcDateTime(TypeDecorator):
    # Always hand back aware UTC datetimes, including on SQLite.
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        return ensure_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        return ensure_utc(value)


# JSONB on Postgres, generic JSON elsewhere.
JsonDocument = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
SurrogateId = BigInteger().with_variant(Integer(), "sqlite")

Normalizer = Callable[[Any], Any]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _default_retention_days() -> int:
    return get_settings().backup_default_retention_days


def _normalize_fields(
    values: Mapping[str, Any],
    normalizers: Mapping[str, Normalizer],
    *,
    partial: bool,
) -> dict[str, Any]:
    # Partial passes touch only the supplied keys; full passes fill every sanitized column.
    normalized = dict(values)
    for field, normalizer in normalizers.items():
        if partial and field not in values:
            continue
        normalized[field] = normalizer(values.get(field))
    return normalized


_SNAPSHOT_NORMALIZERS: dict[str, Normalizer] = {
    "snapshot_key": normalize_key,
    "backup_type": lambda value: sanitize_choice(value, BACKUP_TYPES, "full"),
    "status": lambda value: sanitize_choice(value, BACKUP_STATUSES, "pending"),
    "verification_status": lambda value: sanitize_choice(
        value, BACKUP_VERIFICATION_STATUSES, "unverified"
    ),
    "source": clean_text,
    "environment": clean_text,
    "region": clean_text,
    "storage_location_key": clean_text,
    "storage_class": clean_text,
    "storage_uri": clean_text,
    "checksum": clean_text,
    "checksum_algorithm": clean_text,
    "initiated_by": clean_text,
    "initiated_from": clean_text,
    "failure_reason": clean_text,
    "notes": clean_text,
    "retention_days": lambda value: coerce_positive_integer(value, _default_retention_days()),
    "size_bytes": coerce_non_negative_integer,
    "started_at": coerce_timestamp,
    "completed_at": coerce_timestamp,
    "expires_at": coerce_timestamp,
    "verified_at": coerce_timestamp,
    "dataset_scope": normalize_dataset_scope,
    "metadata_json": normalize_metadata,
}

_DRILL_NORMALIZERS: dict[str, Normalizer] = {
    "drill_key": normalize_key,
    "name": clean_text,
    "scenario": lambda value: sanitize_choice(value, DRILL_SCENARIOS, "regional_outage"),
    "status": lambda value: sanitize_choice(value, DRILL_STATUSES, "scheduled"),
    "environment": clean_text,
    "region": clean_text,
    "rto_minutes": coerce_non_negative_integer,
    "rpo_minutes": coerce_non_negative_integer,
    "restore_duration_ms": coerce_non_negative_integer,
    "data_loss_seconds": coerce_non_negative_integer,
    "initiated_by": clean_text,
    "initiated_from": clean_text,
    "started_at": coerce_timestamp,
    "restore_started_at": coerce_timestamp,
    "restore_completed_at": coerce_timestamp,
    "completed_at": coerce_timestamp,
    "verified_at": coerce_timestamp,
    "summary": clean_text,
    "issues_found": normalize_issues,
    "evidence_uri": clean_text,
    "metadata_json": normalize_metadata,
}


def normalize_snapshot_fields(values: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
    normalized = _normalize_fields(values, _SNAPSHOT_NORMALIZERS, partial=partial)
    if not partial and normalized.get("status") != "success":
        normalized["expires_at"] = None
    return normalized


def normalize_drill_fields(values: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
    return _normalize_fields(values, _DRILL_NORMALIZERS, partial=partial)


class Base(DeclarativeBase):
    pass


class BackupSnapshot(Base):
    __tablename__ = "backup_snapshots"
    __table_args__ = (
        Index("ux_backup_snapshots_snapshot_key", "snapshot_key", unique=True),
        Index("ix_backup_snapshots_status", "status"),
        Index("ix_backup_snapshots_environment", "environment"),
        Index("ix_backup_snapshots_started_at", "started_at"),
    )

    # Track one backup attempt per source/environment for DR readiness reporting.
    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    snapshot_key: Mapped[str] = mapped_column(String(KEY_MAX_LENGTH), nullable=False)
    backup_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    environment: Mapped[str] = mapped_column(String, nullable=False)
    region: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    storage_location_key: Mapped[str | None] = mapped_column(String, nullable=True)
    storage_class: Mapped[str | None] = mapped_column(String, nullable=True)
    storage_uri: Mapped[str | None] = mapped_column(String, nullable=True)
    checksum: Mapped[str | None] = mapped_column(String, nullable=True)
    checksum_algorithm: Mapped[str | None] = mapped_column(String, nullable=True)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    initiated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    initiated_from: Mapped[str | None] = mapped_column(String, nullable=True)
    # Integrity check state is orthogonal to whether the backup itself finished.
    verification_status: Mapped[str] = mapped_column(String(32), nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    # Only populated while status is success.
    expires_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    dataset_scope: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDocument, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime(), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(), default=_utc_now, onupdate=_utc_now, server_default=func.now()
    )

    def __init__(self, **values: Any) -> None:
        super().__init__(**normalize_snapshot_fields(values))

    def apply(self, changes: Mapping[str, Any]) -> None:
        # Run the same sanitization as construction before mutating columns.
        normalized = normalize_snapshot_fields(changes, partial=True)
        if "snapshot_key" in normalized and normalized["snapshot_key"] != self.snapshot_key:
            raise ValidationError("snapshotKey is immutable once a snapshot exists.")
        for field, value in normalized.items():
            setattr(self, field, value)
        if self.status != "success":
            self.expires_at = None

    def is_healthy(self) -> bool:
        return self.status in {"success", "running"}


class DisasterRecoveryDrill(Base):
    __tablename__ = "disaster_recovery_drills"
    __table_args__ = (
        Index("ux_disaster_recovery_drills_drill_key", "drill_key", unique=True),
        Index("ix_disaster_recovery_drills_status", "status"),
        Index("ix_disaster_recovery_drills_environment", "environment"),
        Index("ix_disaster_recovery_drills_started_at", "started_at"),
    )

    # Persist recovery rehearsals and their observed RTO/RPO for readiness evidence.
    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    drill_key: Mapped[str] = mapped_column(String(KEY_MAX_LENGTH), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    scenario: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    environment: Mapped[str] = mapped_column(String, nullable=False)
    region: Mapped[str | None] = mapped_column(String, nullable=True)
    rto_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rpo_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    restore_duration_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    data_loss_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    initiated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    initiated_from: Mapped[str | None] = mapped_column(String, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    restore_started_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    restore_completed_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    issues_found: Mapped[list[str]] = mapped_column(JsonDocument, nullable=False, default=list)
    evidence_uri: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDocument, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime(), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(), default=_utc_now, onupdate=_utc_now, server_default=func.now()
    )

    def __init__(self, **values: Any) -> None:
        super().__init__(**normalize_drill_fields(values))

    def apply(self, changes: Mapping[str, Any]) -> None:
        normalized = normalize_drill_fields(changes, partial=True)
        if "drill_key" in normalized and normalized["drill_key"] != self.drill_key:
            raise ValidationError("drillKey is immutable once a drill exists.")
        for field, value in normalized.items():
            setattr(self, field, value)
