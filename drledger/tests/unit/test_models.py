from __future__ import annotations

from datetime import datetime, timezone

import pytest

from drledger.core.config import get_settings
from drledger.core.errors import ValidationError
from drledger.domain.models import BackupSnapshot, DisasterRecoveryDrill, normalize_snapshot_fields


def _snapshot(**overrides) -> BackupSnapshot:
    values = {
        "snapshot_key": "Prod Full",
        "source": "primary-db",
        "environment": "production",
    }
    values.update(overrides)
    return BackupSnapshot(**values)


def test_bogus_backup_type_defaults_to_full() -> None:
    # Direct construction never raises on unknown enum values.
    snapshot = _snapshot(backup_type="bogus", status="weird", verification_status="???")
    assert snapshot.backup_type == "full"
    assert snapshot.status == "pending"
    assert snapshot.verification_status == "unverified"
    assert snapshot.snapshot_key == "prod-full"


def test_expiry_is_cleared_unless_success() -> None:
    # Only successful snapshots may carry an expiry.
    expires = datetime(2024, 2, 1, tzinfo=timezone.utc)
    pending = _snapshot(status="pending", expires_at=expires)
    assert pending.expires_at is None
    success = _snapshot(status="success", expires_at=expires)
    assert success.expires_at == expires

    success.apply({"status": "failed"})
    assert success.expires_at is None


def test_apply_rejects_key_changes() -> None:
    snapshot = _snapshot()
    snapshot.apply({"snapshot_key": "PROD FULL"})
    assert snapshot.snapshot_key == "prod-full"
    with pytest.raises(ValidationError):
        snapshot.apply({"snapshot_key": "another-key"})


def test_retention_defaults_from_settings(monkeypatch) -> None:
    monkeypatch.setenv("BACKUP_DEFAULT_RETENTION_DAYS", "14")
    get_settings.cache_clear()
    snapshot = _snapshot(retention_days="not-a-number")
    assert snapshot.retention_days == 14


def test_partial_normalization_only_touches_supplied_fields() -> None:
    normalized = normalize_snapshot_fields({"status": "SUCCESS"}, partial=True)
    assert normalized == {"status": "success"}


def test_drill_construction_sanitizes_fields() -> None:
    drill = DisasterRecoveryDrill(
        drill_key="Q4 Ransomware!",
        name="  Ransomware rehearsal ",
        scenario="alien_invasion",
        status="RUNNING",
        environment="production",
        rto_minutes=-3,
        issues_found=["  ", "stale replica"],
    )
    assert drill.drill_key == "q4-ransomware"
    assert drill.name == "Ransomware rehearsal"
    assert drill.scenario == "regional_outage"
    assert drill.status == "running"
    assert drill.rto_minutes is None
    assert drill.issues_found == ["stale replica"]


def test_snapshot_health_flag() -> None:
    assert _snapshot(status="success").is_healthy()
    assert not _snapshot(status="expired").is_healthy()
