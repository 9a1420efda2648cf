from __future__ import annotations

from datetime import datetime, timezone

from drledger.services.audit import (
    AuditActor,
    AuditContext,
    build_audit_metadata,
    coerce_context,
    resolve_initiated_by,
    resolve_initiated_from,
)


def test_coerce_context_from_mapping() -> None:
    context = coerce_context(
        {"actor": {"id": 3, "email": "sre@example.com", "role": "operator"}, "channel": "cron"}
    )
    assert context.actor == AuditActor(id=3, email="sre@example.com", role="operator")
    assert context.resolved_source == "cron"
    assert context.resolved_channel == "cron"


def test_missing_context_yields_null_audit_fields() -> None:
    context = coerce_context(None)
    captured_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    metadata = build_audit_metadata(None, context, captured_at=captured_at)
    assert metadata == {
        "audit": {
            "actor": None,
            "actorId": None,
            "actorRole": None,
            "source": None,
            "capturedAt": "2024-01-01T00:00:00+00:00",
        }
    }


def test_build_audit_metadata_keeps_existing_keys() -> None:
    # Audit stamping merges; it never drops caller metadata or prior audit keys.
    context = AuditContext(actor=AuditActor(id=9, name="Robin"), source="api")
    metadata = build_audit_metadata(
        {"ticket": "CHG-1", "audit": {"requestId": "r-1"}},
        context,
    )
    assert metadata["ticket"] == "CHG-1"
    assert metadata["audit"]["requestId"] == "r-1"
    assert metadata["audit"]["actor"] == "Robin"
    assert metadata["audit"]["actorId"] == 9
    assert metadata["audit"]["source"] == "api"


def test_initiated_by_and_from_resolution() -> None:
    context = AuditContext(
        actor=AuditActor(id=5, email="ops@example.com"),
        source="dashboard",
        channel="http",
    )
    assert resolve_initiated_by(None, context) == "ops@example.com"
    assert resolve_initiated_by("scheduler", context) == "scheduler"
    assert resolve_initiated_by(None, AuditContext(actor=AuditActor(id=5))) == 5
    assert resolve_initiated_from(None, context) == "http"
    assert resolve_initiated_from(None, AuditContext(source="cron")) == "cron"
