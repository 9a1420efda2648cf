from __future__ import annotations

import pytest

from drledger.core.errors import ConflictError, DuplicateKeyError, NotFoundError, ValidationError
from drledger.persistence.repos import drills as drills_repo
from drledger.services.recovery import BackupRecoveryOrchestrator


SCENARIO_B = {
    "drillKey": "prod-ransomware-q4",
    "name": "Q4 ransomware rehearsal",
    "environment": "production",
    "scenario": "ransomware_response",
    "rtoMinutes": 45,
    "rpoMinutes": 15,
}


async def _no_existing_row(*_args, **_kwargs) -> None:
    return None


@pytest.mark.asyncio
async def test_recovery_drill_happy_path(
    orchestrator: BackupRecoveryOrchestrator, audit_context: dict
) -> None:
    # Observed RTO comes from the restore window and replaces the scheduled target.
    scheduled = await orchestrator.schedule_recovery_drill(SCENARIO_B, audit_context)
    assert scheduled["status"] == "scheduled"
    assert scheduled["objectives"] == {"rtoMinutes": 45, "rpoMinutes": 15}
    assert scheduled["initiatedBy"] == "ops@example.com"

    started = await orchestrator.start_recovery_drill(
        "prod-ransomware-q4", {"restoreStartedAt": "2024-01-02T10:00:00Z"}, audit_context
    )
    assert started["status"] == "running"
    assert started["startedAt"] is not None
    assert started["restoreStartedAt"] == "2024-01-02T10:00:00+00:00"

    completed = await orchestrator.complete_recovery_drill(
        scheduled["id"],
        {"restoreCompletedAt": "2024-01-02T10:20:00Z", "dataLossSeconds": 120},
        audit_context,
    )
    assert completed["status"] == "passed"
    assert completed["restore"] == {"durationMs": 1_200_000, "dataLossSeconds": 120}
    assert completed["objectives"] == {"rtoMinutes": 20, "rpoMinutes": 15}
    assert completed["verifiedAt"] == completed["completedAt"]
    assert completed["metadata"]["audit"]["actor"] == "ops@example.com"


@pytest.mark.asyncio
async def test_complete_defaults_data_loss_to_zero(orchestrator: BackupRecoveryOrchestrator) -> None:
    await orchestrator.schedule_recovery_drill({**SCENARIO_B, "rpoMinutes": None})
    completed = await orchestrator.complete_recovery_drill("prod-ransomware-q4", {})
    assert completed["restore"]["dataLossSeconds"] == 0
    assert completed["restore"]["durationMs"] is not None


@pytest.mark.asyncio
async def test_fail_appends_reason_to_existing_issues(orchestrator: BackupRecoveryOrchestrator) -> None:
    # Earlier findings survive a failure; the reason is appended.
    await orchestrator.schedule_recovery_drill({**SCENARIO_B, "issuesFound": ["dns ttl too long"]})
    await orchestrator.start_recovery_drill("prod-ransomware-q4")
    failed = await orchestrator.fail_recovery_drill(
        "prod-ransomware-q4", {"failureReason": "replica promotion stalled"}
    )
    assert failed["status"] == "failed"
    assert failed["issuesFound"] == ["dns ttl too long", "replica promotion stalled"]
    assert failed["summary"] == "Recovery drill failed."
    assert failed["completedAt"] is not None


@pytest.mark.asyncio
async def test_fail_without_reason_records_unspecified(orchestrator: BackupRecoveryOrchestrator) -> None:
    await orchestrator.schedule_recovery_drill(SCENARIO_B)
    failed = await orchestrator.fail_recovery_drill("prod-ransomware-q4")
    assert failed["issuesFound"] == ["Unspecified failure"]

    replaced = await orchestrator.fail_recovery_drill(
        "prod-ransomware-q4", {"issuesFound": ["only this"], "summary": "Second attempt failed."}
    )
    assert replaced["issuesFound"] == ["only this"]
    assert replaced["summary"] == "Second attempt failed."


@pytest.mark.asyncio
async def test_non_list_issues_do_not_replace_findings(orchestrator: BackupRecoveryOrchestrator) -> None:
    await orchestrator.schedule_recovery_drill({**SCENARIO_B, "issuesFound": ["old"]})
    failed = await orchestrator.fail_recovery_drill(
        "prod-ransomware-q4", {"issuesFound": "single", "failureReason": "boom"}
    )
    assert failed["issuesFound"] == ["old", "boom"]

    await orchestrator.schedule_recovery_drill(
        {**SCENARIO_B, "drillKey": "staging-restore", "issuesFound": ["slow dns"]}
    )
    completed = await orchestrator.complete_recovery_drill(
        "staging-restore", {"issuesFound": {"note": "not a list"}}
    )
    assert completed["status"] == "passed"
    assert completed["issuesFound"] == ["slow dns"]


@pytest.mark.asyncio
async def test_start_reentry_keeps_start_time(orchestrator: BackupRecoveryOrchestrator) -> None:
    await orchestrator.schedule_recovery_drill(SCENARIO_B)
    first = await orchestrator.start_recovery_drill("prod-ransomware-q4")
    again = await orchestrator.start_recovery_drill("prod-ransomware-q4")
    assert again["status"] == "running"
    assert again["startedAt"] == first["startedAt"]


@pytest.mark.asyncio
async def test_unique_index_rejects_duplicate_that_skips_locked_read(
    orchestrator: BackupRecoveryOrchestrator, monkeypatch
) -> None:
    # A racing insert that missed the locked lookup still surfaces as a duplicate.
    await orchestrator.schedule_recovery_drill(SCENARIO_B)
    monkeypatch.setattr(drills_repo, "find_by_key", _no_existing_row)
    with pytest.raises(DuplicateKeyError):
        await orchestrator.schedule_recovery_drill(SCENARIO_B)

    listed = await orchestrator.list_recovery_drills()
    assert [item["key"] for item in listed] == ["prod-ransomware-q4"]


@pytest.mark.asyncio
async def test_cancel_drill(orchestrator: BackupRecoveryOrchestrator) -> None:
    await orchestrator.schedule_recovery_drill(SCENARIO_B)
    cancelled = await orchestrator.cancel_recovery_drill(
        "prod-ransomware-q4", {"reason": "Change freeze"}
    )
    assert cancelled["status"] == "cancelled"
    assert cancelled["summary"] == "Change freeze"
    assert cancelled["completedAt"] is not None

    with pytest.raises(ConflictError):
        await orchestrator.start_recovery_drill("prod-ransomware-q4")
    with pytest.raises(ConflictError):
        await orchestrator.cancel_recovery_drill("prod-ransomware-q4")


@pytest.mark.asyncio
async def test_drill_validation_and_lookup_errors(orchestrator: BackupRecoveryOrchestrator) -> None:
    with pytest.raises(ValidationError, match="drillKey is required to schedule a recovery drill."):
        await orchestrator.schedule_recovery_drill({"name": "n", "environment": "e"})
    with pytest.raises(ValidationError, match="name"):
        await orchestrator.schedule_recovery_drill({"drillKey": "k", "environment": "e"})
    with pytest.raises(ValidationError):
        await orchestrator.schedule_recovery_drill({**SCENARIO_B, "scenario": "meteor"})
    with pytest.raises(ValidationError):
        await orchestrator.complete_recovery_drill("missing", {"status": "sort-of"})
    with pytest.raises(NotFoundError, match="Disaster recovery drill not found."):
        await orchestrator.get_recovery_drill("missing")

    await orchestrator.schedule_recovery_drill(SCENARIO_B)
    with pytest.raises(DuplicateKeyError):
        await orchestrator.schedule_recovery_drill({**SCENARIO_B, "drillKey": "PROD ransomware Q4"})


@pytest.mark.asyncio
async def test_list_drills_filters(orchestrator: BackupRecoveryOrchestrator) -> None:
    await orchestrator.schedule_recovery_drill(SCENARIO_B)
    await orchestrator.schedule_recovery_drill(
        {
            "drillKey": "staging-region",
            "name": "Regional failover",
            "environment": "staging",
            "scenario": "regional_outage",
        }
    )
    with pytest.raises(ValidationError):
        await orchestrator.list_recovery_drills({"scenario": "meteor"})

    ransomware = await orchestrator.list_recovery_drills({"scenario": "ransomware_response"})
    assert [item["key"] for item in ransomware] == ["prod-ransomware-q4"]
    staging = await orchestrator.list_recovery_drills({"environment": "staging"})
    assert [item["key"] for item in staging] == ["staging-region"]
    assert len(await orchestrator.list_recovery_drills({"status": "scheduled"})) == 2
