from __future__ import annotations

from datetime import datetime, timedelta, timezone

from drledger.domain.models import DisasterRecoveryDrill
from drledger.services.recovery.drills import (
    compute_duration_ms,
    minutes_from_duration,
    resolve_drill_outcome,
    seconds_from_minutes,
)
from drledger.services.recovery.payloads import DrillCompletePayload, DrillFailPayload


T0 = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)


def _drill(**overrides) -> DisasterRecoveryDrill:
    values = {"drill_key": "q4", "name": "Q4", "environment": "production"}
    values.update(overrides)
    return DisasterRecoveryDrill(**values)


def test_duration_helpers() -> None:
    assert compute_duration_ms(T0, T0 + timedelta(minutes=20)) == 1_200_000
    assert compute_duration_ms(T0, T0 - timedelta(seconds=1)) is None
    assert compute_duration_ms(None, T0) is None
    # Partial minutes round up.
    assert minutes_from_duration(60_001) == 2
    assert minutes_from_duration(0) is None
    assert seconds_from_minutes(1.5) == 90
    assert seconds_from_minutes(0.0125) == 1
    assert seconds_from_minutes(-1) is None


def test_outcome_derives_duration_and_rto_from_restore_window() -> None:
    # Observed RTO replaces the scheduled target when nothing explicit is given.
    drill = _drill(rto_minutes=45, rpo_minutes=15, restore_started_at=T0)
    data = DrillCompletePayload(restore_completed_at=T0 + timedelta(minutes=20))
    outcome = resolve_drill_outcome(drill, data, now=T0 + timedelta(hours=1), fallback_window_minutes=30)
    assert outcome.restore_duration_ms == 1_200_000
    assert outcome.rto_minutes == 20
    assert outcome.rpo_minutes == 15
    assert outcome.data_loss_seconds == 900
    assert outcome.completed_at == T0 + timedelta(hours=1)


def test_outcome_prefers_explicit_values() -> None:
    drill = _drill(rto_minutes=45, restore_started_at=T0)
    data = DrillCompletePayload.model_validate(
        {"restoreDurationMs": 600_000, "rtoMinutes": 12, "dataLossSeconds": 30}
    )
    outcome = resolve_drill_outcome(drill, data, now=T0 + timedelta(hours=1), fallback_window_minutes=30)
    assert outcome.restore_duration_ms == 600_000
    assert outcome.rto_minutes == 12
    assert outcome.data_loss_seconds == 30


def test_outcome_synthesizes_restore_window_when_nothing_recorded() -> None:
    drill = _drill()
    completed_at = T0 + timedelta(hours=2)
    data = DrillFailPayload(completed_at=completed_at)
    outcome = resolve_drill_outcome(drill, data, now=T0, fallback_window_minutes=30)
    assert outcome.restore_started_at == completed_at - timedelta(minutes=30)
    assert outcome.restore_completed_at == completed_at
    assert outcome.restore_duration_ms == 1_800_000
    assert outcome.rto_minutes == 30
    assert outcome.data_loss_seconds is None


def test_outcome_falls_back_to_drill_start() -> None:
    drill = _drill(started_at=T0)
    data = DrillCompletePayload(completed_at=T0 + timedelta(minutes=7, seconds=30))
    outcome = resolve_drill_outcome(drill, data, now=T0, fallback_window_minutes=30)
    assert outcome.restore_started_at == T0
    assert outcome.restore_duration_ms == 450_000
    assert outcome.rto_minutes == 8
