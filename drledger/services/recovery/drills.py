from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import math
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from drledger.core.config import get_settings
from drledger.core.errors import DuplicateKeyError, NotFoundError, ValidationError
from drledger.domain.models import DisasterRecoveryDrill
from drledger.domain.normalization import (
    DRILL_SCENARIOS,
    DRILL_STATUSES,
    assert_in_set,
    clean_text,
    coerce_float,
    coerce_non_negative_integer,
    ensure_utc,
    normalize_issues,
    normalize_key,
)
from drledger.persistence.db import Store
from drledger.persistence.repos import drills as drills_repo
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
    DrillCancelPayload,
    DrillCompletePayload,
    DrillFailPayload,
    DrillListFilters,
    DrillOutcomePayload,
    DrillSchedulePayload,
    DrillStartPayload,
    parse_payload,
)
from drledger.services.recovery.serializers import serialize_record


logger = logging.getLogger(__name__)

ENTITY = "recovery drill"
UNSPECIFIED_FAILURE = "Unspecified failure"
DRILL_FAILED_SUMMARY = "Recovery drill failed."

_STARTABLE_FROM = {"scheduled", "running"}
_COMPLETABLE_FROM = {"scheduled", "running"}
_CANCELLABLE_FROM = {"scheduled", "running"}

Payload = Mapping[str, Any] | None
Context = AuditContext | Mapping[str, Any] | None


def compute_duration_ms(start: datetime | None, end: datetime | None) -> int | None:
    # Missing or inverted windows yield null rather than a negative duration.
    start_at = ensure_utc(start)
    end_at = ensure_utc(end)
    if start_at is None or end_at is None or end_at < start_at:
        return None
    return (end_at - start_at) // timedelta(milliseconds=1)


def minutes_from_duration(duration_ms: Any) -> int | None:
    value = coerce_float(duration_ms)
    if value is None or value <= 0:
        return None
    return math.ceil(value / 60_000)


def seconds_from_minutes(minutes: Any) -> int | None:
    value = coerce_float(minutes)
    if value is None or value <= 0:
        return None
    # Round half up.
    return max(math.floor(value * 60 + 0.5), 0)


@dataclass(frozen=True)
class DrillOutcome:
    completed_at: datetime
    restore_started_at: datetime
    restore_completed_at: datetime
    restore_duration_ms: int | None
    rto_minutes: int | None
    rpo_minutes: int | None
    data_loss_seconds: int | None


def resolve_drill_outcome(
    drill: DisasterRecoveryDrill,
    data: DrillOutcomePayload,
    *,
    now: datetime,
    fallback_window_minutes: int,
) -> DrillOutcome:
    """Resolve restore timings and observed objectives for a finished drill.

    Explicit payload values win, then stored values, then derived ones. With no
    restore timestamps at all the window is synthesized as ``fallback_window_minutes``
    before completion so the duration math always has inputs.
    """
    completed_at = data.completed_at or now
    restore_started_at = (
        data.restore_started_at
        or drill.restore_started_at
        or drill.started_at
        or completed_at - timedelta(minutes=fallback_window_minutes)
    )
    restore_completed_at = data.restore_completed_at or drill.restore_completed_at or completed_at

    restore_duration_ms = coerce_non_negative_integer(data.restore_duration_ms)
    if restore_duration_ms is None:
        restore_duration_ms = drill.restore_duration_ms
    if restore_duration_ms is None:
        restore_duration_ms = compute_duration_ms(restore_started_at, restore_completed_at)

    rto_minutes = coerce_non_negative_integer(data.rto_minutes)
    if rto_minutes is None:
        basis = restore_duration_ms
        if basis is None:
            basis = compute_duration_ms(drill.started_at, completed_at)
        rto_minutes = minutes_from_duration(basis)
    if rto_minutes is None:
        rto_minutes = drill.rto_minutes

    rpo_minutes = coerce_non_negative_integer(data.rpo_minutes)
    if rpo_minutes is None:
        rpo_minutes = drill.rpo_minutes

    data_loss_seconds = coerce_non_negative_integer(data.data_loss_seconds)
    if data_loss_seconds is None:
        data_loss_seconds = drill.data_loss_seconds
    if data_loss_seconds is None:
        data_loss_seconds = seconds_from_minutes(rpo_minutes)

    return DrillOutcome(
        completed_at=completed_at,
        restore_started_at=restore_started_at,
        restore_completed_at=restore_completed_at,
        restore_duration_ms=restore_duration_ms,
        rto_minutes=rto_minutes,
        rpo_minutes=rpo_minutes,
        data_loss_seconds=data_loss_seconds,
    )


async def _load_drill(
    session: AsyncSession,
    id_or_key: Any,
    *,
    lock: bool = False,
) -> DisasterRecoveryDrill:
    drill = await drills_repo.find_by_id_or_key(session, id_or_key, lock=lock)
    if drill is None:
        raise NotFoundError("Disaster recovery drill not found.")
    return drill


def _merged_metadata(drill: DisasterRecoveryDrill, extra: Mapping[str, Any] | None) -> dict[str, Any]:
    return {**(drill.metadata_json or {}), **(extra or {})}


def _issues_override(value: Any) -> list[Any] | None:
    # Only a list replaces recorded findings; any other shape is ignored.
    if isinstance(value, (list, tuple)):
        return list(value)
    return None


async def schedule_recovery_drill(
    store: Store,
    payload: DrillSchedulePayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(DrillSchedulePayload, payload)
    audit = coerce_context(context)
    if not clean_text(data.drill_key):
        raise ValidationError("drillKey is required to schedule a recovery drill.")
    drill_key = normalize_key(data.drill_key)
    if not drill_key:
        raise ValidationError("drillKey must contain at least one letter or digit.")
    name = clean_text(data.name)
    if not name:
        raise ValidationError("name is required to schedule a recovery drill.")
    environment = clean_text(data.environment)
    if not environment:
        raise ValidationError("environment is required to schedule a recovery drill.")
    scenario = (
        assert_in_set(data.scenario, DRILL_SCENARIOS, "Unsupported disaster recovery scenario.")
        or "regional_outage"
    )
    status = (
        assert_in_set(data.status, DRILL_STATUSES, "Unsupported disaster recovery status.")
        or "scheduled"
    )
    metadata = build_audit_metadata(data.metadata, audit)

    async with managed_session(store, session) as active:
        existing = await drills_repo.find_by_key(active, drill_key, lock=True)
        if existing is not None:
            raise DuplicateKeyError("A recovery drill with this key already exists.")

        drill = DisasterRecoveryDrill(
            drill_key=drill_key,
            name=name,
            scenario=scenario,
            status=status,
            environment=environment,
            region=data.region,
            rto_minutes=data.rto_minutes,
            rpo_minutes=data.rpo_minutes,
            restore_duration_ms=data.restore_duration_ms,
            data_loss_seconds=data.data_loss_seconds,
            initiated_by=resolve_initiated_by(data.initiated_by, audit),
            initiated_from=resolve_initiated_from(data.initiated_from, audit),
            started_at=data.started_at,
            summary=data.summary,
            issues_found=data.issues_found,
            evidence_uri=data.evidence_uri,
            metadata_json=metadata,
        )
        active.add(drill)
        try:
            await active.flush()
        except IntegrityError as exc:
            raise DuplicateKeyError("A recovery drill with this key already exists.") from exc

        logger.info("recovery_drill_scheduled drill_key=%s scenario=%s", drill_key, scenario)
        return serialize_record("recovery_drill", drill)


async def start_recovery_drill(
    store: Store,
    drill_id_or_key: Any,
    payload: DrillStartPayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(DrillStartPayload, payload)
    audit = coerce_context(context)
    async with managed_session(store, session) as active:
        drill = await _load_drill(active, drill_id_or_key, lock=True)
        require_transition(ENTITY, drill.status, _STARTABLE_FROM, "start")
        drill.apply(
            {
                "status": "running",
                "started_at": drill.started_at or utc_now(),
                "restore_started_at": data.restore_started_at or drill.restore_started_at,
                "metadata_json": build_audit_metadata(_merged_metadata(drill, data.metadata), audit),
            }
        )
        await active.flush()
        logger.info("recovery_drill_started drill_key=%s", drill.drill_key)
        return serialize_record("recovery_drill", drill)


async def complete_recovery_drill(
    store: Store,
    drill_id_or_key: Any,
    payload: DrillCompletePayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(DrillCompletePayload, payload)
    audit = coerce_context(context)
    status = (
        assert_in_set(data.status, DRILL_STATUSES, "Unsupported disaster recovery status.")
        or "passed"
    )
    fallback_minutes = get_settings().drill_restore_window_fallback_minutes

    async with managed_session(store, session) as active:
        drill = await _load_drill(active, drill_id_or_key, lock=True)
        require_transition(ENTITY, drill.status, _COMPLETABLE_FROM, "complete")
        outcome = resolve_drill_outcome(
            drill, data, now=utc_now(), fallback_window_minutes=fallback_minutes
        )
        issues = _issues_override(data.issues_found)
        drill.apply(
            {
                "status": status,
                "completed_at": outcome.completed_at,
                "verified_at": data.verified_at or outcome.completed_at,
                "restore_started_at": outcome.restore_started_at,
                "restore_completed_at": outcome.restore_completed_at,
                "restore_duration_ms": outcome.restore_duration_ms,
                "rto_minutes": outcome.rto_minutes,
                "rpo_minutes": outcome.rpo_minutes,
                "data_loss_seconds": (
                    outcome.data_loss_seconds if outcome.data_loss_seconds is not None else 0
                ),
                "summary": data.summary or drill.summary,
                "issues_found": issues if issues is not None else drill.issues_found,
                "evidence_uri": data.evidence_uri or drill.evidence_uri,
                "metadata_json": build_audit_metadata(_merged_metadata(drill, data.metadata), audit),
            }
        )
        await active.flush()
        logger.info(
            "recovery_drill_completed drill_key=%s status=%s rto_minutes=%s",
            drill.drill_key,
            drill.status,
            drill.rto_minutes,
        )
        return serialize_record("recovery_drill", drill)


async def fail_recovery_drill(
    store: Store,
    drill_id_or_key: Any,
    payload: DrillFailPayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(DrillFailPayload, payload)
    audit = coerce_context(context)
    fallback_minutes = get_settings().drill_restore_window_fallback_minutes

    async with managed_session(store, session) as active:
        drill = await _load_drill(active, drill_id_or_key, lock=True)
        outcome = resolve_drill_outcome(
            drill, data, now=utc_now(), fallback_window_minutes=fallback_minutes
        )
        issues = _issues_override(data.issues_found)
        if issues is None:
            # Keep the history of earlier findings and append this failure.
            issues = [
                *normalize_issues(drill.issues_found),
                clean_text(data.failure_reason) or UNSPECIFIED_FAILURE,
            ]
        drill.apply(
            {
                "status": "failed",
                "completed_at": outcome.completed_at,
                "restore_started_at": outcome.restore_started_at,
                "restore_completed_at": outcome.restore_completed_at,
                "restore_duration_ms": outcome.restore_duration_ms,
                "rto_minutes": outcome.rto_minutes,
                "rpo_minutes": outcome.rpo_minutes,
                "data_loss_seconds": outcome.data_loss_seconds,
                "issues_found": issues,
                "summary": data.summary or drill.summary or DRILL_FAILED_SUMMARY,
                "evidence_uri": data.evidence_uri or drill.evidence_uri,
                "metadata_json": build_audit_metadata(_merged_metadata(drill, data.metadata), audit),
            }
        )
        await active.flush()
        logger.warning(
            "recovery_drill_failed drill_key=%s reason=%s", drill.drill_key, data.failure_reason
        )
        return serialize_record("recovery_drill", drill)


async def cancel_recovery_drill(
    store: Store,
    drill_id_or_key: Any,
    payload: DrillCancelPayload | Payload = None,
    context: Context = None,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    data = parse_payload(DrillCancelPayload, payload)
    audit = coerce_context(context)
    async with managed_session(store, session) as active:
        drill = await _load_drill(active, drill_id_or_key, lock=True)
        require_transition(ENTITY, drill.status, _CANCELLABLE_FROM, "cancel")
        drill.apply(
            {
                "status": "cancelled",
                "completed_at": data.completed_at or utc_now(),
                "summary": clean_text(data.reason) or drill.summary,
                "metadata_json": build_audit_metadata(_merged_metadata(drill, data.metadata), audit),
            }
        )
        await active.flush()
        logger.info("recovery_drill_cancelled drill_key=%s", drill.drill_key)
        return serialize_record("recovery_drill", drill)


async def list_recovery_drills(
    store: Store,
    filters: DrillListFilters | Payload = None,
    *,
    session: AsyncSession | None = None,
) -> list[dict[str, Any]]:
    data = parse_payload(DrillListFilters, filters)
    status = assert_in_set(data.status, DRILL_STATUSES, "Unsupported disaster recovery status.")
    scenario = assert_in_set(
        data.scenario, DRILL_SCENARIOS, "Unsupported disaster recovery scenario."
    )
    limit = resolve_limit(data.limit)
    async with managed_session(store, session) as active:
        drills = await drills_repo.list_drills(
            active,
            environment=clean_text(data.environment),
            status=status,
            scenario=scenario,
            limit=limit,
        )
        return [serialize_record("recovery_drill", drill) for drill in drills]


async def get_recovery_drill(
    store: Store,
    drill_id_or_key: Any,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    async with managed_session(store, session) as active:
        drill = await _load_drill(active, drill_id_or_key)
        return serialize_record("recovery_drill", drill)
