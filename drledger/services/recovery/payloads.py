from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Mapping, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from drledger.core.errors import ValidationError
from drledger.domain.normalization import ensure_utc


UtcTimestamp = Annotated[datetime | None, AfterValidator(ensure_utc)]

PayloadT = TypeVar("PayloadT", bound="LifecyclePayload")


class LifecyclePayload(BaseModel):
    # Accept camelCase API bodies and snake_case Python callers alike.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    metadata: dict[str, Any] | None = None


class SnapshotSchedulePayload(LifecyclePayload):
    snapshot_key: str | None = None
    backup_type: str | None = None
    source: str | None = None
    environment: str | None = None
    region: str | None = None
    status: str | None = None
    verification_status: str | None = None
    storage_location_key: str | None = None
    storage_class: str | None = None
    storage_uri: str | None = None
    checksum: str | None = None
    checksum_algorithm: str | None = None
    retention_days: Any = None
    size_bytes: Any = None
    initiated_by: str | None = None
    initiated_from: str | None = None
    started_at: UtcTimestamp = None
    completed_at: UtcTimestamp = None
    expires_at: UtcTimestamp = None
    failure_reason: str | None = None
    notes: str | None = None
    dataset_scope: Any = None


class SnapshotCompletePayload(LifecyclePayload):
    completed_at: UtcTimestamp = None
    verified_at: UtcTimestamp = None
    verification_status: str | None = None
    status: str | None = None
    retention_days: Any = None
    size_bytes: Any = None
    checksum: str | None = None
    checksum_algorithm: str | None = None
    storage_uri: str | None = None
    storage_class: str | None = None
    storage_location_key: str | None = None
    failure_reason: str | None = None
    notes: str | None = None


class SnapshotFailPayload(LifecyclePayload):
    failure_reason: str | None = None
    verification_status: str | None = None
    completed_at: UtcTimestamp = None


class SnapshotVerifyPayload(LifecyclePayload):
    verification_status: str | None = None
    # Shorthand for verification_status.
    status: str | None = None
    backup_status: str | None = None
    snapshot_status: str | None = None
    retention_days: Any = None
    failure_reason: str | None = None
    notes: str | None = None


class SnapshotListFilters(LifecyclePayload):
    environment: str | None = None
    status: str | None = None
    verification_status: str | None = None
    source: str | None = None
    limit: Any = None


class DrillSchedulePayload(LifecyclePayload):
    drill_key: str | None = None
    name: str | None = None
    scenario: str | None = None
    status: str | None = None
    environment: str | None = None
    region: str | None = None
    rto_minutes: Any = None
    rpo_minutes: Any = None
    restore_duration_ms: Any = None
    data_loss_seconds: Any = None
    initiated_by: str | None = None
    initiated_from: str | None = None
    started_at: UtcTimestamp = None
    summary: str | None = None
    issues_found: Any = None
    evidence_uri: str | None = None


class DrillStartPayload(LifecyclePayload):
    restore_started_at: UtcTimestamp = None


class DrillOutcomePayload(LifecyclePayload):
    completed_at: UtcTimestamp = None
    restore_started_at: UtcTimestamp = None
    restore_completed_at: UtcTimestamp = None
    restore_duration_ms: Any = None
    rto_minutes: Any = None
    rpo_minutes: Any = None
    data_loss_seconds: Any = None
    summary: str | None = None
    issues_found: Any = None
    evidence_uri: str | None = None


class DrillCompletePayload(DrillOutcomePayload):
    status: str | None = None
    verified_at: UtcTimestamp = None


class DrillFailPayload(DrillOutcomePayload):
    failure_reason: str | None = None


class DrillCancelPayload(LifecyclePayload):
    reason: str | None = None
    completed_at: UtcTimestamp = None


class DrillListFilters(LifecyclePayload):
    environment: str | None = None
    status: str | None = None
    scenario: str | None = None
    limit: Any = None


def parse_payload(model: type[PayloadT], payload: PayloadT | Mapping[str, Any] | None) -> PayloadT:
    if payload is None:
        return model()
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError(f"{model.__name__} must be an object.")
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise ValidationError(f"Invalid {location}: {first.get('msg', 'invalid value')}") from exc
