from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping


@dataclass(frozen=True)
class AuditActor:
    id: Any = None
    email: str | None = None
    name: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class AuditContext:
    # Caller identity stamped onto every lifecycle mutation.
    actor: AuditActor = AuditActor()
    source: str | None = None
    channel: str | None = None
    initiated_from: str | None = None

    @property
    def resolved_source(self) -> str | None:
        return self.source or self.channel or self.initiated_from

    @property
    def resolved_channel(self) -> str | None:
        # initiatedFrom prefers the transport channel over the logical source.
        return self.channel or self.source

    @property
    def actor_label(self) -> Any:
        return self.actor.email or self.actor.name or self.actor.id


def coerce_context(context: AuditContext | Mapping[str, Any] | None) -> AuditContext:
    if isinstance(context, AuditContext):
        return context
    if not isinstance(context, Mapping):
        return AuditContext()
    raw_actor = context.get("actor")
    actor = AuditActor()
    if isinstance(raw_actor, AuditActor):
        actor = raw_actor
    elif isinstance(raw_actor, Mapping):
        actor = AuditActor(
            id=raw_actor.get("id"),
            email=raw_actor.get("email"),
            name=raw_actor.get("name"),
            role=raw_actor.get("role"),
        )
    return AuditContext(
        actor=actor,
        source=context.get("source"),
        channel=context.get("channel"),
        initiated_from=context.get("initiatedFrom", context.get("initiated_from")),
    )


def build_audit_metadata(
    metadata: Mapping[str, Any] | None,
    context: AuditContext,
    *,
    captured_at: datetime | None = None,
) -> dict[str, Any]:
    """Merge an ``audit`` block into ``metadata`` without dropping existing keys."""
    base = dict(metadata) if isinstance(metadata, Mapping) else {}
    previous = base.get("audit")
    audit = dict(previous) if isinstance(previous, Mapping) else {}
    audit.update(
        {
            "actor": context.actor_label,
            "actorId": context.actor.id,
            "actorRole": context.actor.role,
            "source": context.resolved_source,
            "capturedAt": (captured_at or datetime.now(timezone.utc)).isoformat(),
        }
    )
    base["audit"] = audit
    return base


def resolve_initiated_by(explicit: Any, context: AuditContext) -> Any:
    if explicit is not None:
        return explicit
    return context.actor.email or context.actor.id


def resolve_initiated_from(explicit: Any, context: AuditContext) -> Any:
    if explicit is not None:
        return explicit
    return context.resolved_channel
