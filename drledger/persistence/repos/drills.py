from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from drledger.domain.models import DisasterRecoveryDrill
from drledger.domain.normalization import normalize_key


async def find_by_key(
    session: AsyncSession,
    key: Any,
    *,
    lock: bool = False,
) -> DisasterRecoveryDrill | None:
    normalized = normalize_key(key)
    if not normalized:
        return None
    stmt = select(DisasterRecoveryDrill).where(DisasterRecoveryDrill.drill_key == normalized)
    if lock:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


async def find_by_id_or_key(
    session: AsyncSession,
    id_or_key: Any,
    *,
    lock: bool = False,
) -> DisasterRecoveryDrill | None:
    if isinstance(id_or_key, int) and not isinstance(id_or_key, bool):
        stmt = select(DisasterRecoveryDrill).where(DisasterRecoveryDrill.id == id_or_key)
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()
    return await find_by_key(session, id_or_key, lock=lock)


async def list_drills(
    session: AsyncSession,
    *,
    environment: str | None = None,
    status: str | None = None,
    scenario: str | None = None,
    limit: int,
) -> list[DisasterRecoveryDrill]:
    stmt = select(DisasterRecoveryDrill)
    if environment:
        stmt = stmt.where(DisasterRecoveryDrill.environment == environment)
    if status:
        stmt = stmt.where(DisasterRecoveryDrill.status == status)
    if scenario:
        stmt = stmt.where(DisasterRecoveryDrill.scenario == scenario)
    stmt = stmt.order_by(
        DisasterRecoveryDrill.completed_at.desc().nulls_first(),
        DisasterRecoveryDrill.started_at.desc().nulls_first(),
        DisasterRecoveryDrill.id.desc(),
    ).limit(limit)
    return list((await session.execute(stmt)).scalars().all())
