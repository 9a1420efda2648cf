from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from drledger.domain.models import BackupSnapshot
from drledger.domain.normalization import normalize_key


async def find_by_key(session: AsyncSession, key: Any, *, lock: bool = False) -> BackupSnapshot | None:
    normalized = normalize_key(key)
    if not normalized:
        return None
    stmt = select(BackupSnapshot).where(BackupSnapshot.snapshot_key == normalized)
    if lock:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


async def find_by_id_or_key(
    session: AsyncSession,
    id_or_key: Any,
    *,
    lock: bool = False,
) -> BackupSnapshot | None:
    # Plain ints address the surrogate id; anything else is a natural key.
    if isinstance(id_or_key, int) and not isinstance(id_or_key, bool):
        stmt = select(BackupSnapshot).where(BackupSnapshot.id == id_or_key)
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()
    return await find_by_key(session, id_or_key, lock=lock)


async def list_snapshots(
    session: AsyncSession,
    *,
    environment: str | None = None,
    status: str | None = None,
    verification_status: str | None = None,
    source: str | None = None,
    limit: int,
) -> list[BackupSnapshot]:
    stmt = select(BackupSnapshot)
    if environment:
        stmt = stmt.where(BackupSnapshot.environment == environment)
    if status:
        stmt = stmt.where(BackupSnapshot.status == status)
    if verification_status:
        stmt = stmt.where(BackupSnapshot.verification_status == verification_status)
    if source:
        stmt = stmt.where(BackupSnapshot.source == source)
    # In-flight rows (no completion yet) sort ahead of finished ones.
    stmt = stmt.order_by(
        BackupSnapshot.completed_at.desc().nulls_first(),
        BackupSnapshot.started_at.desc().nulls_first(),
        BackupSnapshot.id.desc(),
    ).limit(limit)
    return list((await session.execute(stmt)).scalars().all())
