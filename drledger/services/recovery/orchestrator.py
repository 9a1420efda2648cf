from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from drledger.persistence.db import Store, get_store
from drledger.services.audit import AuditContext
from drledger.services.recovery import drills, overview, snapshots


Payload = Any
Context = AuditContext | Mapping[str, Any] | None


class BackupRecoveryOrchestrator:
    # Store-bound facade over the snapshot and drill lifecycle operations.
    def __init__(self, store: Store | None = None) -> None:
        self._store = store or get_store()

    @property
    def store(self) -> Store:
        return self._store

    async def schedule_backup_snapshot(
        self,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await snapshots.schedule_backup_snapshot(self._store, payload, context, session=session)

    async def mark_backup_snapshot_running(
        self,
        snapshot_id_or_key: Any,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await snapshots.mark_backup_snapshot_running(
            self._store, snapshot_id_or_key, context, session=session
        )

    async def complete_backup_snapshot(
        self,
        snapshot_id_or_key: Any,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await snapshots.complete_backup_snapshot(
            self._store, snapshot_id_or_key, payload, context, session=session
        )

    async def fail_backup_snapshot(
        self,
        snapshot_id_or_key: Any,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await snapshots.fail_backup_snapshot(
            self._store, snapshot_id_or_key, payload, context, session=session
        )

    async def verify_backup_snapshot(
        self,
        snapshot_id_or_key: Any,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await snapshots.verify_backup_snapshot(
            self._store, snapshot_id_or_key, payload, context, session=session
        )

    async def list_backup_snapshots(
        self,
        filters: Payload = None,
        *,
        session: AsyncSession | None = None,
    ) -> list[dict[str, Any]]:
        return await snapshots.list_backup_snapshots(self._store, filters, session=session)

    async def get_backup_snapshot(
        self,
        snapshot_id_or_key: Any,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await snapshots.get_backup_snapshot(self._store, snapshot_id_or_key, session=session)

    async def schedule_recovery_drill(
        self,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await drills.schedule_recovery_drill(self._store, payload, context, session=session)

    async def start_recovery_drill(
        self,
        drill_id_or_key: Any,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await drills.start_recovery_drill(
            self._store, drill_id_or_key, payload, context, session=session
        )

    async def complete_recovery_drill(
        self,
        drill_id_or_key: Any,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await drills.complete_recovery_drill(
            self._store, drill_id_or_key, payload, context, session=session
        )

    async def fail_recovery_drill(
        self,
        drill_id_or_key: Any,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await drills.fail_recovery_drill(
            self._store, drill_id_or_key, payload, context, session=session
        )

    async def cancel_recovery_drill(
        self,
        drill_id_or_key: Any,
        payload: Payload = None,
        context: Context = None,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await drills.cancel_recovery_drill(
            self._store, drill_id_or_key, payload, context, session=session
        )

    async def list_recovery_drills(
        self,
        filters: Payload = None,
        *,
        session: AsyncSession | None = None,
    ) -> list[dict[str, Any]]:
        return await drills.list_recovery_drills(self._store, filters, session=session)

    async def get_recovery_drill(
        self,
        drill_id_or_key: Any,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await drills.get_recovery_drill(self._store, drill_id_or_key, session=session)

    async def get_backup_recovery_overview(
        self,
        *,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        return await overview.get_backup_recovery_overview(self._store, session=session)
