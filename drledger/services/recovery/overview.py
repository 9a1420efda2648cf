from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from drledger.core.config import get_settings
from drledger.persistence.db import Store
from drledger.persistence.repos import drills as drills_repo
from drledger.persistence.repos import snapshots as snapshots_repo
from drledger.services.recovery.common import managed_session, utc_now
from drledger.services.recovery.serializers import record_to_plain, serialize_record
from drledger.services.recovery.summaries import summarize_backup_health, summarize_drill_readiness


logger = logging.getLogger(__name__)


async def get_backup_recovery_overview(
    store: Store,
    *,
    session: AsyncSession | None = None,
) -> dict[str, Any]:
    settings = get_settings()
    scan_limit = max(1, settings.overview_scan_limit)
    recent_limit = max(0, settings.overview_recent_limit)

    # Both tables are read in one session, newest first.
    async with managed_session(store, session) as active:
        snapshots = await snapshots_repo.list_snapshots(active, limit=scan_limit)
        drills = await drills_repo.list_drills(active, limit=scan_limit)

        backup_summary = summarize_backup_health(record_to_plain(row) for row in snapshots)
        drill_summary = summarize_drill_readiness(
            (record_to_plain(row) for row in drills),
            now=utc_now(),
            window_days=settings.drill_readiness_window_days,
        )
        overview = {
            "backups": {
                "summary": backup_summary,
                "recent": [serialize_record("backup_snapshot", row) for row in snapshots[:recent_limit]],
            },
            "drills": {
                "summary": drill_summary,
                "recent": [serialize_record("recovery_drill", row) for row in drills[:recent_limit]],
            },
        }

    logger.info(
        "backup_recovery_overview_built snapshots=%s drills=%s unhealthy=%s",
        backup_summary["total"],
        drill_summary["total"],
        backup_summary["unhealthy"],
    )
    return overview
