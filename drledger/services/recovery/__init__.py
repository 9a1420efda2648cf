from __future__ import annotations

# Re-export backup and recovery services for centralized imports.

from drledger.services.recovery.orchestrator import BackupRecoveryOrchestrator
from drledger.services.recovery.overview import get_backup_recovery_overview
from drledger.services.recovery.serializers import record_to_plain, serialize_record
from drledger.services.recovery.summaries import summarize_backup_health, summarize_drill_readiness

__all__ = [
    "BackupRecoveryOrchestrator",
    "get_backup_recovery_overview",
    "record_to_plain",
    "serialize_record",
    "summarize_backup_health",
    "summarize_drill_readiness",
]
