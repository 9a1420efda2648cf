from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from drledger.core.errors import DrLedgerError
from drledger.core.logging import configure_logging
from drledger.persistence.db import get_store
from drledger.services.recovery import BackupRecoveryOrchestrator


def _target(args: argparse.Namespace) -> Any:
    # Numeric ids must be requested explicitly so digit-only keys stay addressable.
    return int(args.target) if args.by_id else args.target


def _payload(args: argparse.Namespace, *fields: str) -> dict[str, Any]:
    return {field: getattr(args, field) for field in fields if getattr(args, field, None) is not None}


def _context() -> dict[str, Any]:
    return {"source": "cli", "channel": "cli"}


async def _run(args: argparse.Namespace) -> Any:
    store = get_store()
    orchestrator = BackupRecoveryOrchestrator(store)
    try:
        if args.command == "schedule":
            return await orchestrator.schedule_backup_snapshot(
                _payload(
                    args,
                    "snapshot_key",
                    "backup_type",
                    "source",
                    "environment",
                    "region",
                    "storage_uri",
                    "storage_class",
                    "retention_days",
                    "notes",
                ),
                _context(),
            )
        if args.command == "running":
            return await orchestrator.mark_backup_snapshot_running(_target(args), _context())
        if args.command == "complete":
            return await orchestrator.complete_backup_snapshot(
                _target(args),
                _payload(
                    args,
                    "size_bytes",
                    "checksum",
                    "checksum_algorithm",
                    "storage_uri",
                    "retention_days",
                    "verification_status",
                ),
                _context(),
            )
        if args.command == "fail":
            return await orchestrator.fail_backup_snapshot(
                _target(args), _payload(args, "failure_reason"), _context()
            )
        if args.command == "verify":
            return await orchestrator.verify_backup_snapshot(
                _target(args),
                _payload(args, "verification_status", "failure_reason", "notes"),
                _context(),
            )
        if args.command == "list":
            return await orchestrator.list_backup_snapshots(
                _payload(args, "environment", "status", "verification_status", "source", "limit")
            )
        return await orchestrator.get_backup_snapshot(_target(args))
    finally:
        await store.dispose()


def _add_target(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("target", help="snapshot key, or numeric id with --by-id")
    parser.add_argument("--by-id", action="store_true")


def main() -> None:
    # Drive backup snapshot lifecycle transitions from operator tooling.
    parser = argparse.ArgumentParser(description="Track backup snapshot lifecycle")
    parser.add_argument("--log-level", default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    schedule = commands.add_parser("schedule")
    schedule.add_argument("--snapshot-key", required=True)
    schedule.add_argument("--backup-type", default=None)
    schedule.add_argument("--source", required=True)
    schedule.add_argument("--environment", required=True)
    schedule.add_argument("--region", default=None)
    schedule.add_argument("--storage-uri", default=None)
    schedule.add_argument("--storage-class", default=None)
    schedule.add_argument("--retention-days", type=int, default=None)
    schedule.add_argument("--notes", default=None)

    running = commands.add_parser("running")
    _add_target(running)

    complete = commands.add_parser("complete")
    _add_target(complete)
    complete.add_argument("--size-bytes", type=int, default=None)
    complete.add_argument("--checksum", default=None)
    complete.add_argument("--checksum-algorithm", default=None)
    complete.add_argument("--storage-uri", default=None)
    complete.add_argument("--retention-days", type=int, default=None)
    complete.add_argument("--verification-status", default=None)

    fail = commands.add_parser("fail")
    _add_target(fail)
    fail.add_argument("--failure-reason", default=None)

    verify = commands.add_parser("verify")
    _add_target(verify)
    verify.add_argument("--verification-status", default="verified")
    verify.add_argument("--failure-reason", default=None)
    verify.add_argument("--notes", default=None)

    listing = commands.add_parser("list")
    listing.add_argument("--environment", default=None)
    listing.add_argument("--status", default=None)
    listing.add_argument("--verification-status", default=None)
    listing.add_argument("--source", default=None)
    listing.add_argument("--limit", type=int, default=None)

    show = commands.add_parser("show")
    _add_target(show)

    args = parser.parse_args()
    configure_logging(args.log_level)
    try:
        result = asyncio.run(_run(args))
    except DrLedgerError as exc:
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        sys.exit(1)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
