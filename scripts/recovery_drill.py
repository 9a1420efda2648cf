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
    return int(args.target) if args.by_id else args.target


def _payload(args: argparse.Namespace, *fields: str) -> dict[str, Any]:
    return {field: getattr(args, field) for field in fields if getattr(args, field, None) is not None}


async def _run(args: argparse.Namespace) -> Any:
    store = get_store()
    orchestrator = BackupRecoveryOrchestrator(store)
    context = {"source": "cli", "channel": "cli"}
    outcome_fields = ("rto_minutes", "rpo_minutes", "data_loss_seconds", "summary", "evidence_uri")
    try:
        if args.command == "schedule":
            return await orchestrator.schedule_recovery_drill(
                _payload(
                    args,
                    "drill_key",
                    "name",
                    "scenario",
                    "environment",
                    "region",
                    "rto_minutes",
                    "rpo_minutes",
                    "summary",
                ),
                context,
            )
        if args.command == "start":
            return await orchestrator.start_recovery_drill(_target(args), {}, context)
        if args.command == "complete":
            payload = _payload(args, "status", *outcome_fields)
            if args.issue:
                payload["issues_found"] = list(args.issue)
            return await orchestrator.complete_recovery_drill(_target(args), payload, context)
        if args.command == "fail":
            payload = _payload(args, "failure_reason", *outcome_fields)
            if args.issue:
                payload["issues_found"] = list(args.issue)
            return await orchestrator.fail_recovery_drill(_target(args), payload, context)
        if args.command == "cancel":
            return await orchestrator.cancel_recovery_drill(
                _target(args), _payload(args, "reason"), context
            )
        if args.command == "list":
            return await orchestrator.list_recovery_drills(
                _payload(args, "environment", "status", "scenario", "limit")
            )
        return await orchestrator.get_recovery_drill(_target(args))
    finally:
        await store.dispose()


def _add_target(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("target", help="drill key, or numeric id with --by-id")
    parser.add_argument("--by-id", action="store_true")


def _add_outcome(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--rto-minutes", type=int, default=None)
    parser.add_argument("--rpo-minutes", type=int, default=None)
    parser.add_argument("--data-loss-seconds", type=int, default=None)
    parser.add_argument("--summary", default=None)
    parser.add_argument("--evidence-uri", default=None)
    parser.add_argument("--issue", action="append", default=None)


def main() -> None:
    # Record disaster recovery drill rehearsals from operator tooling.
    parser = argparse.ArgumentParser(description="Track disaster recovery drills")
    parser.add_argument("--log-level", default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    schedule = commands.add_parser("schedule")
    schedule.add_argument("--drill-key", required=True)
    schedule.add_argument("--name", required=True)
    schedule.add_argument("--scenario", default=None)
    schedule.add_argument("--environment", required=True)
    schedule.add_argument("--region", default=None)
    schedule.add_argument("--rto-minutes", type=int, default=None)
    schedule.add_argument("--rpo-minutes", type=int, default=None)
    schedule.add_argument("--summary", default=None)

    start = commands.add_parser("start")
    _add_target(start)

    complete = commands.add_parser("complete")
    _add_target(complete)
    complete.add_argument("--status", default=None)
    _add_outcome(complete)

    fail = commands.add_parser("fail")
    _add_target(fail)
    fail.add_argument("--failure-reason", default=None)
    _add_outcome(fail)

    cancel = commands.add_parser("cancel")
    _add_target(cancel)
    cancel.add_argument("--reason", default=None)

    listing = commands.add_parser("list")
    listing.add_argument("--environment", default=None)
    listing.add_argument("--status", default=None)
    listing.add_argument("--scenario", default=None)
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
