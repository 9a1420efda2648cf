from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

from drledger.core.logging import configure_logging
from drledger.persistence.db import get_store
from drledger.services.recovery import get_backup_recovery_overview


async def _overview() -> dict[str, Any]:
    store = get_store()
    try:
        return await get_backup_recovery_overview(store)
    finally:
        await store.dispose()


def main() -> None:
    # Print the backup health and drill readiness overview for dashboards.
    parser = argparse.ArgumentParser(description="Summarize backup and DR readiness")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--summary-only", action="store_true")
    args = parser.parse_args()
    configure_logging(args.log_level)

    overview = asyncio.run(_overview())
    if args.summary_only:
        overview = {section: {"summary": body["summary"]} for section, body in overview.items()}
    print(json.dumps(overview, indent=2))


if __name__ == "__main__":
    main()
