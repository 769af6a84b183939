"""
============================================================================
FILE: replay_reconciliation_log.py
LOCATION: tools/replay_reconciliation_log.py
============================================================================

PURPOSE:
    List reconciliation-log entries, or replay migrate_user entries once the
    cause of the skip (e.g. a missing institution) has been fixed.

USAGE:
    List pending entries:
        python tools/replay_reconciliation_log.py --list --status pending

    Replay failed and skipped migrations:
        python tools/replay_reconciliation_log.py --include-skipped
============================================================================
"""

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db
from reconciler.logging_config import setup_logging
from reconciler.migration import DataMigrationService
from reconciler.outbox import REPLAYABLE_STATUSES, ReconciliationLog


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect or replay the reconciliation log.")
    parser.add_argument("--list", action="store_true", help="List entries instead of replaying.")
    parser.add_argument("--status", help="Only list entries with this status.")
    parser.add_argument("--operation", help="Only list entries for this operation.")
    parser.add_argument(
        "--include-skipped",
        action="store_true",
        help="Also replay entries that were skipped.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    setup_logging()
    db = get_db()
    log = ReconciliationLog(db)

    if args.list:
        entries = log.list_entries(status=args.status, operation=args.operation)
        for entry in entries:
            print(
                f"{entry.createdAt}  {entry.status:<8} {entry.operation:<30} "
                f"{entry.target}  {entry.reason or ''}"
            )
        print(f"{len(entries)} entries")
        return 0

    statuses = list(REPLAYABLE_STATUSES)
    if args.include_skipped:
        statuses.append("skipped")

    service = DataMigrationService(db, log=log)
    counts = log.replay(service.replay_handlers(), statuses=statuses)
    print(counts)
    return 1 if counts["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
