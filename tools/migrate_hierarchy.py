"""
============================================================================
FILE: migrate_hierarchy.py
LOCATION: tools/migrate_hierarchy.py
============================================================================

PURPOSE:
    Migrate the flat `users` / `institutions` collections into the
    institution hierarchy.

ROLE IN PROJECT:
    Operator entry point for DataMigrationService. Dry run is the default;
    skipped and failed users land in the reconciliation log when applying.

DEPENDENCIES:
    - External: firebase_admin (via reconciler.config)
    - Internal: reconciler.migration, reconciler.config

USAGE:
    Dry run (default):
        python tools/migrate_hierarchy.py

    Apply changes:
        python tools/migrate_hierarchy.py --apply

    Counts only:
        python tools/migrate_hierarchy.py --stats
============================================================================
"""

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db
from reconciler.exceptions import ReconcilerError
from reconciler.logging_config import setup_logging
from reconciler.migration import DataMigrationService


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Migrate flat Firestore users/institutions into the hierarchy."
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write to Firestore (default is dry-run).",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Only print source and migrated counts.",
    )
    return parser.parse_args()


def main() -> int:
    """Run the migration.

    Returns:
        int: Process exit code.
    """
    args = _parse_args()
    logger = setup_logging()

    try:
        service = DataMigrationService(get_db(), dry_run=not args.apply)
        if args.stats:
            print(service.get_migration_stats().model_dump_json(indent=2))
            return 0
        summary = service.migrate_all_data()
    except ReconcilerError:
        logger.exception("Migration failed")
        return 1

    print(summary.model_dump_json(indent=2))
    if not args.apply:
        print("Dry run only. Re-run with --apply to write changes.")
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
