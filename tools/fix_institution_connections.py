"""
============================================================================
FILE: fix_institution_connections.py
LOCATION: tools/fix_institution_connections.py
============================================================================

PURPOSE:
    Generate SQL that brings PostgreSQL in line with Firestore for
    institution interest contacts: insert the Firestore institution (same
    ID), link existing users to it, or create missing institution admins.

ROLE IN PROJECT:
    The SQL is printed (or written to --output) for review. This script
    never executes it. With --record, each planned repair is also added to
    the reconciliation log.

DEPENDENCIES:
    - External: psycopg, firebase_admin (via reconciler.config)
    - Internal: reconciler.crossref, reconciler.outbox

USAGE:
    python tools/fix_institution_connections.py --output fix.sql --record
============================================================================
"""

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db, get_pg_store
from reconciler.crossref import plan_institution_connections
from reconciler.exceptions import ReconcilerError
from reconciler.logging_config import setup_logging
from reconciler.outbox import ReconciliationLog


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print SQL that links interest contacts to their Firestore institution."
    )
    parser.add_argument("--output", help="Write the SQL to this file instead of stdout.")
    parser.add_argument(
        "--record",
        action="store_true",
        help="Record planned repairs in the reconciliation log.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logger = setup_logging()
    db = get_db()
    log = ReconciliationLog(db) if args.record else None

    try:
        with get_pg_store().session() as pg:
            plan = plan_institution_connections(db, pg, log)
    except ReconcilerError:
        logger.exception("Could not plan institution connections")
        return 1

    if not plan.statements:
        print("No SQL needed.")
    elif args.output:
        Path(args.output).write_text(plan.sql() + "\n", encoding="utf-8")
        print(f"Wrote {len(plan.statements)} repair blocks to {args.output}")
    else:
        print("=" * 50)
        print("SQL COMMANDS TO FIX INSTITUTION CONNECTIONS")
        print("=" * 50)
        print(plan.sql())

    if plan.unmatched:
        print(f"\n{len(plan.unmatched)} interests have no Firestore institution with that name:")
        for interest in plan.unmatched:
            print(f"  - {interest.institutionName} ({interest.email})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
