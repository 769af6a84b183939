"""
============================================================================
FILE: cross_reference_data.py
LOCATION: tools/cross_reference_data.py
============================================================================

PURPOSE:
    Compare PostgreSQL users/institutions with Firestore institutions:
    institution-ID links, email-domain matches, Firebase UID links and
    institution name matches.

DEPENDENCIES:
    - External: psycopg, firebase_admin (via reconciler.config)
    - Internal: reconciler.crossref

USAGE:
    python tools/cross_reference_data.py [--json]
============================================================================
"""

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db, get_pg_store
from reconciler.crossref import cross_reference_data
from reconciler.exceptions import ReconcilerError
from reconciler.logging_config import setup_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Cross-reference Firestore and PostgreSQL institution data."
    )
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON.")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logger = setup_logging()

    try:
        with get_pg_store().session() as pg:
            report = cross_reference_data(get_db(), pg)
    except ReconcilerError:
        logger.exception("Cross-reference analysis failed")
        return 1

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        mismatched = [m for m in report.nameMatches if not m.ids_match]
        print(f"Institution links checked: {len(report.institutionLinks)}")
        print(f"Domain matches:            {len(report.domainMatches)}")
        print(f"Firebase-linked users:     {len(report.firebaseLinkedUsers)}")
        print(f"Name matches:              {len(report.nameMatches)} ({len(mismatched)} with differing IDs)")
        print(f"Only in PostgreSQL:        {', '.join(report.onlyInPostgres) or '-'}")
        print(f"Only in Firestore:         {', '.join(report.onlyInFirestore) or '-'}")
    logger.info("Cross-reference analysis completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
