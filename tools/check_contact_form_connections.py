"""
============================================================================
FILE: check_contact_form_connections.py
LOCATION: tools/check_contact_form_connections.py
============================================================================

PURPOSE:
    Trace institution contact-form submissions: email-domain matches to
    Firestore institutions, the institution_interests listing, legacy
    contact-form collections and PostgreSQL searches for given names.

DEPENDENCIES:
    - External: psycopg, firebase_admin (via reconciler.config)
    - Internal: reconciler.crossref

USAGE:
    python tools/check_contact_form_connections.py --search "Lethbridge Polytechnic"
============================================================================
"""

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db, get_pg_store
from reconciler.crossref import check_contact_form_connections
from reconciler.exceptions import ReconcilerError
from reconciler.logging_config import setup_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check how contact-form submissions connect to users and institutions."
    )
    parser.add_argument(
        "--search",
        action="append",
        default=[],
        metavar="NAME",
        help="Institution name to search for in PostgreSQL (repeatable).",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logger = setup_logging()

    try:
        with get_pg_store().session() as pg:
            report = check_contact_form_connections(get_db(), pg, args.search)
    except ReconcilerError:
        logger.exception("Contact form check failed")
        return 1

    print(report.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
