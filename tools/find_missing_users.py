"""
============================================================================
FILE: find_missing_users.py
LOCATION: tools/find_missing_users.py
============================================================================

PURPOSE:
    List institution interest requests whose contact email has no user row
    in PostgreSQL.

DEPENDENCIES:
    - External: psycopg, firebase_admin (via reconciler.config)
    - Internal: reconciler.crossref

USAGE:
    python tools/find_missing_users.py
============================================================================
"""

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db, get_pg_store
from reconciler.crossref import find_missing_users
from reconciler.exceptions import ReconcilerError
from reconciler.logging_config import setup_logging


def main() -> int:
    logger = setup_logging()

    try:
        with get_pg_store().session() as pg:
            missing = find_missing_users(get_db(), pg)
    except ReconcilerError:
        logger.exception("Missing-user analysis failed")
        return 1

    print(f"=== MISSING USERS ({len(missing)}) ===")
    for index, interest in enumerate(missing, start=1):
        print(f"{index}. {interest.contactName} ({interest.email})")
        print(f"   Institution: {interest.institutionName}")
    if missing:
        print(f"\nFound {len(missing)} missing users that need to be created.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
