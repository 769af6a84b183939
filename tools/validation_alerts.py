"""
============================================================================
FILE: validation_alerts.py
LOCATION: tools/validation_alerts.py
============================================================================

PURPOSE:
    Run the data-validation sweep once and print the report. Alerts go to
    the log (critical / warning levels).

USAGE:
    python tools/validation_alerts.py
    python tools/validation_alerts.py --fail-on-critical
============================================================================
"""

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db, get_pg_store
from reconciler.logging_config import setup_logging
from reconciler.validation import ValidationAlertSystem


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate Firestore/PostgreSQL consistency.")
    parser.add_argument(
        "--fail-on-critical",
        action="store_true",
        help="Exit with status 1 when critical issues are found.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    setup_logging()

    report = ValidationAlertSystem(get_db(), get_pg_store()).generate_report()
    print(report.model_dump_json(indent=2))

    if args.fail_on_critical and report.criticalIssues:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
