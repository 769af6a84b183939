"""
============================================================================
FILE: sync_monitor.py
LOCATION: tools/sync_monitor.py
============================================================================

PURPOSE:
    Run the Firestore/PostgreSQL sync monitor in the foreground.

USAGE:
    Continuous (SYNC_INTERVAL_SECONDS, default one hour):
        python tools/sync_monitor.py

    Single cycle:
        python tools/sync_monitor.py --once
============================================================================
"""

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from reconciler.config import get_db, get_pg_store
from reconciler.logging_config import setup_logging
from reconciler.monitor import SyncMonitor


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Firestore/PostgreSQL sync monitor.")
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit.")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between cycles (overrides SYNC_INTERVAL_SECONDS).",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logger = setup_logging()
    monitor = SyncMonitor(get_db(), get_pg_store(), interval=args.interval)

    if args.once:
        report = monitor.perform_sync()
        print(report.model_dump_json(indent=2))
        return 1 if report.lastError else 0

    monitor.start()
    try:
        # join() with a timeout keeps Ctrl+C responsive
        while monitor.running:
            monitor.join(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping monitor")
    finally:
        monitor.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
