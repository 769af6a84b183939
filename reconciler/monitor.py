"""
============================================================================
FILE: monitor.py
LOCATION: reconciler/monitor.py
============================================================================

PURPOSE:
    Background synchronization monitor comparing Firestore and PostgreSQL
    on a fixed interval.

ROLE IN PROJECT:
    Long-running companion to the one-shot checkers (tools/sync_monitor.py,
    POST /api/reconcile/sync). Each cycle re-scans the interest collection
    and both institution tables; there is no cursor, so cost grows with the
    number of records. Findings are written to the reconciliation log as
    pending intents. The monitor itself never writes to either store.

STATES:
    idle    -> waiting for the next interval (or stopped)
    syncing -> running the three checks
    start() syncs immediately, then every ``interval`` seconds. A failing
    cycle is logged and the timer keeps running.

KEY COMPONENTS:
    - SyncMonitor.start / stop: daemon thread driven by threading.Event
    - SyncMonitor.perform_sync: one cycle, never raises
    - SyncMonitor.get_sync_report: counts from the most recent cycle

DEPENDENCIES:
    - External: None
    - Internal: crossref, outbox, hierarchy, models, config, logging_config
============================================================================
"""
import threading
from typing import Optional

from reconciler import config
from reconciler.crossref import INTERESTS_COLLECTION, list_interests
from reconciler.hierarchy import InstitutionHierarchyService
from reconciler.logging_config import get_logger
from reconciler.models import InstitutionInterest, ReconciliationEntry, SyncReport, utc_now
from reconciler.outbox import ReconciliationLog


logger = get_logger("monitor")

FLAG_OPERATION = "flag_interest_for_processing"
CREATE_USER_OPERATION = "create_missing_user"


class SyncMonitor:
    def __init__(
        self,
        db,
        pg_store,
        log: Optional[ReconciliationLog] = None,
        interval: Optional[float] = None,
    ):
        self.db = db
        self.pg_store = pg_store
        self.log = log or ReconciliationLog(db)
        self.interval = config.SYNC_INTERVAL_SECONDS if interval is None else interval
        self.state = "idle"
        self._report = SyncReport()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Sync monitor already running")
            return
        logger.info("Starting sync monitor (interval %ss)", self.interval)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="sync-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sync monitor stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.perform_sync()
            if self._stop_event.wait(self.interval):
                break

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def perform_sync(self) -> SyncReport:
        """Run one cycle; errors are logged and kept on the report."""
        with self._lock:
            self.state = "syncing"
            report = SyncReport(state="syncing", cycles=self._report.cycles)
            logger.info("Performing database synchronization")
            try:
                with self.pg_store.session() as pg:
                    report.orphanedRequests = self.check_orphaned_requests(pg)
                    report.idMismatches = self.check_institution_id_consistency(pg)
                    report.missingUsers = self.check_missing_users(pg)
                logger.info("Synchronization cycle completed")
            except Exception as exc:
                logger.exception("Synchronization error")
                report.lastError = str(exc)
            finally:
                self.state = "idle"
                report.state = "idle"
                report.cycles += 1
                report.lastRun = utc_now()
                self._report = report
            return report.model_copy()

    def check_orphaned_requests(self, pg) -> int:
        """Interests not completed, without userId and without a PostgreSQL user."""
        count = 0
        for interest in list_interests(self.db):
            if interest.status == "completed" or interest.userId:
                continue
            if pg.find_user_by_email(interest.email) is None:
                logger.warning(
                    "Orphaned request: %s (%s)", interest.institutionName, interest.email
                )
                self.flag_for_processing(interest)
                count += 1
        return count

    def check_institution_id_consistency(self, pg) -> int:
        """Firestore institutions that have no same-named PostgreSQL row.

        Same-named institutions with different IDs are a match; only a
        missing counterpart counts.
        """
        pg_by_name = {row.get("name"): row for row in pg.fetch_institutions()}
        count = 0
        for institution in InstitutionHierarchyService(self.db).list_institutions():
            pg_row = pg_by_name.get(institution.name)
            if pg_row is None:
                logger.warning(
                    "Institution exists in Firestore but not PostgreSQL: %s", institution.name
                )
                count += 1
            elif str(pg_row["id"]) != institution.id:
                logger.debug(
                    "Institution %s has PostgreSQL id %s, Firestore id %s",
                    institution.name,
                    pg_row["id"],
                    institution.id,
                )
        return count

    def check_missing_users(self, pg) -> int:
        count = 0
        for interest in list_interests(self.db):
            if interest.status in ("processed", "completed"):
                continue
            if pg.find_user_by_email(interest.email) is None:
                logger.warning("Missing user account for %s", interest.email)
                self.create_missing_user(interest)
                count += 1
        return count

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def flag_for_processing(self, interest: InstitutionInterest) -> Optional[ReconciliationEntry]:
        return self._record_once(
            FLAG_OPERATION,
            interest,
            {"institutionName": interest.institutionName, "email": interest.email},
            "orphaned request",
        )

    def create_missing_user(self, interest: InstitutionInterest) -> Optional[ReconciliationEntry]:
        """Record the intent to create the contact's user; nothing is written."""
        return self._record_once(
            CREATE_USER_OPERATION,
            interest,
            {
                "email": interest.email,
                "name": interest.contactName or interest.institutionName,
                "institutionName": interest.institutionName,
                "role": "institution_admin",
            },
            "no PostgreSQL user for interest contact",
        )

    def _record_once(
        self,
        operation: str,
        interest: InstitutionInterest,
        payload: dict,
        reason: str,
    ) -> Optional[ReconciliationEntry]:
        target = f"{INTERESTS_COLLECTION}/{interest.id}"
        if self.log.has_open_entry(operation, target):
            return None
        logger.info("Recorded %s for %s", operation, target)
        return self.log.record(operation, target, payload, reason=reason)

    def get_sync_report(self) -> SyncReport:
        return self._report.model_copy(update={"state": self.state})
