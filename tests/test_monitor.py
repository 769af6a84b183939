"""
Tests for the sync monitor.
"""
import time

import pytest

from reconciler.monitor import CREATE_USER_OPERATION, FLAG_OPERATION, SyncMonitor
from reconciler.outbox import ReconciliationLog


def _interest(db, doc_id, email, status="pending", **extra):
    db.collection("institution_interests").document(doc_id).set(
        {"institutionName": f"Inst {doc_id}", "contactName": "C", "email": email, "status": status, **extra}
    )


@pytest.fixture
def monitor(db, pg_store):
    return SyncMonitor(db, pg_store, interval=3600)


class TestChecks:
    def test_orphaned_requests(self, db, pg, monitor):
        pg.users.append({"id": 1, "email": "known@x.edu"})
        _interest(db, "open", "nobody@x.edu")
        _interest(db, "done", "nobody2@x.edu", status="completed")
        _interest(db, "claimed", "nobody3@x.edu", userId="u9")
        _interest(db, "fine", "known@x.edu")

        assert monitor.check_orphaned_requests(pg) == 1
        entries = ReconciliationLog(db).list_entries(operation=FLAG_OPERATION)
        assert [e.target for e in entries] == ["institution_interests/open"]

    def test_missing_users(self, db, pg, monitor):
        _interest(db, "open", "nobody@x.edu", contactName="Jane")
        _interest(db, "processed", "p@x.edu", status="processed")
        _interest(db, "completed", "c@x.edu", status="completed")

        assert monitor.check_missing_users(pg) == 1
        entry = ReconciliationLog(db).list_entries(operation=CREATE_USER_OPERATION)[0]
        assert entry.status == "pending"
        assert entry.payload == {
            "email": "nobody@x.edu",
            "name": "Jane",
            "institutionName": "Inst open",
            "role": "institution_admin",
        }

    def test_institution_consistency_matches_by_name(self, db, pg, monitor):
        db.collection("institutions").document("fb1").set({"name": "Same Id"})
        db.collection("institutions").document("fb2").set({"name": "Other Id"})
        db.collection("institutions").document("fb3").set({"name": "Firestore Only"})
        pg.institutions.extend(
            [{"id": "fb1", "name": "Same Id"}, {"id": "uuid-2", "name": "Other Id"}]
        )
        assert monitor.check_institution_id_consistency(pg) == 1


class TestPerformSync:
    def test_report_counts(self, db, pg_store, monitor):
        _interest(db, "open", "nobody@x.edu")
        db.collection("institutions").document("fb1").set({"name": "Firestore Only"})

        report = monitor.perform_sync()

        assert report.state == "idle"
        assert report.cycles == 1
        assert report.orphanedRequests == 1
        assert report.missingUsers == 1
        assert report.idMismatches == 1
        assert report.lastRun is not None
        assert report.lastError is None
        assert pg_store.opened == pg_store.closed == 1
        assert monitor.get_sync_report() == report

    def test_repeated_cycles_do_not_duplicate_intents(self, db, monitor):
        _interest(db, "open", "nobody@x.edu")
        monitor.perform_sync()
        monitor.perform_sync()

        log = ReconciliationLog(db)
        assert len(log.list_entries(operation=FLAG_OPERATION)) == 1
        assert len(log.list_entries(operation=CREATE_USER_OPERATION)) == 1
        assert monitor.get_sync_report().cycles == 2

    def test_errors_are_kept_on_the_report(self, db, unavailable_pg_store):
        monitor = SyncMonitor(db, unavailable_pg_store, interval=3600)

        report = monitor.perform_sync()

        assert report.state == "idle"
        assert report.cycles == 1
        assert "postgres unavailable" in report.lastError
        assert monitor.state == "idle"

    def test_interest_with_null_fields_is_checked(self, db, monitor):
        db.collection("institution_interests").document("blank").set(
            {"institutionName": "South", "contactName": None, "email": "c@south.edu", "status": None}
        )

        report = monitor.perform_sync()

        assert report.lastError is None
        assert report.orphanedRequests == 1
        assert report.missingUsers == 1


class TestLifecycle:
    def test_start_runs_immediately_and_stop_joins(self, db, pg_store):
        monitor = SyncMonitor(db, pg_store, interval=3600)
        monitor.start()
        try:
            deadline = time.monotonic() + 5
            while monitor.get_sync_report().cycles < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert monitor.get_sync_report().cycles == 1
            assert monitor.running
        finally:
            monitor.stop(timeout=5)
        assert not monitor.running

    def test_interval_repeats(self, db, pg_store):
        monitor = SyncMonitor(db, pg_store, interval=0.01)
        monitor.start()
        try:
            deadline = time.monotonic() + 5
            while monitor.get_sync_report().cycles < 3 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            monitor.stop(timeout=5)
        assert monitor.get_sync_report().cycles >= 3

    def test_default_interval_from_config(self, db, pg_store):
        from reconciler import config

        assert SyncMonitor(db, pg_store).interval == config.SYNC_INTERVAL_SECONDS
