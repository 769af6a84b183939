"""
============================================================================
FILE: test_migration.py
LOCATION: tests/test_migration.py
============================================================================

PURPOSE:
    Tests for the flat-to-hierarchy migration driver.

KEY COMPONENTS:
    - TestMigrateInstitutions: default filling and re-run stability
    - TestMigrateUsers: placement per role, skips, failures, dry run
    - TestMigrationStats / TestReplay

USAGE:
    Run with: pytest tests/test_migration.py -v
============================================================================
"""
from unittest.mock import patch

import pytest

from reconciler.exceptions import MigrationError
from reconciler.lookup import UserLookupService
from reconciler.migration import DataMigrationService
from reconciler.outbox import ReconciliationLog


def _seed_institution(db, inst_id="inst1", **data):
    db.collection("institutions").document(inst_id).set({"name": "Lethbridge Polytechnic", **data})


def _seed_user(db, uid, role, **data):
    db.collection("users").document(uid).set(
        {"name": uid.title(), "email": f"{uid}@lethpolytech.ca", "role": role, **data}
    )


@pytest.fixture
def service(db):
    return DataMigrationService(db)


class TestMigrateInstitutions:
    def test_fills_missing_defaults(self, db, service):
        _seed_institution(db, createdAt="2024-01-01T00:00:00+00:00")
        assert service.migrate_institutions() == 1

        data = db.collection("institutions").document("inst1").get().to_dict()
        assert data["approvalStatus"] == "approved"
        assert data["isActive"] is True
        assert data["customSignupToken"]
        assert data["customSignupLink"].endswith(f"/signup-institution/{data['customSignupToken']}")
        assert data["partnershipRequestDate"] == "2024-01-01T00:00:00+00:00"
        assert "updatedAt" in data

    def test_existing_values_survive(self, db, service):
        _seed_institution(db, approvalStatus="rejected", isActive=False, customSignupToken="tok")
        service.migrate_institutions()
        data = db.collection("institutions").document("inst1").get().to_dict()
        assert data["approvalStatus"] == "rejected"
        assert data["isActive"] is False
        assert data["customSignupToken"] == "tok"

    def test_rerun_is_stable(self, db, service):
        _seed_institution(db)
        _seed_institution(db, "inst2", name="Leadcity University")
        service.migrate_institutions()
        first = {
            d.id: d.to_dict() for d in db.collection("institutions").stream()
        }
        service.migrate_institutions()
        second = {
            d.id: d.to_dict() for d in db.collection("institutions").stream()
        }

        assert sorted(first) == sorted(second) == ["inst1", "inst2"]
        for inst_id in first:
            a = {k: v for k, v in first[inst_id].items() if k != "updatedAt"}
            b = {k: v for k, v in second[inst_id].items() if k != "updatedAt"}
            assert a == b

    def test_institution_phase_failure_aborts(self, db, service):
        _seed_institution(db)
        _seed_user(db, "ada", "student", institutionId="inst1")
        with patch.object(
            service.hierarchy, "upsert_institution", side_effect=RuntimeError("quota")
        ):
            with pytest.raises(MigrationError):
                service.migrate_all_data()
        assert service.get_migration_stats().migratedUsers == 0


class TestMigrateUsers:
    def test_student_creates_department_and_is_found(self, db, service):
        _seed_institution(db)
        _seed_user(db, "u1", "student", institutionId="inst1", department="CS")

        summary = service.migrate_all_data()

        departments = service.hierarchy.list_departments("inst1")
        assert [d.departmentName for d in departments] == ["CS"]
        dept_id = departments[0].id
        assert db.collection(
            f"institutions/inst1/departments/{dept_id}/students"
        ).document("u1").get().exists

        location = UserLookupService(db).find_user_by_id("u1")
        assert location.role == "student"
        assert location.institutionId == "inst1"
        assert location.departmentId == dept_id
        assert summary.students == 1
        assert summary.departmentsCreated == 1

    def test_every_role_lands_in_one_place(self, db, service):
        _seed_institution(db)
        _seed_user(db, "pa", "platform_admin", institutionId="inst1")
        _seed_user(db, "ext", "teacher")
        _seed_user(db, "ia", "institution_admin", institutionId="inst1")
        _seed_user(db, "t1", "teacher", institutionId="inst1", department="Maths")
        _seed_user(db, "s1", "student", institutionId="inst1")

        summary = service.migrate_all_data()

        assert summary.platformAdmins == 1
        assert summary.externalUsers == 1
        assert summary.institutionAdmins == 1
        assert summary.teachers == 1
        assert summary.students == 1
        assert summary.migrated_users == 5
        assert summary.skipped == summary.failed == 0

        lookup = UserLookupService(db)
        expected = {
            "pa": "platform_admin",
            "ext": "teacher",
            "ia": "institution_admin",
            "t1": "teacher",
            "s1": "student",
        }
        for uid, role in expected.items():
            assert lookup.find_user_by_id(uid).role == role
        assert lookup.find_user_by_id("pa").institutionId is None
        names = sorted(d.departmentName for d in service.hierarchy.list_departments("inst1"))
        assert names == ["Default Department", "Maths"]

    def test_rerun_does_not_duplicate_users(self, db, service):
        _seed_institution(db)
        _seed_user(db, "s1", "student", institutionId="inst1", department="CS")
        service.migrate_all_data()
        second = service.migrate_all_data()

        departments = service.hierarchy.list_departments("inst1")
        assert len(departments) == 1
        assert departments[0].studentCount == 1
        assert second.departmentsCreated == 0
        assert service.get_migration_stats().migratedUsers == 1

    def test_unplaceable_users_are_logged(self, db, service):
        _seed_user(db, "lost", "student", institutionId="missing-inst")
        _seed_user(db, "orphan", "institution_admin")
        _seed_user(db, "weird", "janitor")

        summary = service.migrate_all_data()

        assert summary.skipped == 3
        assert summary.migrated_users == 0
        entries = ReconciliationLog(db).list_entries(status="skipped", operation="migrate_user")
        issue_types = sorted(e.payload["issueType"] for e in entries)
        assert issue_types == [
            "institution_not_found",
            "unknown_role",
            "unlinked_institution_admin",
        ]
        assert UserLookupService(db).find_user_by_id("lost") is None

    def test_one_failure_does_not_stop_the_batch(self, db, service):
        _seed_institution(db)
        _seed_user(db, "s1", "student", institutionId="inst1")
        _seed_user(db, "s2", "student", institutionId="inst1")

        original = service.hierarchy.place_user

        def flaky(placement):
            if placement.user.id == "s1":
                raise RuntimeError("write rejected")
            return original(placement)

        with patch.object(service.hierarchy, "place_user", side_effect=flaky):
            summary = service.migrate_all_data()

        assert summary.failed == 1
        assert summary.students == 1
        failed = ReconciliationLog(db).list_entries(status="failed")
        assert [e.target for e in failed] == ["users/s1"]
        assert failed[0].reason == "write rejected"

    def test_dry_run_writes_nothing(self, db):
        _seed_institution(db)
        _seed_user(db, "s1", "student", institutionId="inst1")
        _seed_user(db, "orphan", "institution_admin")
        before = db.collection("institutions").document("inst1").get().to_dict()

        summary = DataMigrationService(db, dry_run=True).migrate_all_data()

        assert summary.dryRun is True
        assert summary.students == 1
        assert summary.skipped == 1
        assert db.collection("institutions").document("inst1").get().to_dict() == before
        assert list(db.collection("_reconciliation_log").stream()) == []
        assert list(db.collection_group("students").stream()) == []

    def test_separate_source_client(self, db):
        from reconciler.mock_firestore import MockFirestoreClient

        source = MockFirestoreClient()
        _seed_user(source, "ext", "student")
        summary = DataMigrationService(db, source_db=source).migrate_all_data()
        assert summary.externalUsers == 1
        assert db.collection("externalUsers").document("ext").get().exists
        assert not db.collection("users").document("ext").get().exists

    def test_dry_run_with_source_client_matches_applied_run(self, db):
        from reconciler.mock_firestore import MockFirestoreClient

        source = MockFirestoreClient()
        _seed_institution(source)
        _seed_user(source, "s1", "student", institutionId="inst1")
        _seed_user(source, "lost", "student", institutionId="gone")

        dry = DataMigrationService(db, source_db=source, dry_run=True).migrate_all_data()
        applied = DataMigrationService(db, source_db=source).migrate_all_data()

        assert (dry.students, dry.skipped) == (1, 1)
        assert (applied.students, applied.skipped) == (1, 1)

    def test_null_text_fields_do_not_fail_the_user(self, db, service):
        _seed_institution(db)
        db.collection("users").document("s1").set(
            {"name": None, "email": None, "role": "student", "institutionId": "inst1"}
        )

        summary = service.migrate_all_data()

        assert summary.students == 1
        assert summary.failed == 0
        location = UserLookupService(db).find_user_by_id("s1")
        assert location.user["name"] == ""


class TestMigrationStats:
    def test_counts_source_and_placed(self, db, service):
        _seed_institution(db)
        _seed_institution(db, "inst2", name="Leadcity University")
        _seed_user(db, "s1", "student", institutionId="inst1")
        _seed_user(db, "ia", "institution_admin", institutionId="inst2")
        _seed_user(db, "ext", "student")

        before = service.get_migration_stats()
        assert before.totalUsers == 3
        assert before.totalInstitutions == 2
        assert before.migratedUsers == 0
        assert before.migratedInstitutions == 0

        service.migrate_all_data()
        after = service.get_migration_stats()
        assert after.migratedUsers == 3
        assert after.migratedInstitutions == 2


class TestReplay:
    def test_skipped_user_is_placed_after_fix(self, db, service):
        _seed_user(db, "s1", "student", institutionId="inst1")
        service.migrate_all_data()
        log = ReconciliationLog(db)
        assert len(log.list_entries(status="skipped")) == 1

        _seed_institution(db)
        counts = log.replay(service.replay_handlers(), statuses=["skipped"])

        assert counts["applied"] == 1
        assert UserLookupService(db).find_user_by_id("s1").role == "student"
        entry = log.list_entries(operation="migrate_user")[0]
        assert entry.status == "applied"

    def test_replay_of_deleted_user_is_skipped(self, db, service):
        _seed_user(db, "gone", "janitor")
        service.migrate_all_data()
        db.collection("users").document("gone").delete()

        counts = ReconciliationLog(db).replay(service.replay_handlers(), statuses=["skipped"])
        assert counts["skipped"] == 1
