"""
Tests for the operator API: auth guard and each route.
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from reconciler.config import get_db, get_pg_store
from reconciler.main import app
from reconciler.mock_firestore import MockAuth


ADMIN_HEADERS = {"Authorization": "Bearer mock-token-admin1"}


@pytest.fixture(autouse=True)
def reset_dependency_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(db, pg_store):
    db.collection("platformAdmins").document("admin1").set(
        {"name": "Admin", "email": "admin@octavia.ai", "role": "platform_admin"}
    )
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_pg_store] = lambda: pg_store
    return TestClient(app)


def _seed_flat_users(db):
    db.collection("institutions").document("inst1").set({"name": "North College"})
    users = db.collection("users")
    users.document("pa2").set({"name": "Second Admin", "email": "pa2@x.io", "role": "platform_admin"})
    users.document("s1").set(
        {"name": "Stu", "email": "s1@x.io", "role": "student",
         "institutionId": "inst1", "department": "Physics"}
    )
    users.document("lost").set(
        {"name": "Lost", "email": "lost@x.io", "role": "student", "institutionId": "gone"}
    )


class TestAuthGuard:
    def test_missing_header_is_rejected(self, client):
        response = client.get("/api/migration/stats")
        assert response.status_code in (401, 403)

    def test_bad_token_is_unauthorized(self, client):
        response = client.get(
            "/api/migration/stats", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    def test_verification_outage_is_unauthorized(self, client):
        class CertificateOutageAuth(MockAuth):
            def verify_id_token(self, token, check_revoked=False, clock_skew_seconds=0):
                raise RuntimeError("could not fetch public certificates")

        with patch("reconciler.auth.get_auth", return_value=CertificateOutageAuth()):
            response = client.get("/api/migration/stats", headers=ADMIN_HEADERS)

        assert response.status_code == 401
        assert "could not fetch public certificates" in response.json()["detail"]

    def test_unknown_user_is_forbidden(self, client):
        response = client.get(
            "/api/migration/stats", headers={"Authorization": "Bearer mock-token-stranger"}
        )
        assert response.status_code == 403

    def test_non_admin_is_forbidden(self, client, db):
        db.collection("externalUsers").document("ext1").set({"name": "E", "role": "student"})
        response = client.get(
            "/api/migration/stats", headers={"Authorization": "Bearer mock-token-ext1"}
        )
        assert response.status_code == 403

    def test_root_is_public(self, client):
        response = client.get("/")
        assert response.status_code == 200


class TestMigrationRoutes:
    def test_dry_run_writes_nothing(self, client, db):
        _seed_flat_users(db)

        response = client.post("/api/migration/run?dry_run=true", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["dryRun"] is True
        assert body["platformAdmins"] == 1
        assert body["students"] == 1
        assert body["skipped"] == 1
        assert not db.collection("platformAdmins").document("pa2").get().exists
        assert list(db.collection("_reconciliation_log").stream()) == []

    def test_run_places_users_and_logs_skips(self, client, db):
        _seed_flat_users(db)

        response = client.post("/api/migration/run", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["dryRun"] is False
        assert body["institutions"] == 1
        assert body["students"] == 1
        assert body["departmentsCreated"] == 1

        log = client.get("/api/reconcile/log?status=skipped", headers=ADMIN_HEADERS).json()
        assert [entry["target"] for entry in log] == ["users/lost"]
        assert log[0]["operation"] == "migrate_user"

    def test_stats(self, client, db):
        _seed_flat_users(db)
        client.post("/api/migration/run", headers=ADMIN_HEADERS)

        response = client.get("/api/migration/stats", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "totalUsers": 3,
            "totalInstitutions": 1,
            # admin1, pa2 and s1
            "migratedUsers": 3,
            "migratedInstitutions": 1,
        }


class TestLookupRoute:
    def test_location_of_known_user(self, client):
        response = client.get("/api/users/admin1/location", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "platform_admin"
        assert body["path"] == "platformAdmins/admin1"

    def test_unknown_user_is_404(self, client):
        response = client.get("/api/users/ghost/location", headers=ADMIN_HEADERS)
        assert response.status_code == 404


class TestReconcileRoutes:
    def test_validation_report(self, client, db):
        db.collection("institution_interests").document("i1").set(
            {"institutionName": "South", "email": "c@south.edu", "status": "processed"}
        )

        response = client.get("/api/reconcile/validation", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["totalIssues"] == len(body["issues"])
        assert body["criticalIssues"] >= 1
        assert "missing_user" in {issue["type"] for issue in body["issues"]}

    def test_sync_records_intents(self, client, db, pg):
        pg.users.append({"id": 1, "email": "known@x.edu"})
        db.collection("institution_interests").document("i1").set(
            {"institutionName": "South", "email": "c@south.edu", "status": "pending"}
        )

        response = client.post("/api/reconcile/sync", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["orphanedRequests"] == 1
        assert body["missingUsers"] == 1
        assert body["cycles"] == 1

        pending = client.get(
            "/api/reconcile/log?status=pending&operation=create_missing_user",
            headers=ADMIN_HEADERS,
        ).json()
        assert [entry["target"] for entry in pending] == ["institution_interests/i1"]
