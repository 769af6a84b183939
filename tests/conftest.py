# conftest.py
# Shared fixtures: in-memory Firestore and a PostgreSQL stand-in
#
# FakePgSession answers the same queries as reconciler.db.PostgresSession
# from plain lists of row dicts.

from contextlib import contextmanager

import pytest

from reconciler.exceptions import StoreUnavailableError
from reconciler.mock_firestore import MockFirestoreClient


class FakePgSession:
    def __init__(self, users=None, institutions=None):
        self.users = list(users or [])
        self.institutions = list(institutions or [])

    def fetch_users(self):
        return [dict(u) for u in self.users]

    def fetch_institutions(self):
        return [dict(i) for i in self.institutions]

    def find_user_by_email(self, email):
        for user in self.users:
            if user.get("email") == email:
                return dict(user)
        return None

    def find_invalid_institution_links(self):
        ids = {i["id"] for i in self.institutions}
        return [
            dict(u)
            for u in self.users
            if u.get("institution_id") is not None and u["institution_id"] not in ids
        ]

    def find_unlinked_institution_admins(self):
        return [
            dict(u)
            for u in self.users
            if u.get("role") == "institution_admin" and u.get("institution_id") is None
        ]

    def count_institutions(self):
        return len(self.institutions)

    def search_users(self, term):
        term = term.lower()
        return [
            dict(u)
            for u in self.users
            if term in (u.get("name") or "").lower() or term in (u.get("email") or "").lower()
        ]

    def search_institutions(self, term):
        term = term.lower()
        return [dict(i) for i in self.institutions if term in (i.get("name") or "").lower()]


class FakePgStore:
    def __init__(self, pg=None):
        self.pg = pg or FakePgSession()
        self.opened = 0
        self.closed = 0

    @contextmanager
    def session(self):
        self.opened += 1
        try:
            yield self.pg
        finally:
            self.closed += 1


class UnavailablePgStore:
    def session(self):
        raise StoreUnavailableError("postgres", "connection refused")


@pytest.fixture
def db():
    return MockFirestoreClient()


@pytest.fixture
def pg_store():
    return FakePgStore()


@pytest.fixture
def pg(pg_store):
    return pg_store.pg


@pytest.fixture
def unavailable_pg_store():
    return UnavailablePgStore()
