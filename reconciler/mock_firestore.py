"""
============================================================================
FILE: mock_firestore.py
LOCATION: reconciler/mock_firestore.py
============================================================================

PURPOSE:
    In-memory stand-in for the Firestore client and Firebase Auth used when
    USE_REAL_FIREBASE is false and throughout the test suite.

ROLE IN PROJECT:
    - Lets the migration, lookup and checker code run without a Firebase
      project, including nested subcollection paths
    - Optionally persists to a JSON file (MOCK_DB_FILE) so an operator can
      rehearse a migration against a local snapshot
    - Mimics the handful of Firebase Auth calls the HTTP surface needs

KEY COMPONENTS:
    - MockFirestoreClient: collection(), collection_group()
    - MockCollectionReference: document(), add(), where(), stream()
    - MockDocumentReference: get(), set(merge=...), update(), delete(),
      collection(), collections()
    - MockDocumentSnapshot: exists, id, to_dict(), get()
    - MockQuery: where(), order_by(), limit(), stream()
    - MockAuth: verify_id_token(), create_user(), get_user()

DEPENDENCIES:
    - External: None (pure Python implementation)
    - Internal: None

USAGE:
    from reconciler.mock_firestore import MockFirestoreClient

    client = MockFirestoreClient()
    client.collection("institutions").document("inst1").set({"name": "X"})
============================================================================
"""
import copy
import json
import os
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional


def _auto_id() -> str:
    return uuid.uuid4().hex[:20]


class MockDocumentSnapshot:
    def __init__(self, ref, data, exists=True):
        self._ref = ref
        self.id = ref.id
        self._data = copy.deepcopy(data) if data is not None else None
        self.exists = exists

    def to_dict(self):
        # Real Firestore returns None for a missing document
        if not self.exists:
            return None
        return copy.deepcopy(self._data)

    def get(self, field_path):
        if not self.exists or not self._data:
            return None

        curr = self._data
        for part in field_path.split("."):
            if isinstance(curr, dict) and part in curr:
                curr = curr[part]
            else:
                return None
        return curr

    @property
    def reference(self):
        return self._ref


class MockDocumentReference:
    def __init__(self, collection_parent, document_id):
        self.parent = collection_parent
        self.id = document_id

    @property
    def _client(self):
        return self.parent.client

    @property
    def _docs(self):
        return self.parent._docs

    @property
    def path(self):
        return f"{self.parent.path}/{self.id}"

    def get(self, transaction=None):
        data = self._docs.get(self.id)
        return MockDocumentSnapshot(self, data, exists=data is not None)

    def set(self, data: Dict[str, Any], merge=False):
        payload = copy.deepcopy(data)
        if merge and self.id in self._docs:
            self._docs[self.id].update(payload)
        else:
            self._docs[self.id] = payload
        self._client._save_db()

    def update(self, data: Dict[str, Any]):
        if self.id not in self._docs:
            raise KeyError(f"No document to update: {self.path}")
        self._docs[self.id].update(copy.deepcopy(data))
        self._client._save_db()

    def delete(self):
        self._docs.pop(self.id, None)
        self._client._save_db()

    def collection(self, collection_name):
        return self._client.collection(f"{self.path}/{collection_name}")

    def collections(self):
        """Return the direct, non-empty subcollections of this document."""
        prefix = f"{self.path}/"
        found = []
        for path, docs in self._client._db_data.items():
            if path.startswith(prefix) and "/" not in path[len(prefix):] and docs:
                found.append(self._client.collection(path))
        return found


class MockQuery:
    def __init__(self, collection, filters=None, limit=None, order_by=None):
        self.collection = collection
        self.filters = list(filters or [])
        self.limit_val = limit
        self.order_by_val = order_by

    def where(self, field, op, value):
        return MockQuery(
            self.collection,
            self.filters + [(field, op, value)],
            self.limit_val,
            self.order_by_val,
        )

    def limit(self, count):
        return MockQuery(self.collection, self.filters, count, self.order_by_val)

    def order_by(self, field, direction="ASCENDING"):
        return MockQuery(
            self.collection, self.filters, self.limit_val, (field, direction)
        )

    @staticmethod
    def _matches(data, field, op, value):
        val = data.get(field)
        if op == "==":
            return val == value
        if op == "!=":
            return val != value
        if op == "in":
            return bool(value) and val in value
        if op == "array_contains":
            return isinstance(val, list) and value in val
        if val is None:
            return False
        if op == ">":
            return val > value
        if op == ">=":
            return val >= value
        if op == "<":
            return val < value
        if op == "<=":
            return val <= value
        raise ValueError(f"Unsupported operator: {op}")

    def stream(self):
        results = []
        for doc_id, data in self.collection._docs.items():
            if all(self._matches(data, f, op, v) for f, op, v in self.filters):
                ref = self.collection.document(doc_id)
                results.append(MockDocumentSnapshot(ref, data, exists=True))

        if self.order_by_val:
            field, direction = self.order_by_val
            results.sort(
                key=lambda snap: (snap._data.get(field) is None, str(snap._data.get(field))),
                reverse=direction == "DESCENDING",
            )

        if self.limit_val:
            results = results[: self.limit_val]

        return iter(results)

    def get(self):
        return list(self.stream())


class MockCollectionReference(MockQuery):
    def __init__(self, client, path):
        super().__init__(self)
        self.client = client
        self.path = path
        self.id = path.split("/")[-1]
        self._docs = client._db_data.setdefault(path, {})

    def document(self, document_id=None):
        # Creating a reference never creates the document
        return MockDocumentReference(self, document_id or _auto_id())

    def add(self, data: Dict[str, Any], document_id=None):
        doc_ref = self.document(document_id)
        doc_ref.set(data)
        return datetime.utcnow(), doc_ref


class MockFirestoreClient:
    def __init__(self, db_file: Optional[str] = None):
        self.db_file = db_file
        self._db_data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.reload()

    def reload(self):
        if self.db_file and os.path.exists(self.db_file):
            with open(self.db_file, "r", encoding="utf-8") as handle:
                self._db_data = json.load(handle)
        else:
            self._db_data = {}

    def _save_db(self):
        if not self.db_file:
            return
        with open(self.db_file, "w", encoding="utf-8") as handle:
            json.dump(self._db_data, handle, indent=2, default=str)

    def collection(self, path):
        return MockCollectionReference(self, path)

    def collection_group(self, collection_id):
        matches: List[MockDocumentSnapshot] = []
        for path in list(self._db_data.keys()):
            if path.split("/")[-1] == collection_id:
                matches.extend(self.collection(path).stream())
        return MockPreloadedQuery(matches)


class MockPreloadedQuery:
    """Result of collection_group(): snapshots gathered across parents."""

    def __init__(self, items):
        self.items = items

    def where(self, field, op, value):
        return MockPreloadedQuery(
            [doc for doc in self.items if MockQuery._matches(doc._data, field, op, value)]
        )

    def limit(self, count):
        return MockPreloadedQuery(self.items[:count])

    def stream(self):
        return iter(list(self.items))

    def get(self):
        return list(self.items)


def get_mock_db():
    """Create an in-memory client, persisted to MOCK_DB_FILE when set."""
    return MockFirestoreClient(os.getenv("MOCK_DB_FILE") or None)


class MockUserRecord:
    def __init__(self, uid, email, display_name=None, disabled=False):
        self.uid = uid
        self.email = email
        self.display_name = display_name
        self.disabled = disabled
        self.custom_claims = {}


class MockAuthError(Exception):
    pass


class MockUserNotFoundError(MockAuthError):
    pass


class MockInvalidIdTokenError(MockAuthError):
    pass


class MockAuth:
    UserNotFoundError = MockUserNotFoundError
    InvalidIdTokenError = MockInvalidIdTokenError

    def __init__(self):
        self._users: Dict[str, MockUserRecord] = {}

    def create_user(self, email=None, display_name=None, uid=None, **kwargs):
        if not email:
            raise ValueError("Email required")
        uid = uid or f"mock-user-{int(time.time() * 1000)}"
        user = MockUserRecord(uid, email, display_name, kwargs.get("disabled", False))
        self._users[uid] = user
        return user

    def get_user(self, uid):
        if uid not in self._users:
            raise self.UserNotFoundError(f"User not found: {uid}")
        return self._users[uid]

    def get_user_by_email(self, email):
        for user in self._users.values():
            if user.email == email:
                return user
        raise self.UserNotFoundError(f"User not found: {email}")

    def verify_id_token(self, token, check_revoked=False, clock_skew_seconds=0):
        """Accept tokens shaped like "mock-token-<uid>"."""
        prefix = "mock-token-"
        if not token or not token.startswith(prefix) or len(token) == len(prefix):
            raise self.InvalidIdTokenError("Invalid mock token format")
        uid = token[len(prefix):]
        email = self._users[uid].email if uid in self._users else f"{uid}@mock.local"
        return {"uid": uid, "email": email}
