"""
============================================================================
FILE: config.py
LOCATION: reconciler/config.py
============================================================================

PURPOSE:
    Centralized configuration for Firestore, Firebase Auth and the
    PostgreSQL mirror.

ROLE IN PROJECT:
    Loads environment variables (.env / .env.local) and hands out lazily
    created clients. Nothing connects at import time; services receive the
    clients explicitly from their callers.

KEY COMPONENTS:
    - get_db: Returns the in-memory or real Firestore client
    - get_auth: Returns MockAuth or firebase_admin.auth
    - init_firebase: Initializes the Firebase Admin SDK
    - postgres_conninfo: Builds the libpq connection string
    - get_pg_store: Returns the PostgresStore for the configured DSN
    - reset_clients: Drops cached clients (tests)

DEPENDENCIES:
    - External: firebase_admin, psycopg, python-dotenv
    - Internal: mock_firestore, db, exceptions

USAGE:
    from reconciler.config import get_db, get_pg_store
============================================================================
"""

import json
import os
from pathlib import Path

import dotenv
import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import firestore
from psycopg.conninfo import make_conninfo

from reconciler.exceptions import ConfigurationError


PROJECT_ROOT = Path(__file__).resolve().parent.parent
# Test runs keep the environment conftest.py sets up
_LOAD_DOTENV = os.getenv("TESTING", "false").lower() != "true"
for _env_name in (".env", ".env.local"):
    _env_path = PROJECT_ROOT / _env_name
    if _LOAD_DOTENV and _env_path.exists():
        dotenv.load_dotenv(_env_path, override=True)

# Firebase
USE_REAL_FIREBASE = os.getenv("USE_REAL_FIREBASE", "false").lower() == "true"
USE_MOCK_DB = not USE_REAL_FIREBASE
FIREBASE_PROJECT_ID = os.getenv("VITE_FIREBASE_PROJECT_ID")

# Links handed out to institutions and departments
SIGNUP_BASE_URL = os.getenv("SIGNUP_BASE_URL", "https://octavia.ai").rstrip("/")

# Sync monitor cadence (one hour)
SYNC_INTERVAL_SECONDS = int(os.getenv("SYNC_INTERVAL_SECONDS", "3600"))

# PostgreSQL defaults mirror the legacy scripts
DB_DEFAULTS = {
    "host": "localhost",
    "user": "postgres",
    "password": "",
    "dbname": "octavia_interview_buddy",
    "port": "5432",
}

_db_instance = None
_auth_instance = None
_pg_store = None


def _resolve_credentials():
    """Resolve Firebase service account credentials.

    Order: FIREBASE_SERVICE_ACCOUNT (inline JSON), then
    GOOGLE_APPLICATION_CREDENTIALS or FIREBASE_CREDENTIALS (file path),
    then serviceAccountKey.json at the project root.

    Returns:
        credentials.Base | None: Certificate credentials, or None to fall
        back to application default credentials.

    Raises:
        ConfigurationError: If inline JSON cannot be parsed or a configured
        path does not exist.
    """
    inline = os.getenv("FIREBASE_SERVICE_ACCOUNT")
    if inline:
        try:
            return credentials.Certificate(json.loads(inline))
        except ValueError as exc:
            raise ConfigurationError(
                f"FIREBASE_SERVICE_ACCOUNT is not valid JSON: {exc}"
            ) from exc

    env_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or os.getenv(
        "FIREBASE_CREDENTIALS"
    )
    if env_path:
        path = Path(env_path)
        if not path.is_absolute():
            path = PROJECT_ROOT / env_path
        if not path.exists():
            raise ConfigurationError(f"Firebase credentials not found: {path}")
        return credentials.Certificate(str(path))

    default_path = PROJECT_ROOT / "serviceAccountKey.json"
    if default_path.exists():
        return credentials.Certificate(str(default_path))
    return None


def init_firebase():
    """Initialize the Firebase Admin SDK once per process.

    Raises:
        ConfigurationError: If configured credentials are unusable.
    """
    if firebase_admin._apps:
        return
    cred = _resolve_credentials()
    options = {"projectId": FIREBASE_PROJECT_ID} if FIREBASE_PROJECT_ID else None
    if cred is None:
        firebase_admin.initialize_app(options=options)
    else:
        firebase_admin.initialize_app(cred, options=options)


def get_db():
    """Get the Firestore client (in-memory or real).

    Returns:
        object: google.cloud.firestore.Client or MockFirestoreClient.
    """
    global _db_instance
    if _db_instance is None:
        if USE_MOCK_DB:
            from reconciler.mock_firestore import get_mock_db

            _db_instance = get_mock_db()
        else:
            init_firebase()
            _db_instance = firestore.client()
    return _db_instance


def get_auth():
    """Get the Firebase auth module or the mock auth service."""
    global _auth_instance
    if _auth_instance is None:
        if USE_MOCK_DB:
            from reconciler.mock_firestore import MockAuth

            _auth_instance = MockAuth()
        else:
            init_firebase()
            _auth_instance = firebase_auth
    return _auth_instance


def postgres_conninfo() -> str:
    """Build the PostgreSQL connection string from the environment.

    DATABASE_URL wins, then KOYEB_DATABASE_URL, then the discrete
    DB_HOST / DB_USER / DB_PASSWORD / DB_NAME / DB_PORT variables.
    """
    for name in ("DATABASE_URL", "KOYEB_DATABASE_URL"):
        url = os.getenv(name)
        if url:
            return url

    return make_conninfo(
        host=os.getenv("DB_HOST", DB_DEFAULTS["host"]),
        user=os.getenv("DB_USER", DB_DEFAULTS["user"]),
        password=os.getenv("DB_PASSWORD", DB_DEFAULTS["password"]),
        dbname=os.getenv("DB_NAME", DB_DEFAULTS["dbname"]),
        port=os.getenv("DB_PORT", DB_DEFAULTS["port"]),
    )


def get_pg_store():
    """Get the PostgresStore bound to the configured DSN."""
    global _pg_store
    if _pg_store is None:
        from reconciler.db import PostgresStore

        _pg_store = PostgresStore(postgres_conninfo())
    return _pg_store


def reset_clients():
    """Forget cached clients so the next call rebuilds them."""
    global _db_instance, _auth_instance, _pg_store
    _db_instance = None
    _auth_instance = None
    _pg_store = None
