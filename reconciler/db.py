"""
============================================================================
FILE: db.py
LOCATION: reconciler/db.py
============================================================================

PURPOSE:
    Read-only access to the PostgreSQL mirror (`institutions`, `users`) for
    the cross-store checkers.

ROLE IN PROJECT:
    The checkers never write to PostgreSQL; repairs are emitted as SQL text
    for an operator to review. Every checker run opens one connection through
    PostgresStore.session() and the connection is closed when the block
    exits, including on error.

KEY COMPONENTS:
    - PostgresStore: connection factory bound to a conninfo string
    - PostgresSession: the queries the checkers need

DEPENDENCIES:
    - External: psycopg (v3, dict_row rows)
    - Internal: exceptions, logging_config

USAGE:
    store = PostgresStore(config.postgres_conninfo())
    with store.session() as pg:
        users = pg.fetch_users()
============================================================================
"""
from contextlib import contextmanager
from typing import Iterator, List, Optional

import psycopg
from psycopg.rows import dict_row

from reconciler.exceptions import StoreUnavailableError
from reconciler.logging_config import get_logger


logger = get_logger("db")


class PostgresSession:
    """Queries against one open connection."""

    def __init__(self, conn):
        self.conn = conn

    def _all(self, query: str, params=None) -> List[dict]:
        return list(self.conn.execute(query, params).fetchall())

    def fetch_users(self) -> List[dict]:
        return self._all(
            """
            SELECT id, email, name, role, institution_id, firebase_uid
            FROM users
            ORDER BY created_at DESC
            """
        )

    def fetch_institutions(self) -> List[dict]:
        return self._all(
            """
            SELECT id, name, domain, approval_status, is_active
            FROM institutions
            ORDER BY created_at DESC
            """
        )

    def find_user_by_email(self, email: str) -> Optional[dict]:
        if not email:
            return None
        return self.conn.execute(
            """
            SELECT id, email, name, role, institution_id, firebase_uid
            FROM users
            WHERE email = %s
            """,
            (email,),
        ).fetchone()

    def find_invalid_institution_links(self) -> List[dict]:
        """Users whose institution_id points at no institution row."""
        return self._all(
            """
            SELECT u.id, u.email, u.institution_id
            FROM users u
            LEFT JOIN institutions i ON u.institution_id = i.id
            WHERE u.institution_id IS NOT NULL AND i.id IS NULL
            """
        )

    def find_unlinked_institution_admins(self) -> List[dict]:
        return self._all(
            """
            SELECT id, email, name
            FROM users
            WHERE role = 'institution_admin' AND institution_id IS NULL
            """
        )

    def count_institutions(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS count FROM institutions").fetchone()
        return int(row["count"]) if row else 0

    def search_users(self, term: str) -> List[dict]:
        pattern = f"%{term}%"
        return self._all(
            """
            SELECT id, email, name, institution_id
            FROM users
            WHERE name ILIKE %s OR email ILIKE %s
            """,
            (pattern, pattern),
        )

    def search_institutions(self, term: str) -> List[dict]:
        return self._all(
            """
            SELECT id, name, domain
            FROM institutions
            WHERE name ILIKE %s
            """,
            (f"%{term}%",),
        )


class PostgresStore:
    """Opens PostgresSession objects on demand."""

    def __init__(self, conninfo: str):
        self.conninfo = conninfo

    @contextmanager
    def session(self) -> Iterator[PostgresSession]:
        """Yield a session; the connection is closed on exit.

        Raises:
            StoreUnavailableError: If the server cannot be reached.
        """
        try:
            conn = psycopg.connect(self.conninfo, row_factory=dict_row)
        except psycopg.OperationalError as exc:
            raise StoreUnavailableError("postgres", str(exc)) from exc

        try:
            yield PostgresSession(conn)
        finally:
            conn.close()
            logger.debug("PostgreSQL connection closed")
