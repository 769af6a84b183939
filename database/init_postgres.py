"""
Create the institutions/users mirror tables in PostgreSQL.
Run once against a fresh database; the DDL is idempotent.
"""
import os
import sys

import psycopg

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from reconciler.config import postgres_conninfo
from reconciler.logging_config import setup_logging


def main() -> int:
    logger = setup_logging()

    schema_path = os.path.join(os.path.dirname(__file__), "schema_postgres.sql")
    with open(schema_path, "r", encoding="utf-8") as f:
        schema = f.read()

    logger.info("Connecting to database...")
    try:
        conn = psycopg.connect(postgres_conninfo())
    except psycopg.OperationalError:
        logger.exception("Could not connect to PostgreSQL")
        return 1

    try:
        conn.execute(schema)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database initialized: institutions, users")
    return 0


if __name__ == "__main__":
    sys.exit(main())
