# conftest.py
# Pytest configuration for the reconciler test environment
#
# Forces the in-memory Firestore and mock Firebase Auth so tests never reach
# a real project.
#
# @see: reconciler/config.py - USE_REAL_FIREBASE switch
# @note: MOCK_DB_FILE is cleared so tests never persist to disk

import os

os.environ["USE_REAL_FIREBASE"] = "false"
os.environ.setdefault("TESTING", "true")
os.environ.pop("MOCK_DB_FILE", None)
