"""
============================================================================
FILE: outbox.py
LOCATION: reconciler/outbox.py
============================================================================

PURPOSE:
    Append-only reconciliation log of intended cross-store operations.

ROLE IN PROJECT:
    The migration driver, the sync monitor and the connection planner never
    drop a record silently: anything skipped, failed or deferred becomes an
    entry here with a status. Operators list entries to audit a run and
    replay pending/failed ones once the cause is fixed.

KEY COMPONENTS:
    - ReconciliationLog.record: Append an entry
    - ReconciliationLog.mark: Move an entry to a new status (history kept)
    - ReconciliationLog.list_entries: Filter by status / operation
    - ReconciliationLog.has_open_entry: Avoid re-flagging the same target
    - ReconciliationLog.replay: Re-run entries through per-operation handlers

DEPENDENCIES:
    - External: None (Firestore client is injected)
    - Internal: models, logging_config

USAGE:
    log = ReconciliationLog(db)
    log.record("migrate_user", "users/u1", {"userId": "u1"}, status="skipped",
               reason="institution not found")
============================================================================
"""

from typing import Callable, Dict, Iterable, List, Optional

from reconciler.logging_config import get_logger
from reconciler.models import ReconciliationEntry, utc_now_iso


logger = get_logger("outbox")

LOG_COLLECTION = "_reconciliation_log"
REPLAYABLE_STATUSES = ("pending", "failed")

ReplayHandler = Callable[[ReconciliationEntry], Optional[bool]]


class ReconciliationLog:
    """Firestore-backed outbox of reconciliation intents."""

    def __init__(self, db, collection: str = LOG_COLLECTION):
        self.db = db
        self.collection = collection

    def _ref(self, entry_id: Optional[str] = None):
        coll = self.db.collection(self.collection)
        return coll.document(entry_id) if entry_id else coll.document()

    def record(
        self,
        operation: str,
        target: str,
        payload: Optional[dict] = None,
        status: str = "pending",
        reason: Optional[str] = None,
    ) -> ReconciliationEntry:
        """Append a new entry and return it."""
        ref = self._ref()
        entry = ReconciliationEntry(
            id=ref.id,
            operation=operation,
            target=target,
            payload=payload or {},
            status=status,
            reason=reason,
        )
        data = entry.model_dump()
        data["history"] = [
            {"status": status, "reason": reason, "at": entry.createdAt}
        ]
        ref.set(data)
        logger.debug("Recorded %s %s on %s", status, operation, target)
        return entry

    def get(self, entry_id: str) -> Optional[ReconciliationEntry]:
        snapshot = self._ref(entry_id).get()
        if not snapshot.exists:
            return None
        return ReconciliationEntry(**_entry_fields(snapshot.to_dict()))

    def mark(self, entry_id: str, status: str, reason: Optional[str] = None) -> None:
        """Move an entry to ``status``; earlier states stay in its history."""
        ref = self._ref(entry_id)
        snapshot = ref.get()
        if not snapshot.exists:
            raise KeyError(f"Unknown reconciliation entry: {entry_id}")

        data = snapshot.to_dict()
        now = utc_now_iso()
        history = list(data.get("history") or [])
        history.append({"status": status, "reason": reason, "at": now})
        ref.update(
            {
                "status": status,
                "reason": reason,
                "attempts": int(data.get("attempts") or 0) + 1,
                "updatedAt": now,
                "history": history,
            }
        )

    def list_entries(
        self,
        status: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> List[ReconciliationEntry]:
        query = self.db.collection(self.collection)
        if status:
            query = query.where("status", "==", status)
        entries = [
            ReconciliationEntry(**_entry_fields(doc.to_dict()))
            for doc in query.stream()
        ]
        if operation:
            entries = [e for e in entries if e.operation == operation]
        entries.sort(key=lambda e: e.createdAt)
        return entries

    def has_open_entry(self, operation: str, target: str) -> bool:
        """True if a pending entry already exists for this operation/target."""
        query = self.db.collection(self.collection).where("target", "==", target)
        for doc in query.stream():
            data = doc.to_dict() or {}
            if data.get("operation") == operation and data.get("status") == "pending":
                return True
        return False

    def replay(
        self,
        handlers: Dict[str, ReplayHandler],
        statuses: Iterable[str] = REPLAYABLE_STATUSES,
    ) -> Dict[str, int]:
        """Re-run replayable entries through the handler for their operation.

        A handler returning False leaves the entry skipped; raising marks it
        failed with the error text. Entries without a handler are untouched.
        """
        counts = {"applied": 0, "failed": 0, "skipped": 0, "unhandled": 0}
        # Snapshot first so an entry re-marked during this run is not retried
        entries = [e for status in statuses for e in self.list_entries(status=status)]
        for entry in entries:
            handler = handlers.get(entry.operation)
            if handler is None:
                counts["unhandled"] += 1
                continue
            try:
                result = handler(entry)
            except Exception as exc:
                logger.error("Replay of %s failed: %s", entry.id, exc)
                self.mark(entry.id, "failed", str(exc))
                counts["failed"] += 1
                continue
            if result is False:
                self.mark(entry.id, "skipped", "handler declined")
                counts["skipped"] += 1
            else:
                self.mark(entry.id, "applied")
                counts["applied"] += 1
        logger.info("Replay finished: %s", counts)
        return counts


def _entry_fields(data: dict) -> dict:
    return {k: v for k, v in data.items() if k != "history"}
