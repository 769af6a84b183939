"""
============================================================================
FILE: migration.py
LOCATION: reconciler/migration.py
============================================================================

PURPOSE:
    One-way migration of the legacy flat Firestore layout (top-level
    `users` and `institutions`) into the institution hierarchy.

ROLE IN PROJECT:
    Run once per environment by tools/migrate_hierarchy.py or
    POST /api/migration/run. Safe to re-run: institutions are merged on their
    own document ID and users are written under their own ID, so a second
    pass overwrites instead of duplicating.

KEY OPERATIONS:
    1. migrate_institutions: fill missing signup token/link, approval status,
       isActive and partnership date; merge on the same document
    2. migrate_users: classify every flat user and place it
    3. Users that cannot be placed (unknown role, unlinked institution admin,
       missing institution) are skipped and recorded in the reconciliation log
    4. get_migration_stats: source counts plus placed counts

DATA MAPPING:
    users (platform_admin)             -> platformAdmins/{uid}
    users (student|teacher, no inst)   -> externalUsers/{uid}
    users (institution_admin)          -> institutions/{id}/admins/{uid}
    users (teacher|student)            -> institutions/{id}/departments/{dept}/
                                          {teachers|students}/{uid}

DEPENDENCIES:
    - External: None (Firestore clients are injected)
    - Internal: hierarchy, roles, outbox, models, logging_config

USAGE:
    service = DataMigrationService(db)
    summary = service.migrate_all_data()
============================================================================
"""
import uuid
from typing import Optional

from reconciler.exceptions import MigrationError
from reconciler.hierarchy import (
    ADMINS_SUBCOLLECTION,
    EXTERNAL_USERS_COLLECTION,
    INSTITUTIONS_COLLECTION,
    PLATFORM_ADMINS_COLLECTION,
    InstitutionHierarchyService,
    PlacementResult,
)
from reconciler.logging_config import get_logger
from reconciler.models import (
    FlatUser,
    MigrationStats,
    MigrationSummary,
    ReconciliationEntry,
    utc_now_iso,
)
from reconciler.outbox import ReconciliationLog
from reconciler.roles import (
    MEMBER_SUBCOLLECTIONS,
    UnplaceableUserError,
    classify_user,
    placement_institution,
)


logger = get_logger("migration")

USERS_COLLECTION = "users"
MIGRATE_USER_OPERATION = "migrate_user"

# MigrationSummary counter per placement kind
_SUMMARY_FIELDS = {
    "platform_admin": "platformAdmins",
    "external": "externalUsers",
    "institution_admin": "institutionAdmins",
    "teacher": "teachers",
    "student": "students",
}


def _count(stream) -> int:
    return sum(1 for _ in stream)


class DataMigrationService:
    """Flat-to-hierarchical migration driver.

    Args:
        db: Firestore client holding the hierarchy (write target).
        hierarchy: Hierarchy service bound to ``db``; built when omitted.
        log: Reconciliation log for skipped and failed users.
        source_db: Client holding the flat collections; defaults to ``db``.
        dry_run: Classify and count without writing anything.
    """

    def __init__(
        self,
        db,
        hierarchy: Optional[InstitutionHierarchyService] = None,
        log: Optional[ReconciliationLog] = None,
        source_db=None,
        dry_run: bool = False,
    ):
        self.db = db
        self.source_db = source_db if source_db is not None else db
        self.hierarchy = hierarchy or InstitutionHierarchyService(db)
        self.log = log or ReconciliationLog(db)
        self.dry_run = dry_run

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def migrate_all_data(self) -> MigrationSummary:
        """Migrate institutions first, then users.

        Raises:
            MigrationError: If the institution phase fails.
        """
        logger.info("Starting hierarchy migration%s", " (dry run)" if self.dry_run else "")
        summary = MigrationSummary(dryRun=self.dry_run)

        try:
            summary.institutions = self.migrate_institutions()
        except Exception as exc:
            # Users are placed under institutions, so stop here
            raise MigrationError(f"Institution migration failed: {exc}") from exc
        self.migrate_users(summary)

        logger.info(
            "Migration finished: %s institutions, %s users placed, %s skipped, %s failed",
            summary.institutions,
            summary.migrated_users,
            summary.skipped,
            summary.failed,
        )
        return summary

    # ------------------------------------------------------------------
    # Institutions
    # ------------------------------------------------------------------

    def migrate_institutions(self) -> int:
        """Fill hierarchy defaults on every flat institution.

        Only fields that are missing get a default, so an existing signup
        token or approval decision survives a re-run.

        Returns:
            int: Number of institutions processed.
        """
        count = 0
        for doc in self.source_db.collection(INSTITUTIONS_COLLECTION).stream():
            data = doc.to_dict() or {}
            defaults = self._institution_defaults(data)
            if self.dry_run:
                logger.info(
                    "[dry run] Institution %s would receive %s",
                    doc.id,
                    sorted(defaults) or "no new fields",
                )
            else:
                self.hierarchy.upsert_institution(doc.id, {**data, **defaults})
                logger.debug("Migrated institution %s (%s)", doc.id, data.get("name"))
            count += 1

        logger.info("Processed %s institutions", count)
        return count

    def _institution_defaults(self, data: dict) -> dict:
        defaults = {}
        token = data.get("customSignupToken")
        if not token:
            token = str(uuid.uuid4())
            defaults["customSignupToken"] = token
        if not data.get("customSignupLink"):
            defaults["customSignupLink"] = self.hierarchy.signup_link(token)
        if not data.get("approvalStatus"):
            defaults["approvalStatus"] = "approved"
        if data.get("isActive") is None:
            defaults["isActive"] = True
        if not data.get("partnershipRequestDate"):
            defaults["partnershipRequestDate"] = data.get("createdAt") or utc_now_iso()
        return defaults

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def migrate_users(self, summary: Optional[MigrationSummary] = None) -> MigrationSummary:
        """Place every flat user; one bad record never stops the batch."""
        summary = summary or MigrationSummary(dryRun=self.dry_run)

        for doc in self.source_db.collection(USERS_COLLECTION).stream():
            try:
                self.migrate_user(doc.id, doc.to_dict() or {}, summary)
            except Exception as exc:
                logger.exception("Failed to migrate user %s", doc.id)
                summary.failed += 1
                if not self.dry_run:
                    self.log.record(
                        MIGRATE_USER_OPERATION,
                        f"{USERS_COLLECTION}/{doc.id}",
                        {"userId": doc.id},
                        status="failed",
                        reason=str(exc),
                    )

        return summary

    def migrate_user(
        self,
        doc_id: str,
        data: dict,
        summary: Optional[MigrationSummary] = None,
        record_skips: bool = True,
    ) -> Optional[PlacementResult]:
        """Classify one flat user and write it to the hierarchy.

        Returns:
            PlacementResult for a written user; None when the user was
            skipped or when running dry.
        """
        user = FlatUser.from_document(doc_id, data)

        try:
            placement = classify_user(user)
        except UnplaceableUserError as exc:
            logger.warning("Skipping user %s: %s", doc_id, exc)
            self._skip(user, exc.issue_type, str(exc), summary, record_skips)
            return None

        institution_id = placement_institution(placement)
        if institution_id and not self._institution_exists(institution_id):
            logger.warning(
                "Institution %s not found for user %s, skipping", institution_id, doc_id
            )
            self._skip(
                user,
                "institution_not_found",
                f"Institution {institution_id} not found",
                summary,
                record_skips,
            )
            return None

        if self.dry_run:
            logger.info("[dry run] User %s would be placed as %s", doc_id, placement.kind)
            self._tally(summary, placement.kind)
            return None

        result = self.hierarchy.place_user(placement)
        self._tally(summary, placement.kind, result.department_created)
        logger.debug("Placed user %s at %s", doc_id, result.location.path)
        return result

    def _institution_exists(self, institution_id: str) -> bool:
        if self.hierarchy.get_institution_by_id(institution_id) is not None:
            return True
        # Dry runs leave source institutions uncopied
        if self.dry_run:
            ref = self.source_db.collection(INSTITUTIONS_COLLECTION).document(institution_id)
            return ref.get().exists
        return False

    def _tally(
        self,
        summary: Optional[MigrationSummary],
        kind: str,
        department_created: bool = False,
    ) -> None:
        if summary is None:
            return
        field = _SUMMARY_FIELDS[kind]
        setattr(summary, field, getattr(summary, field) + 1)
        if department_created:
            summary.departmentsCreated += 1

    def _skip(
        self,
        user: FlatUser,
        issue_type: str,
        reason: str,
        summary: Optional[MigrationSummary],
        record: bool = True,
    ) -> None:
        if summary is not None:
            summary.skipped += 1
        if self.dry_run or not record:
            return
        self.log.record(
            MIGRATE_USER_OPERATION,
            f"{USERS_COLLECTION}/{user.id}",
            {
                "userId": user.id,
                "email": user.email,
                "role": user.role,
                "institutionId": user.institutionId,
                "issueType": issue_type,
            },
            status="skipped",
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_migration_stats(self) -> MigrationStats:
        """Count source records and what has been placed so far."""
        total_users = _count(self.source_db.collection(USERS_COLLECTION).stream())
        total_institutions = _count(
            self.source_db.collection(INSTITUTIONS_COLLECTION).stream()
        )

        migrated_users = _count(self.db.collection(PLATFORM_ADMINS_COLLECTION).stream())
        migrated_users += _count(self.db.collection(EXTERNAL_USERS_COLLECTION).stream())
        for group in (ADMINS_SUBCOLLECTION, *MEMBER_SUBCOLLECTIONS.values()):
            migrated_users += _count(self.db.collection_group(group).stream())

        migrated_institutions = _count(
            doc
            for doc in self.db.collection(INSTITUTIONS_COLLECTION).stream()
            if (doc.to_dict() or {}).get("customSignupToken")
        )

        return MigrationStats(
            totalUsers=total_users,
            totalInstitutions=total_institutions,
            migratedUsers=migrated_users,
            migratedInstitutions=migrated_institutions,
        )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def replay_user(self, entry: ReconciliationEntry) -> bool:
        """Reconciliation-log handler for migrate_user entries.

        Re-reads the flat user and tries to place it again. Returns False
        when the user is gone or still cannot be placed.
        """
        user_id = entry.payload.get("userId") or entry.target.rsplit("/", 1)[-1]
        snapshot = self.source_db.collection(USERS_COLLECTION).document(user_id).get()
        if not snapshot.exists:
            logger.warning("User %s no longer exists in %s", user_id, USERS_COLLECTION)
            return False
        result = self.migrate_user(user_id, snapshot.to_dict() or {}, record_skips=False)
        return result is not None

    def replay_handlers(self) -> dict:
        return {MIGRATE_USER_OPERATION: self.replay_user}
