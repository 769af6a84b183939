# router.py
# Operator endpoints for migration, lookup and cross-store reconciliation

# All routes require a platform admin. Work runs synchronously in FastAPI's
# threadpool; a migration or validation request blocks until it finishes.

# @see: reconciler/auth.py - require_platform_admin
# @see: reconciler/main.py - app wiring and error handlers

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from reconciler.auth import get_lookup_service, require_platform_admin
from reconciler.config import get_db, get_pg_store
from reconciler.logging_config import get_logger
from reconciler.lookup import UserLookupService
from reconciler.migration import DataMigrationService
from reconciler.models import (
    MigrationStats,
    MigrationSummary,
    ReconciliationEntry,
    SyncReport,
    UserLocation,
    ValidationReport,
)
from reconciler.monitor import SyncMonitor
from reconciler.outbox import ReconciliationLog
from reconciler.validation import ValidationAlertSystem


# ============================================================================
# LOGGING
# ============================================================================

logger = get_logger("router")


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

router = APIRouter(prefix="/api", dependencies=[Depends(require_platform_admin)])


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================


def get_reconciliation_log(db=Depends(get_db)) -> ReconciliationLog:
    return ReconciliationLog(db)


def get_migration_service(
    db=Depends(get_db),
    log: ReconciliationLog = Depends(get_reconciliation_log),
) -> DataMigrationService:
    return DataMigrationService(db, log=log)


# ============================================================================
# MIGRATION
# ============================================================================


@router.post("/migration/run", response_model=MigrationSummary, tags=["Migration"])
def run_migration(
    dry_run: bool = Query(False, description="Classify and count without writing"),
    service: DataMigrationService = Depends(get_migration_service),
) -> MigrationSummary:
    service.dry_run = dry_run
    return service.migrate_all_data()


@router.get("/migration/stats", response_model=MigrationStats, tags=["Migration"])
def migration_stats(
    service: DataMigrationService = Depends(get_migration_service),
) -> MigrationStats:
    return service.get_migration_stats()


# ============================================================================
# LOOKUP
# ============================================================================


@router.get("/users/{uid}/location", response_model=UserLocation, tags=["Users"])
def user_location(
    uid: str,
    lookup: UserLookupService = Depends(get_lookup_service),
) -> UserLocation:
    location = lookup.find_user_by_id(uid)
    if location is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {uid} not found in institution hierarchy",
        )
    return location


# ============================================================================
# RECONCILIATION
# ============================================================================


@router.get("/reconcile/validation", response_model=ValidationReport, tags=["Reconcile"])
def validation_report(
    db=Depends(get_db),
    pg_store=Depends(get_pg_store),
) -> ValidationReport:
    return ValidationAlertSystem(db, pg_store).generate_report()


@router.post("/reconcile/sync", response_model=SyncReport, tags=["Reconcile"])
def trigger_sync(
    db=Depends(get_db),
    pg_store=Depends(get_pg_store),
    log: ReconciliationLog = Depends(get_reconciliation_log),
) -> SyncReport:
    return SyncMonitor(db, pg_store, log=log).perform_sync()


@router.get("/reconcile/log", response_model=List[ReconciliationEntry], tags=["Reconcile"])
def reconciliation_log(
    status_filter: Optional[str] = Query(None, alias="status"),
    operation: Optional[str] = Query(None),
    log: ReconciliationLog = Depends(get_reconciliation_log),
) -> List[ReconciliationEntry]:
    return log.list_entries(status=status_filter, operation=operation)
