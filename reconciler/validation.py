"""
============================================================================
FILE: validation.py
LOCATION: reconciler/validation.py
============================================================================

PURPOSE:
    Periodic data-validation sweep over institution interests, PostgreSQL
    users and institutions, with severity-routed alerts.

ROLE IN PROJECT:
    Run by tools/validation_alerts.py and GET /api/reconcile/validation.
    Integrity problems are returned as Issue objects, never raised. A check
    that cannot run (e.g. PostgreSQL unreachable) contributes a
    validation_error issue and the remaining checks still run.

KEY COMPONENTS:
    - ValidationAlertSystem.run_validation: all checks, alerts on findings
    - ValidationAlertSystem.generate_report: totals per severity
    - AlertSink / LoggingAlertSink: where critical and warning issues go

THRESHOLDS:
    - Interest not completed after SYNC_DELAY (24h): orphaned_request warning
    - Interest not completed and no PostgreSQL user: missing_user critical
    - Institution count delta above INSTITUTION_COUNT_TOLERANCE: warning
    - Interest processed within SYNC_DELAY but no user: critical
    - More than ACTIVITY_SPIKE_THRESHOLD interests in an hour: warning

DEPENDENCIES:
    - External: None
    - Internal: crossref (interest snapshot), models, logging_config
============================================================================
"""
import datetime
from typing import Callable, List, Optional

from reconciler.crossref import list_interests
from reconciler.hierarchy import INSTITUTIONS_COLLECTION
from reconciler.logging_config import get_logger
from reconciler.models import Issue, ValidationReport, utc_now


logger = get_logger("validation")

SYNC_DELAY = datetime.timedelta(hours=24)
INSTITUTION_COUNT_TOLERANCE = 2
ACTIVITY_WINDOW = datetime.timedelta(hours=1)
ACTIVITY_SPIKE_THRESHOLD = 10


class AlertSink:
    """Destination for validation alerts."""

    def critical(self, issues: List[Issue]) -> None:
        raise NotImplementedError

    def warning(self, issues: List[Issue]) -> None:
        raise NotImplementedError


class LoggingAlertSink(AlertSink):
    """Writes alerts to the reconciler log."""

    def critical(self, issues: List[Issue]) -> None:
        logger.critical("%s CRITICAL validation issues", len(issues))
        for issue in issues:
            logger.critical("  - %s", issue.message, extra={"extra_data": issue.data})

    def warning(self, issues: List[Issue]) -> None:
        logger.warning("%s WARNING validation issues", len(issues))
        for issue in issues:
            logger.warning("  - %s", issue.message, extra={"extra_data": issue.data})


class ValidationAlertSystem:
    """Cross-store validation checks.

    Args:
        db: Firestore client.
        pg_store: Object with a ``session()`` context manager yielding a
            PostgresSession.
        sink: Alert destination; logs by default.
        now: Clock, injectable for tests.
    """

    def __init__(
        self,
        db,
        pg_store,
        sink: Optional[AlertSink] = None,
        now: Callable[[], datetime.datetime] = utc_now,
    ):
        self.db = db
        self.pg_store = pg_store
        self.sink = sink or LoggingAlertSink()
        self.now = now

    def run_validation(self) -> List[Issue]:
        logger.info("Running data validation")
        issues: List[Issue] = []
        checks = (
            ("orphaned requests", "critical", self.check_orphaned_requests),
            ("user-institution linking", "critical", self.check_user_institution_linking),
            ("data consistency", "critical", self.check_data_consistency),
            ("recent activity", "warning", self.check_recent_activity),
        )
        for label, error_severity, check in checks:
            try:
                issues.extend(check())
            except Exception as exc:
                logger.exception("Validation check '%s' failed", label)
                issues.append(
                    Issue(
                        type="validation_error",
                        severity=error_severity,
                        message=f"Error checking {label}: {exc}",
                        data={"error": str(exc)},
                    )
                )

        if issues:
            logger.warning("Found %s validation issues", len(issues))
            self.send_alerts(issues)
        else:
            logger.info("All validations passed")
        return issues

    def check_orphaned_requests(self) -> List[Issue]:
        issues = []
        now = self.now()
        with self.pg_store.session() as pg:
            for interest in list_interests(self.db):
                if interest.status == "completed":
                    continue

                if interest.createdAt is not None:
                    age = now - interest.createdAt
                    if age > SYNC_DELAY:
                        hours = int(age.total_seconds() // 3600)
                        issues.append(
                            Issue(
                                type="orphaned_request",
                                severity="warning",
                                message=f"Request {interest.id} has been pending for {hours} hours",
                                data={
                                    "requestId": interest.id,
                                    "institutionName": interest.institutionName,
                                    "email": interest.email,
                                    "ageHours": hours,
                                },
                            )
                        )

                if pg.find_user_by_email(interest.email) is None:
                    issues.append(
                        Issue(
                            type="missing_user",
                            severity="critical",
                            message=(
                                "No user account for institution request: "
                                f"{interest.institutionName}"
                            ),
                            data={
                                "requestId": interest.id,
                                "institutionName": interest.institutionName,
                                "email": interest.email,
                            },
                        )
                    )
        return issues

    def check_user_institution_linking(self) -> List[Issue]:
        issues = []
        with self.pg_store.session() as pg:
            for row in pg.find_invalid_institution_links():
                issues.append(
                    Issue(
                        type="invalid_institution_link",
                        severity="critical",
                        message=(
                            f"User {row['email']} linked to non-existent institution "
                            f"{row['institution_id']}"
                        ),
                        data={
                            "userId": row["id"],
                            "email": row["email"],
                            "institutionId": row["institution_id"],
                        },
                    )
                )
            for row in pg.find_unlinked_institution_admins():
                issues.append(
                    Issue(
                        type="unlinked_institution_admin",
                        severity="warning",
                        message=f"Institution admin {row['email']} not linked to any institution",
                        data={"userId": row["id"], "email": row["email"], "name": row.get("name")},
                    )
                )
        return issues

    def check_data_consistency(self) -> List[Issue]:
        issues = []
        now = self.now()
        with self.pg_store.session() as pg:
            fb_count = sum(1 for _ in self.db.collection(INSTITUTIONS_COLLECTION).stream())
            pg_count = pg.count_institutions()
            if abs(fb_count - pg_count) > INSTITUTION_COUNT_TOLERANCE:
                issues.append(
                    Issue(
                        type="institution_count_mismatch",
                        severity="warning",
                        message=(
                            f"Institution count mismatch: Firebase={fb_count}, "
                            f"PostgreSQL={pg_count}"
                        ),
                        data={"firebaseCount": fb_count, "postgresqlCount": pg_count},
                    )
                )

            for interest in list_interests(self.db):
                if interest.status != "processed" or interest.processedAt is None:
                    continue
                if now - interest.processedAt >= SYNC_DELAY:
                    continue
                if pg.find_user_by_email(interest.email) is None:
                    issues.append(
                        Issue(
                            type="recent_processing_failure",
                            severity="critical",
                            message=(
                                "Recently processed request has no user: "
                                f"{interest.institutionName}"
                            ),
                            data={
                                "requestId": interest.id,
                                "institutionName": interest.institutionName,
                                "email": interest.email,
                                "processedAt": interest.processedAt.isoformat(),
                            },
                        )
                    )
        return issues

    def check_recent_activity(self) -> List[Issue]:
        now = self.now()
        recent_count = 0
        daily_count = 0
        for interest in list_interests(self.db):
            if interest.createdAt is None:
                continue
            if interest.createdAt > now - ACTIVITY_WINDOW:
                recent_count += 1
            if interest.createdAt > now - SYNC_DELAY:
                daily_count += 1

        if recent_count > ACTIVITY_SPIKE_THRESHOLD:
            return [
                Issue(
                    type="high_activity_spike",
                    severity="warning",
                    message=f"Unusual activity spike: {recent_count} requests in the last hour",
                    data={"recentCount": recent_count, "dailyCount": daily_count},
                )
            ]
        return []

    def send_alerts(self, issues: List[Issue]) -> None:
        critical = [i for i in issues if i.severity == "critical"]
        warnings = [i for i in issues if i.severity == "warning"]
        if critical:
            self.sink.critical(critical)
        if warnings:
            self.sink.warning(warnings)

    def generate_report(self) -> ValidationReport:
        return ValidationReport.from_issues(self.run_validation())
