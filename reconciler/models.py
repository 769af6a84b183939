"""
============================================================================
FILE: models.py
LOCATION: reconciler/models.py
============================================================================

PURPOSE:
    Pydantic models for the flat and hierarchical Firestore layouts, the
    placement variants a user can take in the hierarchy, and the reports the
    migration and consistency checkers produce.

ROLE IN PROJECT:
    Shared by every service module and by the HTTP surface. Firestore
    documents keep their camelCase field names so models round-trip through
    to_dict() / set() without renaming.

KEY COMPONENTS:
    - FlatUser, Institution, Department, InstitutionInterest: stored records
    - StudentRecord, TeacherRecord, InstitutionAdminRecord,
      PlatformAdminRecord, ExternalUserRecord: placement variants
      (HierarchyPlacement is their discriminated union)
    - UserLocation: lookup result
    - Issue, ValidationReport, SyncReport: checker output
    - MigrationSummary, MigrationStats: migration output
    - ReconciliationEntry: outbox record

DEPENDENCIES:
    - External: pydantic
    - Internal: None

USAGE:
    from reconciler.models import FlatUser, UserLocation
============================================================================
"""

import datetime
import typing

import pydantic


UserRole = typing.Literal["student", "teacher", "institution_admin", "platform_admin"]
ApprovalStatus = typing.Literal["pending", "approved", "rejected"]
Severity = typing.Literal["critical", "warning", "info"]
EntryStatus = typing.Literal["pending", "applied", "failed", "skipped"]

USER_ROLES: typing.Tuple[str, ...] = typing.get_args(UserRole)

DEFAULT_DEPARTMENT_NAME = "Default Department"


def utc_now() -> datetime.datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def utc_now_iso() -> str:
    """Return current UTC time as ISO 8601 string."""
    return utc_now().isoformat()


def to_iso(value: typing.Any, default: typing.Optional[str] = None) -> typing.Optional[str]:
    """Normalize Firestore timestamps, datetimes and strings to ISO text."""
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "ToDatetime"):
        return value.ToDatetime().isoformat()
    return str(value)


def _as_aware(value: typing.Optional[datetime.datetime]) -> typing.Optional[datetime.datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _blank(value):
    # Firestore documents may store an explicit null for text fields
    return "" if value is None else value


class FlatUser(pydantic.BaseModel):
    """A user document from the legacy flat `users` collection."""

    model_config = pydantic.ConfigDict(extra="allow")

    id: str
    name: str = ""
    email: str = ""
    role: typing.Optional[str] = None
    institutionId: typing.Optional[str] = None
    departmentId: typing.Optional[str] = None
    department: typing.Optional[str] = None
    yearOfStudy: typing.Optional[typing.Any] = None
    emailVerified: bool = False
    createdAt: typing.Optional[typing.Any] = None
    updatedAt: typing.Optional[typing.Any] = None
    lastLoginAt: typing.Optional[typing.Any] = None
    sessionCount: int = 0
    profileCompleted: bool = False

    @pydantic.field_validator("name", "email", mode="before")
    @classmethod
    def _default_text(cls, value):
        return _blank(value)

    @pydantic.field_validator("sessionCount", mode="before")
    @classmethod
    def _default_session_count(cls, value):
        return value or 0

    @pydantic.field_validator("emailVerified", "profileCompleted", mode="before")
    @classmethod
    def _default_flags(cls, value):
        return bool(value)

    @classmethod
    def from_document(cls, doc_id: str, data: typing.Optional[dict]) -> "FlatUser":
        data = dict(data or {})
        data.pop("id", None)
        if "emailVerified" not in data and "isEmailVerified" in data:
            data["emailVerified"] = data["isEmailVerified"]
        return cls(id=doc_id, **data)

    def profile(self, role: typing.Optional[str] = None) -> dict:
        """Common profile fields written into every hierarchy location."""
        now = utc_now_iso()
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": role or self.role,
            "emailVerified": self.emailVerified,
            "createdAt": to_iso(self.createdAt, now),
            "updatedAt": to_iso(self.updatedAt, now),
            "lastLoginAt": to_iso(self.lastLoginAt, now),
            "sessionCount": self.sessionCount,
            "profileCompleted": self.profileCompleted,
        }


class Institution(pydantic.BaseModel):
    """An institution document."""

    model_config = pydantic.ConfigDict(extra="allow")

    id: str
    name: str = ""
    domain: typing.Optional[str] = None
    contactEmail: typing.Optional[str] = None
    approvalStatus: typing.Optional[str] = None
    isActive: typing.Optional[bool] = None
    customSignupToken: typing.Optional[str] = None
    customSignupLink: typing.Optional[str] = None
    pricingOverride: typing.Optional[typing.Any] = None
    sessionPool: typing.Optional[typing.Any] = None
    createdAt: typing.Optional[typing.Any] = None
    updatedAt: typing.Optional[typing.Any] = None

    @pydantic.field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value):
        return _blank(value)

    @classmethod
    def from_document(cls, doc_id: str, data: typing.Optional[dict]) -> "Institution":
        data = dict(data or {})
        data.pop("id", None)
        return cls(id=doc_id, **data)


class Department(pydantic.BaseModel):
    """A department under institutions/{id}/departments."""

    model_config = pydantic.ConfigDict(extra="allow")

    id: str
    departmentName: str
    institutionId: str
    teacherId: typing.Optional[str] = None
    studentCount: int = 0
    signupToken: typing.Optional[str] = None
    signupLink: typing.Optional[str] = None
    createdBy: typing.Optional[str] = None
    createdAt: typing.Optional[typing.Any] = None

    @pydantic.field_validator("departmentName", mode="before")
    @classmethod
    def _default_name(cls, value):
        return _blank(value)


class InstitutionInterest(pydantic.BaseModel):
    """A public contact-form submission from `institution_interests`."""

    model_config = pydantic.ConfigDict(extra="allow")

    id: str
    institutionName: str = ""
    contactName: str = ""
    email: str = ""
    status: str = "pending"
    createdAt: typing.Optional[datetime.datetime] = None
    processedAt: typing.Optional[datetime.datetime] = None
    userId: typing.Optional[str] = None
    institutionId: typing.Optional[str] = None

    @pydantic.field_validator("institutionName", "contactName", "email", mode="before")
    @classmethod
    def _default_text(cls, value):
        return _blank(value)

    @pydantic.field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value):
        return value or "pending"

    @pydantic.field_validator("createdAt", "processedAt", mode="after")
    @classmethod
    def _aware(cls, value):
        return _as_aware(value)

    @classmethod
    def from_document(cls, doc_id: str, data: typing.Optional[dict]) -> "InstitutionInterest":
        data = dict(data or {})
        data.pop("id", None)
        for key in ("createdAt", "processedAt"):
            if hasattr(data.get(key), "ToDatetime"):
                data[key] = data[key].ToDatetime()
        return cls(id=doc_id, **data)


# ---------------------------------------------------------------------------
# Placement variants
# ---------------------------------------------------------------------------


class StudentRecord(pydantic.BaseModel):
    kind: typing.Literal["student"] = "student"
    user: FlatUser
    institutionId: str
    departmentName: str


class TeacherRecord(pydantic.BaseModel):
    kind: typing.Literal["teacher"] = "teacher"
    user: FlatUser
    institutionId: str
    departmentName: str


class InstitutionAdminRecord(pydantic.BaseModel):
    kind: typing.Literal["institution_admin"] = "institution_admin"
    user: FlatUser
    institutionId: str


class PlatformAdminRecord(pydantic.BaseModel):
    kind: typing.Literal["platform_admin"] = "platform_admin"
    user: FlatUser


class ExternalUserRecord(pydantic.BaseModel):
    kind: typing.Literal["external"] = "external"
    user: FlatUser
    role: typing.Literal["student", "teacher"]


HierarchyPlacement = typing.Annotated[
    typing.Union[
        StudentRecord,
        TeacherRecord,
        InstitutionAdminRecord,
        PlatformAdminRecord,
        ExternalUserRecord,
    ],
    pydantic.Field(discriminator="kind"),
]


class UserLocation(pydantic.BaseModel):
    """Where a user lives in the hierarchical store."""

    user: dict
    role: UserRole
    institutionId: typing.Optional[str] = None
    departmentId: typing.Optional[str] = None
    path: str = pydantic.Field(..., description="Firestore document path")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class Issue(pydantic.BaseModel):
    """A single finding from a consistency check."""

    type: str
    severity: Severity
    message: str
    data: dict = pydantic.Field(default_factory=dict)


class ValidationReport(pydantic.BaseModel):
    timestamp: datetime.datetime = pydantic.Field(default_factory=utc_now)
    totalIssues: int
    criticalIssues: int
    warningIssues: int
    issues: typing.List[Issue]

    @classmethod
    def from_issues(cls, issues: typing.List[Issue]) -> "ValidationReport":
        return cls(
            totalIssues=len(issues),
            criticalIssues=sum(1 for i in issues if i.severity == "critical"),
            warningIssues=sum(1 for i in issues if i.severity == "warning"),
            issues=issues,
        )


class SyncReport(pydantic.BaseModel):
    timestamp: datetime.datetime = pydantic.Field(default_factory=utc_now)
    state: typing.Literal["idle", "syncing"] = "idle"
    cycles: int = 0
    orphanedRequests: int = 0
    missingUsers: int = 0
    idMismatches: int = 0
    lastRun: typing.Optional[datetime.datetime] = None
    lastError: typing.Optional[str] = None


class MigrationSummary(pydantic.BaseModel):
    institutions: int = 0
    externalUsers: int = 0
    platformAdmins: int = 0
    institutionAdmins: int = 0
    teachers: int = 0
    students: int = 0
    departmentsCreated: int = 0
    skipped: int = 0
    failed: int = 0
    dryRun: bool = False

    @property
    def migrated_users(self) -> int:
        return (
            self.externalUsers
            + self.platformAdmins
            + self.institutionAdmins
            + self.teachers
            + self.students
        )


class MigrationStats(pydantic.BaseModel):
    totalUsers: int = 0
    totalInstitutions: int = 0
    migratedUsers: int = 0
    migratedInstitutions: int = 0


class ReconciliationEntry(pydantic.BaseModel):
    """One intended cross-store operation in the reconciliation log."""

    id: str
    operation: str
    target: str
    payload: dict = pydantic.Field(default_factory=dict)
    status: EntryStatus = "pending"
    reason: typing.Optional[str] = None
    attempts: int = 0
    createdAt: str = pydantic.Field(default_factory=utc_now_iso)
    updatedAt: str = pydantic.Field(default_factory=utc_now_iso)
