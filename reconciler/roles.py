"""
Role and department resolution helpers.

classify_user() is the single place where a flat user's role is turned into
a placement variant; everything downstream dispatches on the variant's
``kind`` instead of re-reading the raw role string.
"""
import typing

from reconciler.exceptions import ReconcilerError, UnsupportedRoleError
from reconciler.models import (
    DEFAULT_DEPARTMENT_NAME,
    USER_ROLES,
    ExternalUserRecord,
    FlatUser,
    HierarchyPlacement,
    InstitutionAdminRecord,
    PlatformAdminRecord,
    StudentRecord,
    TeacherRecord,
)


MEMBER_SUBCOLLECTIONS = {"teacher": "teachers", "student": "students"}


class UnplaceableUserError(ReconcilerError):
    """A flat user has no valid location in the hierarchy."""

    def __init__(self, user_id: str, issue_type: str, message: str):
        self.user_id = user_id
        self.issue_type = issue_type
        super().__init__(message)


def normalize_role(raw: typing.Optional[str]) -> str:
    """Lower-case a stored role and fold separators to underscores.

    Raises:
        UnsupportedRoleError: If the result is not a known role.
    """
    role = (raw or "").strip().lower().replace("-", "_").replace(" ", "_")
    if role not in USER_ROLES:
        raise UnsupportedRoleError(raw)
    return role


def resolve_department_name(user: FlatUser, default: str = DEFAULT_DEPARTMENT_NAME) -> str:
    name = (user.department or "").strip()
    return name or default


def email_domain(email: typing.Optional[str]) -> typing.Optional[str]:
    """Return the part after '@', lower-cased, or None."""
    if not email or "@" not in email:
        return None
    domain = email.split("@", 1)[1].strip().lower()
    return domain or None


def classify_user(user: FlatUser) -> HierarchyPlacement:
    """Decide where a flat user belongs in the hierarchy.

    Platform admins always go to platformAdmins. Students and teachers
    without an institution are external users. Institution admins must
    carry an institution.

    Raises:
        UnplaceableUserError: For unknown roles and unlinked institution admins.
    """
    try:
        role = normalize_role(user.role)
    except UnsupportedRoleError as exc:
        raise UnplaceableUserError(
            user.id, "unknown_role", f"Unknown role for user {user.id}: {user.role!r}"
        ) from exc

    if role == "platform_admin":
        return PlatformAdminRecord(user=user)

    if not user.institutionId:
        if role == "institution_admin":
            raise UnplaceableUserError(
                user.id,
                "unlinked_institution_admin",
                f"Institution admin {user.email or user.id} is not linked to any institution",
            )
        return ExternalUserRecord(user=user, role=role)

    if role == "institution_admin":
        return InstitutionAdminRecord(user=user, institutionId=user.institutionId)
    if role == "teacher":
        return TeacherRecord(
            user=user,
            institutionId=user.institutionId,
            departmentName=resolve_department_name(user),
        )
    return StudentRecord(
        user=user,
        institutionId=user.institutionId,
        departmentName=resolve_department_name(user),
    )


def placement_role(placement: HierarchyPlacement) -> str:
    """Return the user role a placement stands for."""
    if isinstance(placement, ExternalUserRecord):
        return placement.role
    return placement.kind


def placement_institution(placement: HierarchyPlacement) -> typing.Optional[str]:
    return getattr(placement, "institutionId", None)
