"""
============================================================================
FILE: hierarchy.py
LOCATION: reconciler/hierarchy.py
============================================================================

PURPOSE:
    Read/write access to the hierarchical Firestore layout:

        institutions/{id}
        institutions/{id}/admins/{uid}
        institutions/{id}/departments/{id}
        institutions/{id}/departments/{id}/teachers/{uid}
        institutions/{id}/departments/{id}/students/{uid}
        externalUsers/{uid}
        platformAdmins/{uid}

ROLE IN PROJECT:
    Write target of the migration driver and read target of the lookup
    service. User documents always use the user's ID as document ID so a
    re-run overwrites rather than duplicates.

KEY COMPONENTS:
    - InstitutionHierarchyService: institution, department and member CRUD
    - place_user: exhaustive dispatch over placement variants
    - PlacementResult: location written plus whether a department was created

DEPENDENCIES:
    - External: None (Firestore client is injected)
    - Internal: config, models, roles, exceptions, logging_config
============================================================================
"""

import uuid
from typing import List, NamedTuple, Optional, Tuple
from urllib.parse import quote

from reconciler import config
from reconciler.exceptions import UnsupportedRoleError
from reconciler.logging_config import get_logger
from reconciler.models import (
    Department,
    ExternalUserRecord,
    FlatUser,
    HierarchyPlacement,
    Institution,
    InstitutionAdminRecord,
    PlatformAdminRecord,
    StudentRecord,
    TeacherRecord,
    UserLocation,
    utc_now_iso,
)
from reconciler.roles import MEMBER_SUBCOLLECTIONS


logger = get_logger("hierarchy")

INSTITUTIONS_COLLECTION = "institutions"
EXTERNAL_USERS_COLLECTION = "externalUsers"
PLATFORM_ADMINS_COLLECTION = "platformAdmins"
ADMINS_SUBCOLLECTION = "admins"
DEPARTMENTS_SUBCOLLECTION = "departments"


class PlacementResult(NamedTuple):
    location: UserLocation
    department_created: bool = False


def _compact(data: dict) -> dict:
    """Drop keys whose value is None; Firestore keeps explicit nulls."""
    return {k: v for k, v in data.items() if v is not None}


class InstitutionHierarchyService:
    """Institution / department / member operations on the hierarchy."""

    def __init__(self, db, signup_base_url: Optional[str] = None):
        self.db = db
        self.signup_base_url = (signup_base_url or config.SIGNUP_BASE_URL).rstrip("/")

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def institution_ref(self, institution_id: str):
        return self.db.collection(INSTITUTIONS_COLLECTION).document(institution_id)

    def departments_ref(self, institution_id: str):
        return self.institution_ref(institution_id).collection(DEPARTMENTS_SUBCOLLECTION)

    def user_ref(
        self,
        role: str,
        user_id: str,
        institution_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ):
        """Document reference for a user placed under ``role``.

        Students and teachers without an institution resolve to
        externalUsers.

        Raises:
            UnsupportedRoleError: For unknown roles.
            ValueError: When the role needs IDs that were not supplied.
        """
        if role == "platform_admin":
            return self.db.collection(PLATFORM_ADMINS_COLLECTION).document(user_id)
        if role == "institution_admin":
            if not institution_id:
                raise ValueError("institution_id is required for institution_admin")
            return (
                self.institution_ref(institution_id)
                .collection(ADMINS_SUBCOLLECTION)
                .document(user_id)
            )
        if role in MEMBER_SUBCOLLECTIONS:
            if not institution_id:
                return self.db.collection(EXTERNAL_USERS_COLLECTION).document(user_id)
            if not department_id:
                raise ValueError(f"department_id is required for {role}")
            return (
                self.departments_ref(institution_id)
                .document(department_id)
                .collection(MEMBER_SUBCOLLECTIONS[role])
                .document(user_id)
            )
        raise UnsupportedRoleError(role)

    def signup_link(self, token: str) -> str:
        return f"{self.signup_base_url}/signup-institution/{token}"

    # ------------------------------------------------------------------
    # Institutions
    # ------------------------------------------------------------------

    def create_institution(self, data: dict) -> str:
        """Create a pending institution with a fresh signup token."""
        token = str(uuid.uuid4())
        now = utc_now_iso()
        ref = self.db.collection(INSTITUTIONS_COLLECTION).document()
        ref.set(
            {
                **data,
                "customSignupToken": token,
                "customSignupLink": self.signup_link(token),
                "partnershipRequestDate": now,
                "approvalStatus": "pending",
                "isActive": True,
                "createdAt": now,
                "updatedAt": now,
            }
        )
        logger.info("Created institution %s", ref.id)
        return ref.id

    def get_institution_by_id(self, institution_id: str) -> Optional[Institution]:
        if not institution_id:
            return None
        snapshot = self.institution_ref(institution_id).get()
        if not snapshot.exists:
            return None
        return Institution.from_document(snapshot.id, snapshot.to_dict())

    def get_institution_by_token(self, token: str) -> Optional[Institution]:
        query = (
            self.db.collection(INSTITUTIONS_COLLECTION)
            .where("customSignupToken", "==", token)
            .limit(1)
        )
        for snapshot in query.stream():
            return Institution.from_document(snapshot.id, snapshot.to_dict())
        return None

    def list_institutions(self) -> List[Institution]:
        return [
            Institution.from_document(doc.id, doc.to_dict())
            for doc in self.db.collection(INSTITUTIONS_COLLECTION).stream()
        ]

    def update_institution(self, institution_id: str, data: dict) -> None:
        """Update an existing institution; fails if it does not exist."""
        self.institution_ref(institution_id).update({**data, "updatedAt": utc_now_iso()})

    def upsert_institution(self, institution_id: str, data: dict) -> None:
        """Merge ``data`` into the institution document, creating it if needed."""
        self.institution_ref(institution_id).set(
            {**data, "updatedAt": utc_now_iso()}, merge=True
        )

    def delete_institution(self, institution_id: str) -> None:
        self.institution_ref(institution_id).delete()

    # ------------------------------------------------------------------
    # Departments
    # ------------------------------------------------------------------

    def list_departments(self, institution_id: str) -> List[Department]:
        departments = []
        for doc in self.departments_ref(institution_id).stream():
            data = doc.to_dict() or {}
            data.pop("id", None)
            data.setdefault("departmentName", data.get("name", ""))
            data["institutionId"] = institution_id
            departments.append(Department(id=doc.id, **data))
        return departments

    def find_department_by_name(
        self, institution_id: str, department_name: str
    ) -> Optional[Department]:
        for department in self.list_departments(institution_id):
            if department.departmentName == department_name:
                return department
        return None

    def create_department(
        self,
        institution_id: str,
        department_name: str,
        created_by: Optional[str] = None,
    ) -> str:
        token = str(uuid.uuid4())
        ref = self.departments_ref(institution_id).document()
        ref.set(
            _compact(
                {
                    "departmentName": department_name,
                    "studentCount": 0,
                    "signupToken": token,
                    "signupLink": (
                        f"{self.signup_link(institution_id)}"
                        f"?department={quote(department_name)}&token={token}"
                    ),
                    "createdBy": created_by,
                    "createdAt": utc_now_iso(),
                }
            )
        )
        logger.info(
            "Created department %s (%s) in institution %s",
            ref.id,
            department_name,
            institution_id,
        )
        return ref.id

    def get_or_create_department(
        self,
        institution_id: str,
        department_name: str,
        created_by: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """Reuse the department with this exact name, else create it."""
        existing = self.find_department_by_name(institution_id, department_name)
        if existing:
            return existing.id, False
        return self.create_department(institution_id, department_name, created_by), True

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def _write_user(self, ref, data: dict) -> None:
        ref.set(_compact({**data, "updatedAt": utc_now_iso()}), merge=True)

    def create_institution_admin(self, institution_id: str, user: FlatUser) -> str:
        ref = self.user_ref("institution_admin", user.id, institution_id)
        self._write_user(
            ref, {**user.profile("institution_admin"), "institutionId": institution_id}
        )
        return ref.id

    def create_teacher(self, institution_id: str, department_id: str, user: FlatUser) -> str:
        ref = self.user_ref("teacher", user.id, institution_id, department_id)
        self._write_user(
            ref,
            {
                **user.profile("teacher"),
                "institutionId": institution_id,
                "departmentId": department_id,
                "department": user.department,
            },
        )
        dept_ref = self.departments_ref(institution_id).document(department_id)
        dept = dept_ref.get()
        if dept.exists and not (dept.to_dict() or {}).get("teacherId"):
            dept_ref.update({"teacherId": user.id})
        return ref.id

    def create_student(
        self,
        institution_id: str,
        department_id: str,
        user: FlatUser,
        teacher_id: Optional[str] = None,
    ) -> str:
        ref = self.user_ref("student", user.id, institution_id, department_id)
        is_new = not ref.get().exists
        self._write_user(
            ref,
            {
                **user.profile("student"),
                "institutionId": institution_id,
                "departmentId": department_id,
                "department": user.department,
                "teacherId": teacher_id,
                "yearOfStudy": user.yearOfStudy or "",
                "enrollmentStatus": "active",
            },
        )
        if is_new:
            dept_ref = self.departments_ref(institution_id).document(department_id)
            dept = dept_ref.get()
            if dept.exists:
                count = int((dept.to_dict() or {}).get("studentCount") or 0)
                dept_ref.update({"studentCount": count + 1})
        return ref.id

    def create_external_user(self, user: FlatUser, role: Optional[str] = None) -> str:
        ref = self.db.collection(EXTERNAL_USERS_COLLECTION).document(user.id)
        profile = user.profile(role)
        self._write_user(ref, {**profile, "authProvider": "email"})
        return ref.id

    def create_platform_admin(self, user: FlatUser) -> str:
        ref = self.db.collection(PLATFORM_ADMINS_COLLECTION).document(user.id)
        self._write_user(ref, {**user.profile("platform_admin"), "permissions": []})
        return ref.id

    def place_user(self, placement: HierarchyPlacement) -> PlacementResult:
        """Write a classified user to its single location in the hierarchy."""
        user = placement.user

        if isinstance(placement, PlatformAdminRecord):
            self.create_platform_admin(user)
            return PlacementResult(
                UserLocation(
                    user=user.profile("platform_admin"),
                    role="platform_admin",
                    path=f"{PLATFORM_ADMINS_COLLECTION}/{user.id}",
                )
            )

        if isinstance(placement, ExternalUserRecord):
            self.create_external_user(user, placement.role)
            return PlacementResult(
                UserLocation(
                    user=user.profile(placement.role),
                    role=placement.role,
                    path=f"{EXTERNAL_USERS_COLLECTION}/{user.id}",
                )
            )

        if isinstance(placement, InstitutionAdminRecord):
            self.create_institution_admin(placement.institutionId, user)
            return PlacementResult(
                UserLocation(
                    user=user.profile("institution_admin"),
                    role="institution_admin",
                    institutionId=placement.institutionId,
                    path=(
                        f"{INSTITUTIONS_COLLECTION}/{placement.institutionId}/"
                        f"{ADMINS_SUBCOLLECTION}/{user.id}"
                    ),
                )
            )

        if isinstance(placement, (TeacherRecord, StudentRecord)):
            department_id, created = self.get_or_create_department(
                placement.institutionId, placement.departmentName, user.id
            )
            if isinstance(placement, TeacherRecord):
                self.create_teacher(placement.institutionId, department_id, user)
            else:
                self.create_student(placement.institutionId, department_id, user)
            return PlacementResult(
                UserLocation(
                    user=user.profile(placement.kind),
                    role=placement.kind,
                    institutionId=placement.institutionId,
                    departmentId=department_id,
                    path=(
                        f"{INSTITUTIONS_COLLECTION}/{placement.institutionId}/"
                        f"{DEPARTMENTS_SUBCOLLECTION}/{department_id}/"
                        f"{MEMBER_SUBCOLLECTIONS[placement.kind]}/{user.id}"
                    ),
                ),
                department_created=created,
            )

        raise TypeError(f"Unhandled placement: {type(placement).__name__}")
