"""
User lookup over the hierarchical store.

The hierarchy keeps no inverted index, so locating a user by ID fans out:
platformAdmins, externalUsers, then every institution's admins and every
department's teachers and students. Cost is one point read per probe, i.e.
O(institutions x departments) in the worst case.
"""
from typing import Optional

from reconciler.hierarchy import (
    ADMINS_SUBCOLLECTION,
    DEPARTMENTS_SUBCOLLECTION,
    EXTERNAL_USERS_COLLECTION,
    INSTITUTIONS_COLLECTION,
    PLATFORM_ADMINS_COLLECTION,
    InstitutionHierarchyService,
)
from reconciler.logging_config import get_logger
from reconciler.models import UserLocation
from reconciler.roles import MEMBER_SUBCOLLECTIONS


logger = get_logger("lookup")


class UserLookupService:
    def __init__(self, db, hierarchy: Optional[InstitutionHierarchyService] = None):
        self.db = db
        self.hierarchy = hierarchy or InstitutionHierarchyService(db)

    def find_user_by_id(self, user_id: str) -> Optional[UserLocation]:
        """Locate a user anywhere in the hierarchy.

        Returns:
            UserLocation, or None when the user is not in the hierarchical
            store (callers fall back to a minimal profile).
        """
        if not user_id:
            return None

        probes = 1
        snapshot = self.db.collection(PLATFORM_ADMINS_COLLECTION).document(user_id).get()
        if snapshot.exists:
            return UserLocation(
                user=snapshot.to_dict(),
                role="platform_admin",
                path=f"{PLATFORM_ADMINS_COLLECTION}/{user_id}",
            )

        probes += 1
        snapshot = self.db.collection(EXTERNAL_USERS_COLLECTION).document(user_id).get()
        if snapshot.exists:
            data = snapshot.to_dict()
            role = data.get("role") if data.get("role") in MEMBER_SUBCOLLECTIONS else "student"
            return UserLocation(
                user=data,
                role=role,
                path=f"{EXTERNAL_USERS_COLLECTION}/{user_id}",
            )

        for institution in self.db.collection(INSTITUTIONS_COLLECTION).stream():
            inst_ref = institution.reference
            probes += 1
            snapshot = inst_ref.collection(ADMINS_SUBCOLLECTION).document(user_id).get()
            if snapshot.exists:
                return UserLocation(
                    user=snapshot.to_dict(),
                    role="institution_admin",
                    institutionId=institution.id,
                    path=(
                        f"{INSTITUTIONS_COLLECTION}/{institution.id}/"
                        f"{ADMINS_SUBCOLLECTION}/{user_id}"
                    ),
                )

            for department in inst_ref.collection(DEPARTMENTS_SUBCOLLECTION).stream():
                for role, subcollection in MEMBER_SUBCOLLECTIONS.items():
                    probes += 1
                    snapshot = (
                        department.reference.collection(subcollection)
                        .document(user_id)
                        .get()
                    )
                    if snapshot.exists:
                        return UserLocation(
                            user=snapshot.to_dict(),
                            role=role,
                            institutionId=institution.id,
                            departmentId=department.id,
                            path=(
                                f"{INSTITUTIONS_COLLECTION}/{institution.id}/"
                                f"{DEPARTMENTS_SUBCOLLECTION}/{department.id}/"
                                f"{subcollection}/{user_id}"
                            ),
                        )

        logger.debug("User %s not found after %s probes", user_id, probes)
        return None

    def get_user_by_role(
        self,
        role: str,
        user_id: str,
        institution_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> Optional[dict]:
        """Point read when the user's placement is already known.

        Raises:
            UnsupportedRoleError: For unknown roles.
            ValueError: When the role needs IDs that were not supplied.
        """
        ref = self.hierarchy.user_ref(role, user_id, institution_id, department_id)
        snapshot = ref.get()
        if not snapshot.exists:
            return None
        return {"id": snapshot.id, **snapshot.to_dict()}
