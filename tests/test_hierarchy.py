"""
Tests for InstitutionHierarchyService.
"""
from types import SimpleNamespace

import pytest

from reconciler.exceptions import UnsupportedRoleError
from reconciler.hierarchy import InstitutionHierarchyService
from reconciler.models import (
    ExternalUserRecord,
    FlatUser,
    InstitutionAdminRecord,
    PlatformAdminRecord,
    StudentRecord,
    TeacherRecord,
)


@pytest.fixture
def hierarchy(db):
    db.collection("institutions").document("inst1").set({"name": "Lethbridge Polytechnic"})
    return InstitutionHierarchyService(db, signup_base_url="https://example.test/")


def _user(uid, role, **extra):
    return FlatUser.from_document(
        uid, {"name": uid.title(), "email": f"{uid}@lethpolytech.ca", "role": role, **extra}
    )


class TestInstitutions:
    def test_create_institution_is_pending_with_token(self, hierarchy):
        inst_id = hierarchy.create_institution({"name": "Leadcity University"})
        inst = hierarchy.get_institution_by_id(inst_id)
        assert inst.approvalStatus == "pending"
        assert inst.isActive is True
        assert inst.customSignupLink == (
            f"https://example.test/signup-institution/{inst.customSignupToken}"
        )
        assert hierarchy.get_institution_by_token(inst.customSignupToken).id == inst_id

    def test_missing_institution(self, hierarchy):
        assert hierarchy.get_institution_by_id("nope") is None
        assert hierarchy.get_institution_by_id("") is None
        assert hierarchy.get_institution_by_token("nope") is None

    def test_upsert_merges(self, hierarchy):
        hierarchy.upsert_institution("inst1", {"domain": "lethpolytech.ca"})
        inst = hierarchy.get_institution_by_id("inst1")
        assert inst.name == "Lethbridge Polytechnic"
        assert inst.domain == "lethpolytech.ca"

    def test_update_missing_institution_fails(self, hierarchy):
        with pytest.raises(KeyError):
            hierarchy.update_institution("ghost", {"isActive": False})

    def test_delete_institution(self, hierarchy):
        hierarchy.delete_institution("inst1")
        assert hierarchy.list_institutions() == []


class TestDepartments:
    def test_get_or_create_reuses_exact_name(self, hierarchy):
        first, created = hierarchy.get_or_create_department("inst1", "CS", "u1")
        second, created_again = hierarchy.get_or_create_department("inst1", "CS", "u2")
        other, _ = hierarchy.get_or_create_department("inst1", "cs", "u3")
        assert created is True
        assert created_again is False
        assert first == second
        assert other != first
        assert len(hierarchy.list_departments("inst1")) == 2

    def test_new_department_fields(self, hierarchy):
        dept_id = hierarchy.create_department("inst1", "Data Science", created_by="u1")
        dept = hierarchy.find_department_by_name("inst1", "Data Science")
        assert dept.id == dept_id
        assert dept.institutionId == "inst1"
        assert dept.studentCount == 0
        assert dept.createdBy == "u1"
        assert "department=Data%20Science" in dept.signupLink
        assert dept.signupToken in dept.signupLink


class TestMembers:
    def test_student_count_increments_once_per_student(self, hierarchy):
        dept_id = hierarchy.create_department("inst1", "CS")
        student = _user("ada", "student", department="CS")
        hierarchy.create_student("inst1", dept_id, student)
        hierarchy.create_student("inst1", dept_id, student)
        hierarchy.create_student("inst1", dept_id, _user("bob", "student"))
        assert hierarchy.find_department_by_name("inst1", "CS").studentCount == 2

    def test_first_teacher_becomes_department_teacher(self, hierarchy):
        dept_id = hierarchy.create_department("inst1", "CS")
        hierarchy.create_teacher("inst1", dept_id, _user("grace", "teacher"))
        hierarchy.create_teacher("inst1", dept_id, _user("alan", "teacher"))
        assert hierarchy.find_department_by_name("inst1", "CS").teacherId == "grace"

    def test_profile_role_is_normalized(self, hierarchy, db):
        hierarchy.create_institution_admin("inst1", _user("root", "Institution-Admin"))
        doc = db.collection("institutions/inst1/admins").document("root").get().to_dict()
        assert doc["role"] == "institution_admin"
        assert doc["institutionId"] == "inst1"

    def test_user_ref_requires_ids(self, hierarchy):
        with pytest.raises(ValueError):
            hierarchy.user_ref("institution_admin", "u1")
        with pytest.raises(ValueError):
            hierarchy.user_ref("student", "u1", "inst1")
        with pytest.raises(UnsupportedRoleError):
            hierarchy.user_ref("janitor", "u1")

    def test_user_ref_external_member(self, hierarchy):
        assert hierarchy.user_ref("teacher", "u1").path == "externalUsers/u1"


class TestPlaceUser:
    def test_place_each_variant(self, hierarchy, db):
        results = [
            hierarchy.place_user(PlatformAdminRecord(user=_user("pa", "platform_admin"))),
            hierarchy.place_user(ExternalUserRecord(user=_user("ext", "teacher"), role="teacher")),
            hierarchy.place_user(
                InstitutionAdminRecord(user=_user("ia", "institution_admin"), institutionId="inst1")
            ),
            hierarchy.place_user(
                TeacherRecord(user=_user("t1", "teacher"), institutionId="inst1", departmentName="CS")
            ),
            hierarchy.place_user(
                StudentRecord(user=_user("s1", "student"), institutionId="inst1", departmentName="CS")
            ),
        ]
        dept_id = hierarchy.find_department_by_name("inst1", "CS").id

        assert [r.location.path for r in results] == [
            "platformAdmins/pa",
            "externalUsers/ext",
            "institutions/inst1/admins/ia",
            f"institutions/inst1/departments/{dept_id}/teachers/t1",
            f"institutions/inst1/departments/{dept_id}/students/s1",
        ]
        assert [r.department_created for r in results] == [False, False, False, True, False]
        for result in results:
            parent, doc_id = result.location.path.rsplit("/", 1)
            assert db.collection(parent).document(doc_id).get().exists

        assert db.collection("platformAdmins").document("pa").get().to_dict()["permissions"] == []
        external = db.collection("externalUsers").document("ext").get().to_dict()
        assert external["role"] == "teacher"
        assert external["authProvider"] == "email"

    def test_unknown_placement_type(self, hierarchy):
        with pytest.raises(TypeError):
            hierarchy.place_user(SimpleNamespace(user=_user("x", "student")))
