"""
Authorization collaborator: answers "can this caller act on that class / subject / student".

Roles come from superuser status or Django group membership.
"""

from dataclasses import dataclass
from typing import Optional

from evaluation.exceptions import AuthorizationError
from schools.models import Class, Student, Subject

ADMIN = "admin"
TEACHER = "teacher"
STUDENT = "student"
PARENT = "parent"
ROLES = (ADMIN, TEACHER, STUDENT, PARENT)
STAFF_ROLES = (ADMIN, TEACHER)


@dataclass(frozen=True)
class Caller:
    user_id: Optional[int]
    role: str

    @property
    def is_staff_scoped(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def role_of(user) -> Optional[str]:
    if user is None or not user.is_authenticated:
        return None
    if user.is_superuser:
        return ADMIN
    groups = set(user.groups.values_list("name", flat=True))
    for role in ROLES:
        if role in groups:
            return role
    return None


def caller_from_user(user) -> Caller:
    role = role_of(user)
    if role is None:
        raise AuthorizationError("Caller has no recognised role.")
    return Caller(user_id=user.pk, role=role)


def can_act_on_class(caller: Caller, klass: Class) -> bool:
    if caller.is_admin:
        return True
    if caller.role != TEACHER:
        return False
    if klass.supervisor_id == caller.user_id:
        return True
    return klass.teachers.filter(pk=caller.user_id).exists()


def can_act_on_subject(caller: Caller, subject: Subject) -> bool:
    if caller.is_admin:
        return True
    if caller.role != TEACHER:
        return False
    return subject.teachers.filter(pk=caller.user_id).exists()


def can_view_student(caller: Caller, student: Student) -> bool:
    if caller.is_staff_scoped:
        return True
    if caller.role == STUDENT:
        return student.user_id is not None and student.user_id == caller.user_id
    if caller.role == PARENT:
        return student.parent_id is not None and student.parent_id == caller.user_id
    return False


def require_class(caller: Caller, klass: Class):
    if not can_act_on_class(caller, klass):
        raise AuthorizationError(f"Not authorized to act on class {klass.pk}.", class_id=klass.pk)


def require_subject(caller: Caller, subject: Subject):
    if not can_act_on_subject(caller, subject):
        raise AuthorizationError(f"Not authorized to modify subject {subject.pk}.", subject_id=subject.pk)


def require_student(caller: Caller, student: Student):
    if not can_view_student(caller, student):
        raise AuthorizationError(f"Not authorized to view student {student.pk}.", student_id=student.pk)


def require_admin(caller: Caller):
    if not caller.is_admin:
        raise AuthorizationError("Only administrators may perform this action.")
