from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group

from evaluation.models import ClassHistoryEntry
from schools.models import Class, GradedItem, GradeLevel, ResultRecord, School, Student, Subject

PASS_FAIL = [
    {"label": "Pass", "min_percentage": 50, "max_percentage": 100},
    {"label": "Fail", "min_percentage": 0, "max_percentage": 50},
]


def make_user(username, role=None, **extra):
    user = get_user_model().objects.create_user(username=username, password="p", **extra)
    if role:
        group, _ = Group.objects.get_or_create(name=role)
        user.groups.add(group)
    return user


def make_school(name="Ecole Test"):
    school = School.objects.create(name=name, address="Adresse", country="BF")
    grade_10, _ = GradeLevel.objects.get_or_create(level=10, defaults={"name": "Grade 10"})
    grade_11, _ = GradeLevel.objects.get_or_create(level=11, defaults={"name": "Grade 11"})
    class_a = Class.objects.create(school=school, name="10A", grade=grade_10)
    class_b = Class.objects.create(school=school, name="11A", grade=grade_11)
    return school, class_a, class_b


def make_student(klass, matricule, with_history=True, academic_year="2024-2025", **extra):
    student = Student.objects.create(
        first_name=extra.pop("first_name", "Awa"),
        last_name=extra.pop("last_name", matricule),
        matricule=matricule,
        klass=klass,
        grade=klass.grade,
        **extra,
    )
    if with_history:
        ClassHistoryEntry.objects.create(student=student, klass=klass, grade=klass.grade, academic_year=academic_year)
    return student


def add_item(subject, klass, category, max_points, term="FIRST", title=None):
    return GradedItem.objects.create(
        subject=subject,
        klass=klass,
        term=term,
        category=category,
        title=title or f"{category.title()} {GradedItem.objects.count() + 1}",
        max_points=max_points,
    )


def grade(item, student, score):
    return ResultRecord.objects.create(graded_item=item, student=student, score=score)


def make_subject(school, name="Math", assignment_weight=0.3, exam_weight=0.7, **extra):
    return Subject.objects.create(
        school=school, name=name, assignment_weight=assignment_weight, exam_weight=exam_weight, **extra
    )
