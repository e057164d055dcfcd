import random

from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand
from django.db import transaction

from evaluation.models import ClassHistoryEntry
from evaluation.services.access import ROLES
from evaluation.services.class_history import current_academic_year
from schools.models import (
    Class,
    GradeBand,
    GradedItem,
    GradeLevel,
    GradingScheme,
    ResultRecord,
    School,
    Student,
    Subject,
)


class Command(BaseCommand):
    help = "Create demo data (school, grade levels, classes, subjects, graded items, results). Safe to run twice."

    def add_arguments(self, parser):
        parser.add_argument("--students", type=int, default=10, help="Students per class (default: 10)")
        parser.add_argument("--term", type=str, default="FIRST", help="Term of the graded items (default: FIRST)")
        parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible scores")

    def handle(self, *args, **options):
        target_students = options["students"]
        term = options["term"]
        rng = random.Random(options["seed"])

        with transaction.atomic():
            for role in ROLES:
                Group.objects.get_or_create(name=role)

            school, _ = School.objects.get_or_create(
                name="Horizon Academy",
                defaults={"address": "12 Science Avenue", "country": "BF", "motto": "Unity, Progress"},
            )
            grade_10, _ = GradeLevel.objects.get_or_create(level=10, defaults={"name": "Grade 10"})
            grade_11, _ = GradeLevel.objects.get_or_create(level=11, defaults={"name": "Grade 11"})
            class_10, _ = Class.objects.get_or_create(school=school, name="10A", defaults={"grade": grade_10})
            Class.objects.get_or_create(school=school, name="11A", defaults={"grade": grade_11})

            scheme, created = GradingScheme.objects.get_or_create(
                school=school, name="Pass / Merit", defaults={"is_default": False, "description": "Coarse scale"}
            )
            if created:
                GradeBand.objects.bulk_create(
                    [
                        GradeBand(scheme=scheme, label="Distinction", min_percentage=75, max_percentage=100, order=1),
                        GradeBand(scheme=scheme, label="Merit", min_percentage=60, max_percentage=75, order=2),
                        GradeBand(scheme=scheme, label="Pass", min_percentage=50, max_percentage=60, order=3),
                        GradeBand(scheme=scheme, label="Fail", min_percentage=0, max_percentage=50, order=4),
                    ]
                )

            subjects_data = [
                ("Mathematics", 0.3, 0.7, None),
                ("Physics", 0.4, 0.6, None),
                ("English", 0.5, 0.5, scheme),
                ("History", 0.3, 0.7, None),
            ]
            subjects = []
            for name, assignment_weight, exam_weight, grading_scheme in subjects_data:
                subj, _ = Subject.objects.get_or_create(
                    school=school,
                    name=name,
                    defaults={
                        "assignment_weight": assignment_weight,
                        "exam_weight": exam_weight,
                        "grading_scheme": grading_scheme,
                    },
                )
                subjects.append(subj)

            items = []
            for subj in subjects:
                for title, category, max_points in (
                    ("Homework 1", GradedItem.ASSIGNMENT, 20),
                    ("Homework 2", GradedItem.ASSIGNMENT, 20),
                    ("Term exam", GradedItem.EXAM, 100),
                ):
                    item, _ = GradedItem.objects.get_or_create(
                        subject=subj,
                        klass=class_10,
                        term=term,
                        title=title,
                        defaults={"category": category, "max_points": max_points},
                    )
                    items.append(item)

            first_names = ["Awa", "Ibrahim", "Mariam", "Youssef", "Fatou", "Issa", "Aminata", "Paul", "Claire", "Jean"]
            last_names = ["Traore", "Ouedraogo", "Kabore", "Zerbo", "Sanogo", "Diallo", "Zongo", "Sawadogo"]
            academic_year = current_academic_year()

            created_students = 0
            for i in range(target_students):
                fn = first_names[i % len(first_names)]
                ln = last_names[(i // len(first_names)) % len(last_names)]
                student, was_created = Student.objects.get_or_create(
                    matricule=f"M{class_10.id:02d}{i + 1:04d}",
                    defaults={"first_name": fn, "last_name": ln, "klass": class_10, "grade": grade_10},
                )
                if was_created:
                    created_students += 1
                    ClassHistoryEntry.objects.create(
                        student=student, klass=class_10, grade=grade_10, academic_year=academic_year
                    )
                for item in items:
                    # the last student has no exam marks, so reports show partial grading
                    if item.category == GradedItem.EXAM and i == target_students - 1:
                        continue
                    ResultRecord.objects.get_or_create(
                        graded_item=item,
                        student=student,
                        defaults={"score": round(rng.uniform(0.4, 1.0) * item.max_points, 1)},
                    )

        self.stdout.write(
            self.style.SUCCESS(f"School: {school.name}, class: {class_10.name}, new students: {created_students}/{target_students}")
        )
