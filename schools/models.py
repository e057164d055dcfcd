from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


TERM_CHOICES = [
    ("FIRST", "First term"),
    ("SECOND", "Second term"),
    ("THIRD", "Third term"),
    ("FINAL", "Final term"),
]
TERMS = [c[0] for c in TERM_CHOICES]


class School(models.Model):
    name = models.CharField(max_length=255)
    address = models.TextField(blank=True)
    country = models.CharField(max_length=64, blank=True)
    motto = models.CharField(max_length=255, blank=True)

    def __str__(self):
        return self.name


class GradeLevel(models.Model):
    level = models.PositiveIntegerField(unique=True)
    name = models.CharField(max_length=64)

    class Meta:
        ordering = ["level"]

    def __str__(self):
        return self.name


class Class(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="classes")
    name = models.CharField(max_length=64)
    grade = models.ForeignKey(GradeLevel, on_delete=models.PROTECT, related_name="classes")
    supervisor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="supervised_classes",
    )
    teachers = models.ManyToManyField(settings.AUTH_USER_MODEL, blank=True, related_name="teaching_classes")

    def __str__(self):
        return f"{self.name} - {self.school.name}"


class Student(models.Model):
    first_name = models.CharField(max_length=64)
    last_name = models.CharField(max_length=64)
    matricule = models.CharField(max_length=64, unique=True)
    # Current placement. ClassHistoryEntry rows mirror it and are reconciled on read.
    klass = models.ForeignKey(Class, on_delete=models.PROTECT, related_name="students")
    grade = models.ForeignKey(GradeLevel, on_delete=models.PROTECT, related_name="students")
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="student_profile",
    )
    parent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="children",
    )

    def __str__(self):
        return f"{self.first_name} {self.last_name}"


class GradingScheme(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="grading_schemes")
    name = models.CharField(max_length=128)
    description = models.TextField(blank=True)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.name} ({self.school.name})"

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["school"],
                condition=models.Q(is_default=True),
                name="one_default_scheme_per_school",
            ),
        ]


class GradeBand(models.Model):
    scheme = models.ForeignKey(GradingScheme, on_delete=models.CASCADE, related_name="bands")
    label = models.CharField(max_length=16)
    min_percentage = models.FloatField()
    max_percentage = models.FloatField()
    description = models.CharField(max_length=255, blank=True)
    order = models.PositiveIntegerField()

    def __str__(self):
        return f"{self.label}: {self.min_percentage}-{self.max_percentage}"

    class Meta:
        ordering = ["order"]


class Subject(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="subjects")
    name = models.CharField(max_length=128)
    assignment_weight = models.FloatField(default=0.3)
    exam_weight = models.FloatField(default=0.7)
    grading_scheme = models.ForeignKey(
        GradingScheme,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subjects",
    )
    teachers = models.ManyToManyField(settings.AUTH_USER_MODEL, blank=True, related_name="taught_subjects")

    def __str__(self):
        return self.name


class TermWeightOverride(models.Model):
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name="term_weights")
    term = models.CharField(max_length=6, choices=TERM_CHOICES)
    assignment_weight = models.FloatField()
    exam_weight = models.FloatField()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.subject} - {self.term}"

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["subject", "term"], name="unique_term_weight_per_subject"),
        ]


class GradedItem(models.Model):
    ASSIGNMENT = "ASSIGNMENT"
    EXAM = "EXAM"
    CATEGORY_CHOICES = [(ASSIGNMENT, "Assignment"), (EXAM, "Exam")]

    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name="graded_items")
    klass = models.ForeignKey(Class, on_delete=models.CASCADE, related_name="graded_items")
    term = models.CharField(max_length=6, choices=TERM_CHOICES)
    category = models.CharField(max_length=10, choices=CATEGORY_CHOICES)
    title = models.CharField(max_length=255)
    max_points = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.get_category_display()} {self.title} ({self.term})"

    class Meta:
        indexes = [
            models.Index(fields=["subject", "klass", "term"], name="gradeditem_subject_class_term"),
        ]


class ResultRecord(models.Model):
    graded_item = models.ForeignKey(GradedItem, on_delete=models.CASCADE, related_name="results")
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name="results")
    score = models.FloatField()
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.student} - {self.graded_item}: {self.score}"

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["graded_item", "student"], name="one_result_per_item_student"),
        ]
