from django.conf import settings
from django.db import models
from django.utils import timezone

from schools.models import TERM_CHOICES, Class, GradeLevel, Student


class TermApproval(models.Model):
    klass = models.ForeignKey(Class, on_delete=models.CASCADE, related_name="term_approvals")
    term = models.CharField(max_length=6, choices=TERM_CHOICES)
    is_approved = models.BooleanField(default=False)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        state = "approved" if self.is_approved else "pending"
        return f"{self.klass} - {self.term} ({state})"

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["klass", "term"], name="one_approval_per_class_term"),
        ]


class ClassHistoryEntry(models.Model):
    """
    Append-only placement ledger. Rows are superseded by deactivation, never deleted.
    """

    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name="class_history")
    klass = models.ForeignKey(Class, on_delete=models.PROTECT, related_name="history_entries")
    grade = models.ForeignKey(GradeLevel, on_delete=models.PROTECT, related_name="history_entries")
    academic_year = models.CharField(max_length=9)
    is_active = models.BooleanField(default=True)
    start_date = models.DateTimeField(default=timezone.now)
    end_date = models.DateTimeField(null=True, blank=True)
    promoted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    promoted_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(null=True, blank=True)

    def __str__(self):
        return f"{self.student} - {self.klass} ({self.academic_year})"

    class Meta:
        ordering = ["-is_active", "-start_date"]
        constraints = [
            models.UniqueConstraint(
                fields=["student"],
                condition=models.Q(is_active=True),
                name="one_active_class_history_per_student",
            ),
        ]
        indexes = [
            models.Index(fields=["student", "is_active"], name="history_student_active_idx"),
        ]
