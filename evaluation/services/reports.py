"""
Term report assembly.

A report covers every subject with at least one graded item for the requested
(class, term). The class may be one the student has since left. Student and
parent callers only see results once the class/term has been approved; staff
see them regardless.
"""

import logging
from typing import Optional

from evaluation.exceptions import NotFoundError
from evaluation.services import access
from evaluation.services.aggregator import ScoreSummary, aggregate_scores
from evaluation.services.approval import get_approval
from evaluation.services.grade_mapper import NOT_GRADED, map_grade
from evaluation.services.grading_scale import resolve_school_scale, resolve_scale
from evaluation.services.weights import resolve_weights, validate_term
from schools.models import Class, Student, Subject

logger = logging.getLogger(__name__)


def _round(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


def subject_row(subject: Subject, summary: ScoreSummary, grade: str) -> dict:
    weights = summary.weights
    return {
        "subject_id": subject.id,
        "subject_name": subject.name,
        "assignment_average": _round(summary.assignment_average),
        "exam_average": _round(summary.exam_average),
        "final_percentage": round(summary.final_percentage, 2),
        "grade": grade,
        "counts": summary.counts(),
        "weights": {
            "assignment_weight": weights.assignment_weight,
            "exam_weight": weights.exam_weight,
            "source": weights.source,
        },
        "is_using_term_specific_weights": weights.is_term_specific,
        "has_any_grades": summary.has_any_grades,
        "is_partial_grading": summary.is_partial,
    }


def overall_figures(summaries: list[ScoreSummary], school_id: int) -> dict:
    """Average of the unrounded subject finals, rounded once."""
    graded = [s for s in summaries if s.has_any_grades]
    average = sum(s.final_percentage for s in graded) / len(graded) if graded else None
    bands = resolve_school_scale(school_id).bands
    return {
        "overall_average": _round(average),
        "overall_grade": map_grade(average or 0.0, bool(graded), bands),
        "total_subjects": len(summaries),
        "graded_subjects": len(graded),
    }


def _subjects_for(class_id: int, term: str):
    return (
        Subject.objects.filter(graded_items__klass_id=class_id, graded_items__term=term)
        .distinct()
        .order_by("name", "id")
    )


def get_term_report(caller: access.Caller, student_id: int, class_id: int, term: str) -> dict:
    validate_term(term)
    student = Student.objects.select_related("klass").filter(pk=student_id).first()
    if student is None:
        raise NotFoundError(f"Student {student_id} not found.", student_id=student_id)
    klass = Class.objects.select_related("school", "grade").filter(pk=class_id).first()
    if klass is None:
        raise NotFoundError(f"Class {class_id} not found.", class_id=class_id)
    access.require_student(caller, student)

    approval = get_approval(class_id, term)
    report = {
        "student": {
            "id": student.id,
            "name": f"{student.first_name} {student.last_name}",
            "matricule": student.matricule,
            "current_class_id": student.klass_id,
        },
        "class": {"id": klass.id, "name": klass.name, "grade": klass.grade.name},
        "term": term,
        "approval": approval.as_dict(),
    }

    if not caller.is_staff_scoped and not approval.is_approved:
        logger.debug("Report withheld pending approval", extra={"class_id": class_id, "term": term})
        report.update(
            {
                "pending_approval": True,
                "subjects": [],
                "overall_average": None,
                "overall_grade": NOT_GRADED,
                "total_subjects": 0,
                "graded_subjects": 0,
            }
        )
        return report

    rows, summaries = [], []
    for subject in _subjects_for(class_id, term):
        weights = resolve_weights(subject.id, term)
        summary = aggregate_scores(student.id, subject.id, class_id, term, weights=weights)
        grade = map_grade(summary.final_percentage, summary.has_any_grades, resolve_scale(subject.id).bands)
        rows.append(subject_row(subject, summary, grade))
        summaries.append(summary)

    report["pending_approval"] = False
    report["subjects"] = rows
    report.update(overall_figures(summaries, klass.school_id))
    return report
