"""
Score aggregation for one student / subject / class / term.

Each category average is the mean of score/max_points*100 over the items the
student was actually graded on. Categories without graded records contribute
nothing, and the weighted sum is then renormalized by the weight of the
categories that did contribute. Every caller goes through ``combine`` so the
partial-score policy is the same everywhere.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from evaluation.exceptions import NotFoundError
from evaluation.services.weights import WeightResolution, resolve_weights, validate_term
from schools.models import Class, GradedItem, ResultRecord, Student, Subject

logger = logging.getLogger(__name__)

CATEGORIES = (GradedItem.ASSIGNMENT, GradedItem.EXAM)


@dataclass(frozen=True)
class ItemScore:
    item_id: int
    title: str
    category: str
    max_points: float
    score: Optional[float] = None

    @property
    def is_graded(self) -> bool:
        return self.score is not None

    @property
    def percentage(self) -> Optional[float]:
        if self.score is None:
            return None
        return self.score / self.max_points * 100


@dataclass(frozen=True)
class CategoryStats:
    item_count: int = 0
    graded_count: int = 0
    average: Optional[float] = None

    @property
    def contributes(self) -> bool:
        return self.graded_count > 0

    @property
    def missing_all(self) -> bool:
        return self.item_count > 0 and self.graded_count == 0


@dataclass(frozen=True)
class ScoreSummary:
    assignments: CategoryStats
    exams: CategoryStats
    final_percentage: float
    contributing_weight: float
    weights: WeightResolution
    breakdown: tuple = field(default=())

    @property
    def assignment_average(self) -> Optional[float]:
        return self.assignments.average

    @property
    def exam_average(self) -> Optional[float]:
        return self.exams.average

    @property
    def assignment_count(self) -> int:
        return self.assignments.graded_count

    @property
    def exam_count(self) -> int:
        return self.exams.graded_count

    @property
    def has_any_grades(self) -> bool:
        return self.assignment_count > 0 or self.exam_count > 0

    @property
    def is_partial(self) -> bool:
        if not self.has_any_grades:
            return False
        # a zero-weight category alone cannot produce a final percentage
        return self.contributing_weight <= 0 or self.assignments.missing_all or self.exams.missing_all

    def counts(self) -> dict:
        return {
            "assignment_items": self.assignments.item_count,
            "assignments_graded": self.assignments.graded_count,
            "exam_items": self.exams.item_count,
            "exams_graded": self.exams.graded_count,
        }


def category_stats(items: Iterable[ItemScore]) -> CategoryStats:
    items = list(items)
    graded = [i.percentage for i in items if i.is_graded]
    average = sum(graded) / len(graded) if graded else None
    return CategoryStats(item_count=len(items), graded_count=len(graded), average=average)


def combine(stats: dict, weights: WeightResolution) -> tuple[float, float]:
    """Returns (final_percentage, contributing_weight)."""
    weighted = 0.0
    contributing = 0.0
    for category, cat in stats.items():
        if not cat.contributes:
            continue
        weight = weights.for_category(category)
        weighted += cat.average * weight
        contributing += weight
    if contributing <= 0:
        return 0.0, contributing
    return weighted / contributing, contributing


def summarize(items: Iterable[ItemScore], weights: WeightResolution) -> ScoreSummary:
    items = [i for i in items if i.max_points > 0]
    stats = {c: category_stats(i for i in items if i.category == c) for c in CATEGORIES}
    final, contributing = combine(stats, weights)
    breakdown = tuple(
        {
            "item_id": i.item_id,
            "type": i.category.lower(),
            "title": i.title,
            "score": i.score,
            "max_points": i.max_points,
            "percentage": round(i.percentage, 1),
            "category_weight": weights.for_category(i.category),
        }
        for i in items
        if i.is_graded
    )
    return ScoreSummary(
        assignments=stats[GradedItem.ASSIGNMENT],
        exams=stats[GradedItem.EXAM],
        final_percentage=final,
        contributing_weight=contributing,
        weights=weights,
        breakdown=breakdown,
    )


def _to_item_scores(items, scores_by_item: dict) -> list[ItemScore]:
    snapshots = []
    for item in items:
        if item.max_points <= 0:
            logger.warning("Skipping graded item without max points", extra={"item_id": item.id})
            continue
        snapshots.append(
            ItemScore(
                item_id=item.id,
                title=item.title,
                category=item.category,
                max_points=float(item.max_points),
                score=scores_by_item.get(item.id),
            )
        )
    return snapshots


def _graded_items(subject_id: int, class_id: int, term: str) -> list[GradedItem]:
    return list(GradedItem.objects.filter(subject_id=subject_id, klass_id=class_id, term=term).order_by("id"))


def load_item_scores(student_id: int, subject_id: int, class_id: int, term: str) -> list[ItemScore]:
    items = _graded_items(subject_id, class_id, term)
    scores = dict(
        ResultRecord.objects.filter(graded_item__in=items, student_id=student_id).values_list("graded_item_id", "score")
    )
    return _to_item_scores(items, scores)


def aggregate_scores(
    student_id: int,
    subject_id: int,
    class_id: int,
    term: str,
    weights: Optional[WeightResolution] = None,
) -> ScoreSummary:
    validate_term(term)
    if not Subject.objects.filter(pk=subject_id).exists():
        raise NotFoundError(f"Subject {subject_id} not found.", subject_id=subject_id)
    if weights is None:
        weights = resolve_weights(subject_id, term)
    return summarize(load_item_scores(student_id, subject_id, class_id, term), weights)


def class_subject_results(class_id: int, subject_id: int, term: str) -> dict:
    """
    Aggregate every student of a class for one subject and term.

    Students are those currently placed in the class plus anyone holding a
    result for the class's items, so historical classes still list their cohort.
    """
    validate_term(term)
    klass = Class.objects.filter(pk=class_id).first()
    if klass is None:
        raise NotFoundError(f"Class {class_id} not found.", class_id=class_id)
    if not Subject.objects.filter(pk=subject_id).exists():
        raise NotFoundError(f"Subject {subject_id} not found.", subject_id=subject_id)
    weights = resolve_weights(subject_id, term)
    items = _graded_items(subject_id, class_id, term)

    scores_by_student: dict = {}
    for student_id, item_id, score in ResultRecord.objects.filter(graded_item__in=items).values_list(
        "student_id", "graded_item_id", "score"
    ):
        scores_by_student.setdefault(student_id, {})[item_id] = score

    students = Student.objects.filter(klass_id=class_id) | Student.objects.filter(id__in=list(scores_by_student))
    results = []
    for student in students.distinct().order_by("first_name", "last_name"):
        summary = summarize(_to_item_scores(items, scores_by_student.get(student.id, {})), weights)
        results.append({"student": student, "summary": summary})

    return {
        "klass": klass,
        "subject_id": subject_id,
        "term": term,
        "weights": weights,
        "total_assignments": sum(1 for i in items if i.category == GradedItem.ASSIGNMENT),
        "total_exams": sum(1 for i in items if i.category == GradedItem.EXAM),
        "results": results,
    }
