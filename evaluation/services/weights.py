"""
Weight resolution for (subject, term).

Resolution is an ordered chain of pure functions over an immutable snapshot:
term override first, then the subject defaults. Each link returns a
``WeightResolution`` or ``None`` to defer to the next one.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from django.conf import settings
from django.db import transaction

from evaluation.exceptions import ConsistencyError, NotFoundError, ValidationError
from schools.models import TERMS, Subject, TermWeightOverride

logger = logging.getLogger(__name__)

SOURCE_TERM_OVERRIDE = "term-override"
SOURCE_SUBJECT_DEFAULT = "subject-default"


@dataclass(frozen=True)
class WeightResolution:
    assignment_weight: float
    exam_weight: float
    source: str

    @property
    def is_term_specific(self) -> bool:
        return self.source == SOURCE_TERM_OVERRIDE

    def for_category(self, category: str) -> float:
        return self.assignment_weight if category == "ASSIGNMENT" else self.exam_weight


@dataclass(frozen=True)
class WeightSnapshot:
    subject_id: int
    term: str
    default_assignment_weight: float
    default_exam_weight: float
    override_assignment_weight: Optional[float] = None
    override_exam_weight: Optional[float] = None

    @property
    def has_override(self) -> bool:
        return self.override_assignment_weight is not None and self.override_exam_weight is not None


def _tolerance() -> float:
    return float(getattr(settings, "WEIGHT_SUM_TOLERANCE", 0.01))


def weights_sum_to_one(assignment_weight: float, exam_weight: float) -> bool:
    return abs((assignment_weight + exam_weight) - 1.0) <= _tolerance()


def validate_weight_pair(assignment_weight, exam_weight):
    """Reject a weight pair before it reaches storage. Returns the pair as floats."""
    try:
        assignment_weight = float(assignment_weight)
        exam_weight = float(exam_weight)
    except (TypeError, ValueError):
        raise ValidationError("Assignment and exam weights must be numbers.")
    if not (0.0 <= assignment_weight <= 1.0 and 0.0 <= exam_weight <= 1.0):
        raise ValidationError("Weights must be between 0 and 1.")
    if not weights_sum_to_one(assignment_weight, exam_weight):
        raise ValidationError(
            "Assignment and exam weights must sum to 100%.",
            assignment_weight=assignment_weight,
            exam_weight=exam_weight,
        )
    return assignment_weight, exam_weight


def validate_term(term) -> str:
    if term not in TERMS:
        raise ValidationError(f"Unknown term: {term!r}. Expected one of {', '.join(TERMS)}.")
    return term


def from_term_override(snapshot: WeightSnapshot) -> Optional[WeightResolution]:
    if not snapshot.has_override:
        return None
    a, e = snapshot.override_assignment_weight, snapshot.override_exam_weight
    if weights_sum_to_one(a, e):
        return WeightResolution(a, e, SOURCE_TERM_OVERRIDE)
    if getattr(settings, "STRICT_TERM_WEIGHTS", True):
        raise ConsistencyError(
            "Stored term weight override does not sum to 100%.",
            subject_id=snapshot.subject_id,
            term=snapshot.term,
            assignment_weight=a,
            exam_weight=e,
        )
    logger.warning(
        "Ignoring invalid term weight override",
        extra={"subject_id": snapshot.subject_id, "term": snapshot.term, "assignment_weight": a, "exam_weight": e},
    )
    return None


def from_subject_defaults(snapshot: WeightSnapshot) -> Optional[WeightResolution]:
    a, e = snapshot.default_assignment_weight, snapshot.default_exam_weight
    if not weights_sum_to_one(a, e):
        raise ConsistencyError(
            "Subject default weights do not sum to 100%.",
            subject_id=snapshot.subject_id,
            assignment_weight=a,
            exam_weight=e,
        )
    return WeightResolution(a, e, SOURCE_SUBJECT_DEFAULT)


WEIGHT_CHAIN: tuple[Callable[[WeightSnapshot], Optional[WeightResolution]], ...] = (
    from_term_override,
    from_subject_defaults,
)


def resolve_from_snapshot(snapshot: WeightSnapshot) -> WeightResolution:
    for link in WEIGHT_CHAIN:
        resolved = link(snapshot)
        if resolved is not None:
            return resolved
    # from_subject_defaults never defers
    raise ConsistencyError("No weight source resolved.", subject_id=snapshot.subject_id)


def snapshot_for(subject: Subject, term: str, override: Optional[TermWeightOverride] = None) -> WeightSnapshot:
    return WeightSnapshot(
        subject_id=subject.id,
        term=term,
        default_assignment_weight=subject.assignment_weight,
        default_exam_weight=subject.exam_weight,
        override_assignment_weight=override.assignment_weight if override else None,
        override_exam_weight=override.exam_weight if override else None,
    )


def _get_subject(subject_id: int) -> Subject:
    subject = Subject.objects.filter(pk=subject_id).first()
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found.", subject_id=subject_id)
    return subject


def load_snapshot(subject_id: int, term: str) -> WeightSnapshot:
    subject = _get_subject(subject_id)
    override = TermWeightOverride.objects.filter(subject_id=subject_id, term=term).first()
    return snapshot_for(subject, term, override)


def resolve_weights(subject_id: int, term: str) -> WeightResolution:
    validate_term(term)
    return resolve_from_snapshot(load_snapshot(subject_id, term))


def set_term_weight(subject_id: int, term: str, assignment_weight, exam_weight) -> TermWeightOverride:
    validate_term(term)
    assignment_weight, exam_weight = validate_weight_pair(assignment_weight, exam_weight)
    _get_subject(subject_id)
    with transaction.atomic():
        override, created = TermWeightOverride.objects.update_or_create(
            subject_id=subject_id,
            term=term,
            defaults={"assignment_weight": assignment_weight, "exam_weight": exam_weight},
        )
    logger.info(
        "Term weight saved",
        extra={"subject_id": subject_id, "term": term, "override_created": created},
    )
    return override


def delete_term_weight(subject_id: int, term: str) -> bool:
    """Remove an override. Returns False when there was nothing to delete."""
    validate_term(term)
    _get_subject(subject_id)
    deleted, _ = TermWeightOverride.objects.filter(subject_id=subject_id, term=term).delete()
    logger.info("Term weight deleted", extra={"subject_id": subject_id, "term": term, "deleted": deleted})
    return deleted > 0


def list_term_weights(subject_id: int) -> list[TermWeightOverride]:
    _get_subject(subject_id)
    overrides = list(TermWeightOverride.objects.filter(subject_id=subject_id))
    return sorted(overrides, key=lambda o: TERMS.index(o.term))


def set_subject_weights(subject_id: int, assignment_weight, exam_weight) -> Subject:
    assignment_weight, exam_weight = validate_weight_pair(assignment_weight, exam_weight)
    subject = _get_subject(subject_id)
    subject.assignment_weight = assignment_weight
    subject.exam_weight = exam_weight
    subject.save(update_fields=["assignment_weight", "exam_weight"])
    return subject
