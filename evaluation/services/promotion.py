import logging
import re
from dataclasses import dataclass, field

from django.db import DatabaseError, transaction
from django.utils import timezone

from evaluation.exceptions import NotFoundError, ValidationError
from evaluation.models import ClassHistoryEntry
from evaluation.services import access
from evaluation.services.class_history import EntryView
from evaluation.services.metrics import record_degraded
from schools.models import Class, Student

logger = logging.getLogger(__name__)

ACADEMIC_YEAR_RE = re.compile(r"^(\d{4})-(\d{4})$")


@dataclass(frozen=True)
class PromotionResult:
    promoted_count: int
    from_class_id: int
    to_class_id: int
    academic_year: str
    ledger_persisted: bool
    records: tuple = field(default=())

    def as_dict(self) -> dict:
        return {
            "promoted_count": self.promoted_count,
            "from_class_id": self.from_class_id,
            "to_class_id": self.to_class_id,
            "academic_year": self.academic_year,
            "ledger_persisted": self.ledger_persisted,
            "records": [r.as_dict() for r in self.records],
        }


def validate_academic_year(value) -> str:
    match = ACADEMIC_YEAR_RE.match(str(value or ""))
    if not match or int(match.group(2)) != int(match.group(1)) + 1:
        raise ValidationError(f"Academic year must look like 2024-2025, got {value!r}.")
    return value


def _clean_ids(student_ids) -> list[int]:
    if not student_ids:
        raise ValidationError("At least one student is required.")
    try:
        ids = [int(i) for i in student_ids]
    except (TypeError, ValueError):
        raise ValidationError("Student ids must be integers.")
    if len(set(ids)) != len(ids):
        raise ValidationError("Student ids must be unique.")
    return ids


def _get_class(class_id: int) -> Class:
    klass = Class.objects.select_related("grade").filter(pk=class_id).first()
    if klass is None:
        raise NotFoundError(f"Class {class_id} not found.", class_id=class_id)
    return klass


def _entry(student_id, to_class, academic_year, notes, acting_user_id, now, pk=None, persisted=True) -> EntryView:
    return EntryView(
        id=pk,
        student_id=student_id,
        class_id=to_class.id,
        class_name=to_class.name,
        grade_id=to_class.grade_id,
        grade_name=to_class.grade.name,
        academic_year=academic_year,
        is_active=True,
        start_date=now,
        promoted_by=acting_user_id,
        promoted_at=now,
        notes=notes,
        persisted=persisted,
    )


def _require_placed(students, ids, from_class_id):
    placed = {s.id for s in students if s.klass_id == from_class_id}
    outsiders = [i for i in ids if i not in placed]
    if outsiders:
        raise ValidationError(
            f"Students {outsiders} are not currently in class {from_class_id}.",
            student_ids=outsiders,
            from_class_id=from_class_id,
        )


def _lock_students(ids, from_class_id) -> list[Student]:
    # placement is re-read under the lock; a concurrent move since the pre-check fails here
    locked = list(Student.objects.select_for_update().filter(id__in=ids).order_by("id"))
    _require_placed(locked, ids, from_class_id)
    return locked


def _promote_with_ledger(ids, from_class_id, to_class, academic_year, notes, acting_user_id, now) -> list[EntryView]:
    with transaction.atomic():
        locked = _lock_students(ids, from_class_id)
        ClassHistoryEntry.objects.filter(student_id__in=ids, is_active=True).update(is_active=False, end_date=now)
        created = ClassHistoryEntry.objects.bulk_create(
            [
                ClassHistoryEntry(
                    student_id=s.id,
                    klass=to_class,
                    grade_id=to_class.grade_id,
                    academic_year=academic_year,
                    is_active=True,
                    start_date=now,
                    promoted_by_id=acting_user_id,
                    promoted_at=now,
                    notes=notes,
                )
                for s in locked
            ]
        )
        Student.objects.filter(id__in=ids, klass_id=from_class_id).update(klass=to_class, grade_id=to_class.grade_id)
    return [
        _entry(e.student_id, to_class, academic_year, notes, acting_user_id, now, pk=e.pk)
        for e in created
    ]


def _promote_placement_only(ids, from_class_id, to_class, academic_year, notes, acting_user_id, now) -> list[EntryView]:
    with transaction.atomic():
        _lock_students(ids, from_class_id)
        Student.objects.filter(id__in=ids, klass_id=from_class_id).update(klass=to_class, grade_id=to_class.grade_id)
    return [_entry(i, to_class, academic_year, notes, acting_user_id, now, persisted=False) for i in ids]


def promote_students(
    caller: access.Caller,
    student_ids,
    from_class_id: int,
    to_class_id: int,
    academic_year: str,
    notes: str = "",
) -> PromotionResult:
    """
    Move students from one class to another and record it in the ledger.

    Placement and ledger change in one transaction. If that transaction fails,
    placement is updated on its own and the returned records are synthesized
    (``persisted`` False); the ledger is caught up later by reconciliation.
    """
    ids = _clean_ids(student_ids)
    validate_academic_year(academic_year)
    if from_class_id == to_class_id:
        raise ValidationError("Source and destination classes must differ.")
    from_class = _get_class(from_class_id)
    to_class = _get_class(to_class_id)
    access.require_class(caller, from_class)

    _require_placed(Student.objects.filter(id__in=ids).only("id", "klass_id"), ids, from_class_id)

    now = timezone.now()
    notes = notes or None
    try:
        records = _promote_with_ledger(ids, from_class_id, to_class, academic_year, notes, caller.user_id, now)
        persisted = True
    except DatabaseError:
        logger.error(
            "Promotion ledger write failed, updating placement only",
            extra={"from_class_id": from_class_id, "to_class_id": to_class_id, "student_count": len(ids)},
            exc_info=True,
        )
        record_degraded("promotion")
        records = _promote_placement_only(ids, from_class_id, to_class, academic_year, notes, caller.user_id, now)
        persisted = False

    logger.info(
        "Students promoted",
        extra={
            "from_class_id": from_class_id,
            "to_class_id": to_class_id,
            "student_count": len(ids),
            "academic_year": academic_year,
            "ledger_persisted": persisted,
            "user_id": caller.user_id,
        },
    )
    return PromotionResult(
        promoted_count=len(ids),
        from_class_id=from_class_id,
        to_class_id=to_class_id,
        academic_year=academic_year,
        ledger_persisted=persisted,
        records=tuple(records),
    )
