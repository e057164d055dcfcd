"""
Class history ledger.

Reading a student's history is a two-phase operation. ``detect_drift`` and
``plan_repair`` are pure and work on in-memory views; ``repair_class_history``
is the only function that writes, and ``get_class_history`` calls it when the
ledger no longer agrees with the student's current placement. If that write
fails the read still answers, with a synthesized view that is not persisted.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Iterable, Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from evaluation.exceptions import ConsistencyError, NotFoundError
from evaluation.models import ClassHistoryEntry
from evaluation.services import access
from evaluation.services.metrics import record_degraded
from schools.models import Student

logger = logging.getLogger(__name__)


def academic_year_for(day: date) -> str:
    """September-start academic year by default: 2024-10-01 -> "2024-2025", 2025-03-01 -> "2024-2025"."""
    start_month = int(getattr(settings, "ACADEMIC_YEAR_START_MONTH", 9))
    if day.month >= start_month:
        return f"{day.year}-{day.year + 1}"
    return f"{day.year - 1}-{day.year}"


def current_academic_year() -> str:
    return academic_year_for(timezone.localdate())


@dataclass(frozen=True)
class Placement:
    student_id: int
    class_id: int
    class_name: str
    grade_id: int
    grade_name: str


@dataclass(frozen=True)
class EntryView:
    id: Optional[int]
    student_id: int
    class_id: int
    class_name: str
    grade_id: int
    grade_name: str
    academic_year: str
    is_active: bool
    start_date: datetime
    end_date: Optional[datetime] = None
    promoted_by: Optional[int] = None
    promoted_at: Optional[datetime] = None
    notes: Optional[str] = None
    persisted: bool = True

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "class_id": self.class_id,
            "class_name": self.class_name,
            "grade_id": self.grade_id,
            "grade_name": self.grade_name,
            "academic_year": self.academic_year,
            "is_active": self.is_active,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "promoted_by": self.promoted_by,
            "promoted_at": self.promoted_at,
            "notes": self.notes,
            "persisted": self.persisted,
        }


@dataclass(frozen=True)
class RepairPlan:
    deactivate_ids: tuple = field(default=())
    create: Optional[Placement] = None
    academic_year: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return not self.deactivate_ids and self.create is None


def ordered(entries: Iterable[EntryView]) -> list[EntryView]:
    """Active first, then most recent start date."""
    return sorted(entries, key=lambda e: (not e.is_active, -e.start_date.timestamp()))


def detect_drift(placement: Placement, entries: Iterable[EntryView]) -> bool:
    active = [e for e in entries if e.is_active]
    return len(active) != 1 or active[0].class_id != placement.class_id


def plan_repair(placement: Placement, entries: Iterable[EntryView], today: date) -> RepairPlan:
    """
    Decide how to bring the ledger back in line with the student's placement.

    Active entries for the current class are collapsed onto the newest one when
    they agree on grade and academic year; if they disagree there is no safe
    choice and ConsistencyError is raised. Without any active entry for the
    current class, every active entry is closed and a new one is opened.
    """
    entries = list(entries)
    if not detect_drift(placement, entries):
        return RepairPlan()
    active = [e for e in entries if e.is_active]
    matching = [e for e in active if e.class_id == placement.class_id]

    if not matching:
        return RepairPlan(
            deactivate_ids=tuple(e.id for e in active),
            create=placement,
            academic_year=academic_year_for(today),
        )

    if len({(e.grade_id, e.academic_year) for e in matching}) > 1:
        raise ConsistencyError(
            "Student has several active history entries for the current class that disagree.",
            student_id=placement.student_id,
            entry_ids=[e.id for e in matching],
        )
    keep = ordered(matching)[0]
    return RepairPlan(deactivate_ids=tuple(e.id for e in active if e.id != keep.id))


def _view(entry: ClassHistoryEntry) -> EntryView:
    return EntryView(
        id=entry.id,
        student_id=entry.student_id,
        class_id=entry.klass_id,
        class_name=entry.klass.name,
        grade_id=entry.grade_id,
        grade_name=entry.grade.name,
        academic_year=entry.academic_year,
        is_active=entry.is_active,
        start_date=entry.start_date,
        end_date=entry.end_date,
        promoted_by=entry.promoted_by_id,
        promoted_at=entry.promoted_at,
        notes=entry.notes,
    )


def load_entries(student_id: int) -> list[EntryView]:
    qs = ClassHistoryEntry.objects.filter(student_id=student_id).select_related("klass", "grade")
    return [_view(e) for e in qs]


def placement_of(student: Student) -> Placement:
    return Placement(
        student_id=student.id,
        class_id=student.klass_id,
        class_name=student.klass.name,
        grade_id=student.grade_id,
        grade_name=student.grade.name,
    )


def _get_student(student_id: int, lock: bool = False) -> Student:
    qs = Student.objects.select_related("klass", "grade")
    if lock:
        qs = qs.select_for_update()
    student = qs.filter(pk=student_id).first()
    if student is None:
        raise NotFoundError(f"Student {student_id} not found.", student_id=student_id)
    return student


def repair_class_history(student_id: int) -> bool:
    """
    Apply ``plan_repair`` under a lock on the student row.

    Returns True when something was written. A concurrent repair that won the
    race shows up as an IntegrityError on the active-entry constraint; the
    ledger is then already consistent and False is returned.
    """
    try:
        with transaction.atomic():
            student = _get_student(student_id, lock=True)
            placement = placement_of(student)
            plan = plan_repair(placement, load_entries(student_id), timezone.localdate())
            if plan.is_noop:
                return False
            now = timezone.now()
            if plan.deactivate_ids:
                ClassHistoryEntry.objects.filter(id__in=plan.deactivate_ids).update(is_active=False, end_date=now)
            if plan.create is not None:
                ClassHistoryEntry.objects.create(
                    student_id=student_id,
                    klass_id=plan.create.class_id,
                    grade_id=plan.create.grade_id,
                    academic_year=plan.academic_year,
                    is_active=True,
                    start_date=now,
                    notes="Recorded by ledger reconciliation",
                )
    except IntegrityError:
        logger.info("Concurrent class history repair detected", extra={"student_id": student_id})
        return False
    logger.warning(
        "Class history drift repaired",
        extra={
            "student_id": student_id,
            "class_id": placement.class_id,
            "deactivated": len(plan.deactivate_ids),
            "entry_created": plan.create is not None,
        },
    )
    return True


def synthesize_view(placement: Placement, entries: Iterable[EntryView], today: date) -> list[EntryView]:
    """In-memory history where only the current placement is active. Never persisted."""
    current = EntryView(
        id=None,
        student_id=placement.student_id,
        class_id=placement.class_id,
        class_name=placement.class_name,
        grade_id=placement.grade_id,
        grade_name=placement.grade_name,
        academic_year=academic_year_for(today),
        is_active=True,
        start_date=timezone.now(),
        persisted=False,
    )
    others = [replace(e, is_active=False) if e.is_active else e for e in entries]
    return [current] + ordered(others)


def get_class_history(student_id: int, caller: Optional[access.Caller] = None) -> dict:
    student = _get_student(student_id)
    if caller is not None:
        access.require_student(caller, student)
    placement = placement_of(student)
    entries = load_entries(student_id)
    if not detect_drift(placement, entries):
        return {"history": [e.as_dict() for e in ordered(entries)], "repaired": False}

    try:
        repaired = repair_class_history(student_id)
    except DatabaseError:
        logger.warning(
            "Class history repair failed, serving synthesized view",
            extra={"student_id": student_id, "class_id": placement.class_id},
            exc_info=True,
        )
        record_degraded("ledger_repair")
        view = synthesize_view(placement, entries, timezone.localdate())
        return {"history": [e.as_dict() for e in view], "repaired": False}

    entries = load_entries(student_id)
    if detect_drift(placement, entries):
        logger.warning("Class history still inconsistent after repair", extra={"student_id": student_id})
        entries = synthesize_view(placement, entries, timezone.localdate())
    return {"history": [e.as_dict() for e in ordered(entries)], "repaired": repaired}


def reconcile_class_history(student_ids: Optional[Iterable[int]] = None, dry_run: bool = False) -> dict:
    """Sweep students and repair every drifted ledger. Returns counters and the ids that could not be fixed."""
    qs = Student.objects.select_related("klass", "grade").order_by("id")
    if student_ids is not None:
        qs = qs.filter(id__in=list(student_ids))
    summary = {"checked": 0, "drifted": 0, "repaired": 0, "conflicts": [], "failed": [], "dry_run": dry_run}
    for student in qs.iterator():
        summary["checked"] += 1
        if not detect_drift(placement_of(student), load_entries(student.id)):
            continue
        summary["drifted"] += 1
        if dry_run:
            continue
        try:
            if repair_class_history(student.id):
                summary["repaired"] += 1
        except ConsistencyError as exc:
            logger.error("Ledger conflict needs manual review", extra={"student_id": student.id, **exc.context})
            summary["conflicts"].append(student.id)
        except DatabaseError:
            logger.warning("Ledger repair failed during sweep", extra={"student_id": student.id}, exc_info=True)
            record_degraded("ledger_repair")
            summary["failed"].append(student.id)
    logger.info(
        "Class history reconciliation finished",
        extra={k: v for k, v in summary.items() if k in ("checked", "drifted", "repaired", "dry_run")},
    )
    return summary
