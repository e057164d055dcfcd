import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.utils import timezone

from evaluation.exceptions import NotFoundError
from evaluation.models import TermApproval
from evaluation.services.weights import validate_term
from schools.models import Class

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalState:
    class_id: int
    term: str
    is_approved: bool = False
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    notes: str = ""

    def as_dict(self) -> dict:
        return {
            "class_id": self.class_id,
            "term": self.term,
            "is_approved": self.is_approved,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at,
            "notes": self.notes,
        }


def _state(class_id: int, term: str, approval: Optional[TermApproval]) -> ApprovalState:
    if approval is None:
        return ApprovalState(class_id=class_id, term=term)
    return ApprovalState(
        class_id=class_id,
        term=term,
        is_approved=approval.is_approved,
        approved_by=approval.approved_by_id,
        approved_at=approval.approved_at,
        notes=approval.notes,
    )


def get_approval(class_id: int, term: str) -> ApprovalState:
    """Unapproved unless a record says otherwise."""
    validate_term(term)
    return _state(class_id, term, TermApproval.objects.filter(klass_id=class_id, term=term).first())


def toggle_approval(class_id: int, term: str, is_approved: bool, notes: str = "", acting_user_id=None) -> ApprovalState:
    """
    Set the approval switch for a class/term.

    Repeating a call with the same state leaves approver and timestamp untouched.
    """
    validate_term(term)
    if not Class.objects.filter(pk=class_id).exists():
        raise NotFoundError(f"Class {class_id} not found.", class_id=class_id)
    notes = notes or ""
    with transaction.atomic():
        approval, created = TermApproval.objects.select_for_update().get_or_create(klass_id=class_id, term=term)
        if not created and approval.is_approved == is_approved and approval.notes == notes:
            return _state(class_id, term, approval)
        if created or approval.is_approved != is_approved:
            approval.is_approved = is_approved
            approval.approved_by_id = acting_user_id if is_approved else None
            approval.approved_at = timezone.now() if is_approved else None
        approval.notes = notes
        approval.save()
    logger.info(
        "Term approval updated",
        extra={"class_id": class_id, "term": term, "is_approved": is_approved, "user_id": acting_user_id},
    )
    return _state(class_id, term, approval)


def list_approvals(school_id: int, term: str) -> list[dict]:
    """One row per class of the school, with the stored approval state when there is one."""
    validate_term(term)
    classes = Class.objects.filter(school_id=school_id).select_related("grade").order_by("name")
    approvals = {a.klass_id: a for a in TermApproval.objects.filter(klass__school_id=school_id, term=term)}
    rows = []
    for klass in classes:
        row = _state(klass.id, term, approvals.get(klass.id)).as_dict()
        row.update({"class_name": klass.name, "grade_name": klass.grade.name})
        rows.append(row)
    return rows
