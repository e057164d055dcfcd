"""
Grading scale resolution: subject scheme -> school default scheme -> built-in table.

Bands are returned in stored order and are not checked for contiguity; the grade
mapper copes with gaps and overlaps.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from django.db import transaction

from evaluation.exceptions import NotFoundError, ValidationError
from schools.models import GradeBand, GradingScheme, School, Subject

logger = logging.getLogger(__name__)

SOURCE_SUBJECT = "subject-specific"
SOURCE_SCHOOL_DEFAULT = "school-default"
SOURCE_BUILT_IN = "built-in"


@dataclass(frozen=True)
class Band:
    label: str
    min_percentage: float
    max_percentage: float
    order: int

    def contains(self, percentage: float) -> bool:
        return self.min_percentage <= percentage <= self.max_percentage


BUILT_IN_BANDS = (
    Band("A+", 90, float("inf"), 1),
    Band("A", 80, 90, 2),
    Band("B+", 70, 80, 3),
    Band("B", 60, 70, 4),
    Band("C+", 50, 60, 5),
    Band("C", 40, 50, 6),
    Band("D", 30, 40, 7),
    Band("F", 0, 30, 8),
)


@dataclass(frozen=True)
class ScaleResolution:
    bands: tuple
    source: str
    scheme_id: Optional[int] = None
    scheme_name: Optional[str] = None


@dataclass(frozen=True)
class ScaleSnapshot:
    subject_scheme: Optional[tuple] = None
    subject_scheme_id: Optional[int] = None
    subject_scheme_name: Optional[str] = None
    school_default: Optional[tuple] = None
    school_default_id: Optional[int] = None
    school_default_name: Optional[str] = None


def from_subject_scheme(snapshot: ScaleSnapshot) -> Optional[ScaleResolution]:
    if not snapshot.subject_scheme:
        return None
    return ScaleResolution(snapshot.subject_scheme, SOURCE_SUBJECT, snapshot.subject_scheme_id, snapshot.subject_scheme_name)


def from_school_default(snapshot: ScaleSnapshot) -> Optional[ScaleResolution]:
    if not snapshot.school_default:
        return None
    return ScaleResolution(
        snapshot.school_default, SOURCE_SCHOOL_DEFAULT, snapshot.school_default_id, snapshot.school_default_name
    )


def from_built_in(snapshot: ScaleSnapshot) -> Optional[ScaleResolution]:
    return ScaleResolution(BUILT_IN_BANDS, SOURCE_BUILT_IN)


SCALE_CHAIN: tuple[Callable[[ScaleSnapshot], Optional[ScaleResolution]], ...] = (
    from_subject_scheme,
    from_school_default,
    from_built_in,
)


def resolve_from_snapshot(snapshot: ScaleSnapshot) -> ScaleResolution:
    for link in SCALE_CHAIN:
        resolved = link(snapshot)
        if resolved is not None:
            return resolved
    return ScaleResolution(BUILT_IN_BANDS, SOURCE_BUILT_IN)


def _bands_of(scheme: Optional[GradingScheme]) -> Optional[tuple]:
    if scheme is None:
        return None
    return tuple(
        Band(b.label, b.min_percentage, b.max_percentage, b.order)
        for b in scheme.bands.order_by("order", "id")
    )


def _school_default_scheme(school_id: int) -> Optional[GradingScheme]:
    return GradingScheme.objects.filter(school_id=school_id, is_default=True).first()


def school_snapshot(school_id: int) -> ScaleSnapshot:
    default = _school_default_scheme(school_id)
    return ScaleSnapshot(
        school_default=_bands_of(default),
        school_default_id=default.id if default else None,
        school_default_name=default.name if default else None,
    )


def load_snapshot(subject: Subject) -> ScaleSnapshot:
    scheme = subject.grading_scheme
    default = _school_default_scheme(subject.school_id)
    return ScaleSnapshot(
        subject_scheme=_bands_of(scheme),
        subject_scheme_id=scheme.id if scheme else None,
        subject_scheme_name=scheme.name if scheme else None,
        school_default=_bands_of(default),
        school_default_id=default.id if default else None,
        school_default_name=default.name if default else None,
    )


def resolve_scale(subject_id: int) -> ScaleResolution:
    subject = Subject.objects.select_related("grading_scheme").filter(pk=subject_id).first()
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found.", subject_id=subject_id)
    return resolve_from_snapshot(load_snapshot(subject))


def resolve_school_scale(school_id: int) -> ScaleResolution:
    """Scale for cross-subject figures (overall grade): school default, else built-in."""
    return resolve_from_snapshot(school_snapshot(school_id))


def _clean_bands(bands) -> list[dict]:
    if not bands:
        raise ValidationError("A grading scheme needs at least one band.")
    cleaned = []
    for position, band in enumerate(bands, start=1):
        label = str(band.get("label") or "").strip()
        if not label:
            raise ValidationError(f"Band {position} has no label.")
        try:
            low = float(band["min_percentage"])
            high = float(band["max_percentage"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Band {label!r} needs numeric min and max percentages.")
        if low < 0 or low > high:
            raise ValidationError(f"Band {label!r} must satisfy 0 <= min <= max.")
        cleaned.append(
            {
                "label": label,
                "min_percentage": low,
                "max_percentage": high,
                "description": band.get("description") or "",
                "order": int(band.get("order") or position),
            }
        )
    return cleaned


def create_grading_scheme(school_id: int, name: str, bands, is_default: bool = False, description: str = "") -> GradingScheme:
    if not name or not name.strip():
        raise ValidationError("A grading scheme needs a name.")
    if not School.objects.filter(pk=school_id).exists():
        raise NotFoundError(f"School {school_id} not found.", school_id=school_id)
    cleaned = _clean_bands(bands)
    with transaction.atomic():
        if is_default:
            GradingScheme.objects.filter(school_id=school_id, is_default=True).update(is_default=False)
        scheme = GradingScheme.objects.create(
            school_id=school_id, name=name.strip(), description=description or "", is_default=is_default
        )
        GradeBand.objects.bulk_create([GradeBand(scheme=scheme, **band) for band in cleaned])
    logger.info("Grading scheme created", extra={"scheme_id": scheme.id, "school_id": school_id, "is_default": is_default})
    return scheme


def list_grading_schemes(school_id: int):
    """Schemes of a school with their bands, default first."""
    if not School.objects.filter(pk=school_id).exists():
        raise NotFoundError(f"School {school_id} not found.", school_id=school_id)
    return (
        GradingScheme.objects.filter(school_id=school_id)
        .prefetch_related("bands")
        .order_by("-is_default", "name", "id")
    )


def _lock_scheme(scheme_id: int) -> GradingScheme:
    scheme = GradingScheme.objects.select_for_update().filter(pk=scheme_id).first()
    if scheme is None:
        raise NotFoundError(f"Grading scheme {scheme_id} not found.", scheme_id=scheme_id)
    return scheme


def update_grading_scheme(
    scheme_id: int,
    name: Optional[str] = None,
    bands=None,
    is_default: Optional[bool] = None,
    description: Optional[str] = None,
) -> GradingScheme:
    """
    Update a scheme in place. Fields left as None are kept.

    A new band list replaces the old one entirely. Making the scheme the school
    default clears the flag on the previous default in the same transaction.
    """
    if name is not None and not name.strip():
        raise ValidationError("A grading scheme needs a name.")
    cleaned = _clean_bands(bands) if bands is not None else None
    with transaction.atomic():
        scheme = _lock_scheme(scheme_id)
        if name is not None:
            scheme.name = name.strip()
        if description is not None:
            scheme.description = description
        if is_default and not scheme.is_default:
            GradingScheme.objects.filter(school_id=scheme.school_id, is_default=True).exclude(pk=scheme.pk).update(
                is_default=False
            )
        if is_default is not None:
            scheme.is_default = is_default
        scheme.save(update_fields=["name", "description", "is_default"])
        if cleaned is not None:
            scheme.bands.all().delete()
            GradeBand.objects.bulk_create([GradeBand(scheme=scheme, **band) for band in cleaned])
    logger.info(
        "Grading scheme updated",
        extra={"scheme_id": scheme.id, "school_id": scheme.school_id, "bands_replaced": cleaned is not None},
    )
    return scheme


def delete_grading_scheme(scheme_id: int) -> None:
    with transaction.atomic():
        scheme = _lock_scheme(scheme_id)
        in_use = scheme.subjects.count()
        if in_use:
            raise ValidationError(
                f"Grading scheme {scheme_id} is used by {in_use} subject(s); reassign them first.",
                scheme_id=scheme_id,
                subject_count=in_use,
            )
        scheme.delete()
    logger.info("Grading scheme deleted", extra={"scheme_id": scheme_id, "school_id": scheme.school_id})


def assign_grading_scheme(subject_id: int, scheme_id: Optional[int]) -> Subject:
    subject = Subject.objects.filter(pk=subject_id).first()
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found.", subject_id=subject_id)
    scheme = None
    if scheme_id is not None:
        scheme = GradingScheme.objects.filter(pk=scheme_id, school_id=subject.school_id).first()
        if scheme is None:
            raise NotFoundError(f"Grading scheme {scheme_id} not found for this school.", scheme_id=scheme_id)
    subject.grading_scheme = scheme
    subject.save(update_fields=["grading_scheme"])
    return subject
