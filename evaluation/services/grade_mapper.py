from evaluation.services.grading_scale import BUILT_IN_BANDS

NOT_GRADED = "Not Graded"


def map_grade(percentage: float, has_grades: bool, bands) -> str:
    """
    Map a percentage onto a band label.

    Bands are scanned in the given order and the first one containing the
    percentage wins. When nothing matches (a gap in the table, or a score above
    the top band) the band with the highest ``order`` is returned: the lenient
    fallback is to the lowest grade, never an error.
    """
    if not has_grades:
        return NOT_GRADED
    bands = tuple(bands) or BUILT_IN_BANDS
    for band in bands:
        if band.min_percentage <= percentage <= band.max_percentage:
            return band.label
    return max(bands, key=lambda b: b.order).label
