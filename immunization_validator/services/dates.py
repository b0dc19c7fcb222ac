"""
Calendar helpers shared by the condition evaluators.

Dose ordinals ("4th dose") always refer to the chronologically sorted
sequence for one vaccine. sort_doses_by_date() is the one place that
ordering is produced.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import date

from dateutil.relativedelta import relativedelta

from immunization_validator.config.logging_config import get_logger
from immunization_validator.models.models import Immunization
from immunization_validator.models.requirement_models import IntervalUnit

logger = get_logger(__name__)


def sort_doses_by_date(doses: Iterable[Immunization] | None) -> list[Immunization]:
    """
    Return doses in ascending administration order.

    The sort is stable. If any date cannot be parsed the input order is
    returned unchanged rather than raising; callers check
    has_unparsable_date() before trusting ordinals.
    """
    if not doses:
        return []
    doses = list(doses)

    keyed = [(dose.parsed_date, dose) for dose in doses]
    if any(parsed is None for parsed, _ in keyed):
        logger.warning(
            "Unparsable immunization date, keeping original order",
            dose_count=len(doses),
        )
        return doses

    return [dose for _, dose in sorted(keyed, key=lambda item: item[0])]


def has_unparsable_date(doses: Iterable[Immunization] | None) -> bool:
    """
    True when any dose date cannot be read.

    sort_doses_by_date() falls back to input order for such a group, so
    a dose ordinal no longer names a chronological position.
    """
    return any(dose.parsed_date is None for dose in doses or [])


def group_doses_by_vaccine(doses: Iterable[Immunization] | None) -> dict[str, list[Immunization]]:
    """Group doses by vaccine code, each group sorted by date."""
    grouped: dict[str, list[Immunization]] = defaultdict(list)
    for dose in doses or []:
        grouped[dose.vaccine_code].append(dose)
    return {code: sort_doses_by_date(group) for code, group in grouped.items()}


def add_years(start: date, years: int) -> date:
    """Calendar year addition; Feb 29 maps to Feb 28 in non-leap years."""
    return start + relativedelta(years=years)


def add_months(start: date, months: int) -> date:
    """Calendar month addition, clamped to the end of shorter months."""
    return start + relativedelta(months=months)


def calendar_difference(start: date, end: date, unit: IntervalUnit) -> int:
    """
    Whole units elapsed from start to end.

    Months and years are calendar-accurate (Jan 31 to Feb 28 is zero
    months), not fixed-length approximations. Negative when end is
    before start.
    """
    if unit is IntervalUnit.DAY:
        return (end - start).days
    if unit is IntervalUnit.WEEK:
        days = (end - start).days
        return days // 7 if days >= 0 else -((-days) // 7)

    delta = relativedelta(end, start)
    if unit is IntervalUnit.MONTH:
        return delta.years * 12 + delta.months
    if unit is IntervalUnit.YEAR:
        return delta.years
    raise ValueError(f"Unsupported interval unit: {unit}")
