"""Turns dashboard filter selections into canonical filters with absolute dates."""
from datetime import date

from models import CanonicalFilter, FilterSelection
from utils import days_ago

WEEK_DAYS = 7
MONTH_DAYS = 30


def normalize(selection: FilterSelection, today: date) -> CanonicalFilter:
    """Resolve a date-range preset against ``today``.

    ``custom`` bounds are passed through as given; an inverted range is not
    rejected and simply matches no rows.
    """
    start, end = None, None
    if selection.date_range == "today":
        start, end = today, today
    elif selection.date_range == "week":
        start, end = days_ago(today, WEEK_DAYS), today
    elif selection.date_range == "month":
        start, end = days_ago(today, MONTH_DAYS), today
    elif selection.date_range == "custom":
        start, end = selection.start_date, selection.end_date

    return CanonicalFilter(
        start_date=start,
        end_date=end,
        district_id=selection.district_id or None,
        vaccine_type_id=selection.vaccine_type_id or None,
    )


def merge_filters(base: CanonicalFilter, override: CanonicalFilter) -> CanonicalFilter:
    """Field by field, a set value in ``override`` wins over ``base``."""
    merged = base.model_dump()
    for key, value in override.model_dump().items():
        if value is not None:
            merged[key] = value
    return CanonicalFilter(**merged)


def is_unfiltered(filters: CanonicalFilter) -> bool:
    return (
        filters.start_date is None
        and filters.end_date is None
        and filters.district_id is None
        and filters.vaccine_type_id is None
    )


def narrows_population(filters: CanonicalFilter) -> bool:
    """True when a district or vaccine restriction is set (dates ignored)."""
    return filters.district_id is not None or filters.vaccine_type_id is not None
