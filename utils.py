import math
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

from errors import ValidationFailure

DAYS_PER_YEAR = 365.25


def parse_date(value: Union[str, date, None], field: str = "date") -> Optional[date]:
    """Accepts ISO strings (date or datetime), dates, or blanks from query strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationFailure(f"Invalid {field} '{value}'. Use ISO 8601 (e.g., 2024-10-27).")


def days_ago(today: date, days: int) -> date:
    return today - timedelta(days=days)


def age_in_years(date_of_birth: date, now: datetime) -> float:
    born = datetime.combine(date_of_birth, time.min, tzinfo=now.tzinfo)
    return (now - born).total_seconds() / (DAYS_PER_YEAR * 86400)


def coverage_percentage(total: int, target_population: int) -> float:
    # two decimals, half-up; a zero target never divides
    if not target_population:
        return 0
    return math.floor(total / target_population * 10000 + 0.5) / 100


def total_pages(total: int, page_size: int) -> int:
    if total <= 0:
        return 1
    return math.ceil(total / page_size)


# (label, lower bound inclusive, upper bound exclusive)
AGE_GROUPS = [
    ("0-1 years", 0, 1),
    ("1-2 years", 1, 2),
    ("2-5 years", 2, 5),
    ("5+ years", 5, None),
]


def age_group_label(age: float) -> str:
    for label, low, high in AGE_GROUPS:
        if age >= low and (high is None or age < high):
            return label
    # negative ages (birth date after the reference time) fall in the youngest bucket
    return AGE_GROUPS[0][0]
