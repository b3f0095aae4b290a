from datetime import date

import pytest

from filters import is_unfiltered, merge_filters, narrows_population, normalize
from models import CanonicalFilter, FilterSelection

TODAY = date(2026, 10, 19)


def test_all_has_no_date_bounds():
    result = normalize(FilterSelection(date_range="all"), TODAY)
    assert result == CanonicalFilter()
    assert is_unfiltered(result)


@pytest.mark.parametrize("preset,start", [
    ("today", date(2026, 10, 19)),
    ("week", date(2026, 10, 12)),
    ("month", date(2026, 9, 19)),
])
def test_presets_resolve_against_injected_today(preset, start):
    result = normalize(FilterSelection(date_range=preset), TODAY)
    assert result.start_date == start
    assert result.end_date == TODAY


def test_custom_range_passes_through_unvalidated():
    selection = FilterSelection(date_range="custom", start_date=date(2026, 10, 1), end_date=date(2026, 9, 1))
    result = normalize(selection, TODAY)
    assert (result.start_date, result.end_date) == (date(2026, 10, 1), date(2026, 9, 1))


def test_presets_ignore_explicit_dates():
    selection = FilterSelection(date_range="today", start_date=date(2020, 1, 1))
    assert normalize(selection, TODAY).start_date == TODAY


def test_blank_ids_mean_no_restriction():
    result = normalize(FilterSelection(district_id="", vaccine_type_id=""), TODAY)
    assert result.district_id is None
    assert result.vaccine_type_id is None
    assert is_unfiltered(result)


def test_district_or_vaccine_narrows_population():
    assert narrows_population(CanonicalFilter(district_id="a"))
    assert narrows_population(CanonicalFilter(vaccine_type_id="bcg"))
    assert not narrows_population(CanonicalFilter(start_date=TODAY))
    assert not is_unfiltered(CanonicalFilter(start_date=TODAY))


def test_merge_prefers_set_override_fields():
    base = CanonicalFilter(start_date=date(2026, 1, 1), district_id="a")
    override = CanonicalFilter(district_id="b", vaccine_type_id="opv")

    merged = merge_filters(base, override)

    assert merged == CanonicalFilter(start_date=date(2026, 1, 1), district_id="b", vaccine_type_id="opv")
    assert base.district_id == "a"
