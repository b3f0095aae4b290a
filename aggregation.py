"""
Dashboard aggregation engine.

Every metric has two ways to be computed: the store's precomputed aggregate
(used when no filter narrows the data) and an in-process aggregation over the
raw vaccination rows matching the filter. For an unfiltered dataset both give
the same counts. The engine never reads the clock: ``now`` is fixed when the
engine is created, and every window (today, last 7 days, last 30 days) is
derived from it.

``LatestRequestGate`` is for callers that re-trigger the same computation
(a UI refreshing the dashboard as filters change) and only want the result
of the newest call.
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Awaitable, List, Optional, Tuple

from errors import StoreUnavailable, ValidationFailure
from filters import MONTH_DAYS, WEEK_DAYS, is_unfiltered, narrows_population
from models import (
    AgeGroupStat,
    CanonicalFilter,
    DashboardSnapshot,
    DashboardSummary,
    DistrictCoverageRow,
    DistrictStat,
    JoinSpec,
    MonthlyReportRow,
    Page,
    RecentVaccination,
    ReportFilters,
    TrendPoint,
    VaccinationQuery,
    VaccinationRow,
    VaccineSummaryRow,
    VaccineTypeStat,
)
from store import RecordStore
from utils import AGE_GROUPS, age_group_label, age_in_years, coverage_percentage, days_ago, total_pages

logger = logging.getLogger(__name__)

DEFAULT_TREND_DAYS = 7
DEFAULT_RECENT_LIMIT = 10
SUMMARY_REPORT_DOSES = 4


# --- In-process aggregation over raw rows ---

def summarize_rows(rows: List[VaccinationRow], today) -> DashboardSummary:
    # the three windows overlap: a row given today counts in all of them
    week_start = days_ago(today, WEEK_DAYS)
    month_start = days_ago(today, MONTH_DAYS)
    return DashboardSummary(
        total_vaccinations=len(rows),
        today_count=sum(1 for r in rows if r.date_given == today),
        week_count=sum(1 for r in rows if r.date_given >= week_start),
        month_count=sum(1 for r in rows if r.date_given >= month_start),
    )


def trend_from_rows(rows: List[VaccinationRow], days: int, today) -> List[TrendPoint]:
    buckets = OrderedDict((days_ago(today, offset), 0) for offset in range(days - 1, -1, -1))
    for row in rows:
        if row.date_given in buckets:
            buckets[row.date_given] += 1
    return [TrendPoint(date=day, count=count) for day, count in buckets.items()]


def vaccine_type_stats_from_rows(rows: List[VaccinationRow], today) -> List[VaccineTypeStat]:
    week_start = days_ago(today, WEEK_DAYS)
    groups = {}
    for row in rows:
        if row.vaccine_name is None:
            continue
        stat = groups.setdefault(row.vaccine_name, {"total_count": 0, "week_count": 0, "today_count": 0})
        stat["total_count"] += 1
        if row.date_given >= week_start:
            stat["week_count"] += 1
        if row.date_given == today:
            stat["today_count"] += 1
    ordered = sorted(groups.items(), key=lambda item: (-item[1]["total_count"], item[0]))
    return [VaccineTypeStat(vaccine_name=name, **counts) for name, counts in ordered]


def district_stats_from_rows(rows: List[VaccinationRow]) -> List[DistrictStat]:
    groups = {}
    for row in rows:
        if row.district_name is None:
            continue
        group = groups.setdefault(row.district_name, {
            "target_population": row.district_target_population or 0,
            "total_vaccinations": 0,
        })
        group["total_vaccinations"] += 1
    stats = [
        DistrictStat(
            district_name=name,
            target_population=group["target_population"],
            total_vaccinations=group["total_vaccinations"],
            coverage_percentage=coverage_percentage(group["total_vaccinations"], group["target_population"]),
        )
        for name, group in groups.items()
    ]
    stats.sort(key=lambda s: (-s.total_vaccinations, s.district_name))
    return stats


def age_group_stats_from_rows(rows: List[VaccinationRow], now: datetime) -> List[AgeGroupStat]:
    counts = {label: 0 for label, _, _ in AGE_GROUPS}
    for row in rows:
        if row.beneficiary_date_of_birth is None:
            continue
        counts[age_group_label(age_in_years(row.beneficiary_date_of_birth, now))] += 1
    return [AgeGroupStat(age_group=label, count=count) for label, count in counts.items()]


def recent_from_row(row: VaccinationRow) -> RecentVaccination:
    return RecentVaccination(
        id=row.id,
        beneficiary_name=row.beneficiary_name or "Unknown",
        vaccine_name=row.vaccine_name or "Unknown",
        dose_number=row.dose_number,
        date_given=row.date_given,
        district_name=row.district_name or "Unknown",
        block_name=row.block_name or "",
    )


# --- Report rows ---

def vaccine_summary_rows(rows: List[VaccinationRow]) -> List[VaccineSummaryRow]:
    groups = {}
    for row in rows:
        if row.vaccine_name is None:
            continue
        summary = groups.setdefault(row.vaccine_name, VaccineSummaryRow(vaccine_name=row.vaccine_name, total_doses=0))
        summary.total_doses += 1
        if row.dose_number <= SUMMARY_REPORT_DOSES:
            field = f"dose_{row.dose_number}"
            setattr(summary, field, getattr(summary, field) + 1)
    return sorted(groups.values(), key=lambda r: (-r.total_doses, r.vaccine_name))


def district_coverage_rows(rows: List[VaccinationRow], districts) -> List[DistrictCoverageRow]:
    totals = {}
    beneficiaries = {}
    for row in rows:
        totals[row.district_id] = totals.get(row.district_id, 0) + 1
        beneficiaries.setdefault(row.district_id, set()).add(row.beneficiary_id)
    report = [
        DistrictCoverageRow(
            district_name=district.name,
            target_population=district.target_population,
            total_vaccinations=totals.get(district.id, 0),
            unique_beneficiaries=len(beneficiaries.get(district.id, ())),
            coverage_percentage=coverage_percentage(totals.get(district.id, 0), district.target_population),
        )
        for district in districts
    ]
    report.sort(key=lambda r: (-r.total_vaccinations, r.district_name))
    return report


def monthly_rows(rows: List[VaccinationRow]) -> List[MonthlyReportRow]:
    months = {}
    for row in rows:
        month = months.setdefault(row.date_given.strftime("%Y-%m"), {
            "total": 0, "beneficiaries": set(), "male": set(), "female": set(),
        })
        month["total"] += 1
        month["beneficiaries"].add(row.beneficiary_id)
        if row.beneficiary_gender == "male":
            month["male"].add(row.beneficiary_id)
        elif row.beneficiary_gender == "female":
            month["female"].add(row.beneficiary_id)
    return [
        MonthlyReportRow(
            month=key,
            total_vaccinations=month["total"],
            unique_beneficiaries=len(month["beneficiaries"]),
            male_count=len(month["male"]),
            female_count=len(month["female"]),
        )
        for key, month in sorted(months.items())
    ]


class DashboardEngine:
    """Computes dashboard metrics for one request against a record store.

    Store failures never escape the public methods: they are logged and the
    metric comes back empty (``None`` for the summary, ``[]`` otherwise).
    ``snapshot`` additionally reports which sections failed.
    """

    def __init__(self, store: RecordStore, now: datetime):
        self.store = store
        self.now = now
        self.today = now.date()

    async def _guarded(self, section: str, work: Awaitable, fallback: Any) -> Tuple[Any, bool]:
        try:
            return await work, True
        except StoreUnavailable as e:
            logger.error("Error fetching %s: %s", section, e)
            return fallback, False

    # --- Summary ---

    async def _summary(self, filters: CanonicalFilter) -> DashboardSummary:
        if is_unfiltered(filters):
            logger.debug("summary: precomputed path")
            return await self.store.get_dashboard_summary(self.today)
        logger.debug("summary: manual path for %s", filters)
        rows = await self.store.query_vaccinations(filters.to_query())
        # beneficiary and district totals are not recomputed for filtered views
        return summarize_rows(rows, self.today)

    async def summary(self, filters: CanonicalFilter) -> Optional[DashboardSummary]:
        value, _ = await self._guarded("dashboard stats", self._summary(filters), None)
        return value

    # --- Trend ---

    async def _trend(self, filters: CanonicalFilter, days: int) -> List[TrendPoint]:
        # the window is always the trailing `days` days; date bounds do not apply
        if not narrows_population(filters):
            logger.debug("trend: precomputed path")
            return await self.store.get_trend(days, self.today)
        query = VaccinationQuery(
            date_from=days_ago(self.today, days - 1),
            date_to=self.today,
            district_id=filters.district_id,
            vaccine_type_id=filters.vaccine_type_id,
        )
        rows = await self.store.query_vaccinations(query)
        return trend_from_rows(rows, days, self.today)

    async def trend(self, filters: CanonicalFilter, days: int = DEFAULT_TREND_DAYS) -> List[TrendPoint]:
        if days < 1:
            raise ValidationFailure("Trend window must be at least one day.")
        value, _ = await self._guarded("vaccination trend", self._trend(filters, days), [])
        return value

    # --- Breakdowns ---

    async def _vaccine_types(self, filters: CanonicalFilter) -> List[VaccineTypeStat]:
        if is_unfiltered(filters):
            return await self.store.get_vaccine_type_stats(self.today)
        rows = await self.store.query_vaccinations(filters.to_query(), JoinSpec(vaccine_type=True))
        return vaccine_type_stats_from_rows(rows, self.today)

    async def vaccine_types(self, filters: CanonicalFilter) -> List[VaccineTypeStat]:
        value, _ = await self._guarded("vaccine stats", self._vaccine_types(filters), [])
        return value

    async def _districts(self, filters: CanonicalFilter) -> List[DistrictStat]:
        if is_unfiltered(filters):
            stats = await self.store.get_district_stats()
        else:
            rows = await self.store.query_vaccinations(filters.to_query(), JoinSpec(district=True))
            stats = district_stats_from_rows(rows)
        return sorted(stats, key=lambda s: (-s.total_vaccinations, s.district_name))

    async def districts(self, filters: CanonicalFilter) -> List[DistrictStat]:
        value, _ = await self._guarded("district stats", self._districts(filters), [])
        return value

    async def _age_groups(self, filters: CanonicalFilter) -> List[AgeGroupStat]:
        if is_unfiltered(filters):
            return await self.store.get_age_group_stats(self.now)
        rows = await self.store.query_vaccinations(filters.to_query(), JoinSpec(beneficiary=True))
        return age_group_stats_from_rows(rows, self.now)

    async def age_groups(self, filters: CanonicalFilter) -> List[AgeGroupStat]:
        value, _ = await self._guarded("age group stats", self._age_groups(filters), [])
        return value

    # --- Recent vaccinations ---

    async def _recent(self, filters: CanonicalFilter, limit: int) -> List[RecentVaccination]:
        rows = await self.store.query_vaccinations(
            filters.to_query(),
            JoinSpec(beneficiary=True, vaccine_type=True, district=True, block=True),
            limit=limit,
            newest_first=True,
        )
        return [recent_from_row(row) for row in rows]

    async def recent(self, filters: CanonicalFilter, limit: int = DEFAULT_RECENT_LIMIT) -> List[RecentVaccination]:
        value, _ = await self._guarded("recent vaccinations", self._recent(filters, limit), [])
        return value

    async def recent_page(self, filters: CanonicalFilter, page: int, page_size: int, fetch_limit: int) -> Page:
        """Fetch up to ``fetch_limit`` recent rows once and slice out one fixed-size page."""
        rows = await self.recent(filters, fetch_limit)
        start = (page - 1) * page_size
        return Page(
            data=rows[start:start + page_size],
            total=len(rows),
            page=page,
            page_size=page_size,
            total_pages=total_pages(len(rows), page_size),
        )

    # --- Everything at once ---

    async def snapshot(
        self,
        filters: CanonicalFilter,
        days: int = DEFAULT_TREND_DAYS,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> DashboardSnapshot:
        if days < 1:
            raise ValidationFailure("Trend window must be at least one day.")
        sections = [
            ("summary", self._summary(filters), None),
            ("trend", self._trend(filters, days), []),
            ("vaccine_types", self._vaccine_types(filters), []),
            ("districts", self._districts(filters), []),
            ("age_groups", self._age_groups(filters), []),
            ("recent", self._recent(filters, recent_limit), []),
        ]
        results = await asyncio.gather(*(self._guarded(name, work, fallback) for name, work, fallback in sections))
        values = {}
        errors = []
        for (name, _, _), (value, ok) in zip(sections, results):
            values[name] = value
            if not ok:
                errors.append(name)
        return DashboardSnapshot(errors=errors, **values)

    # --- Report rows ---

    async def _report_rows(self, filters: ReportFilters, join: JoinSpec) -> List[VaccinationRow]:
        query = VaccinationQuery(
            date_from=filters.start_date,
            date_to=filters.end_date,
            district_id=filters.district_id,
        )
        return await self.store.query_vaccinations(query, join)

    async def _vaccine_summary_report(self, filters):
        return vaccine_summary_rows(await self._report_rows(filters, JoinSpec(vaccine_type=True)))

    async def vaccine_summary_report(self, filters: ReportFilters) -> List[VaccineSummaryRow]:
        value, _ = await self._guarded("vaccine summary report", self._vaccine_summary_report(filters), [])
        return value

    async def _district_coverage_report(self, filters):
        rows, districts = await asyncio.gather(
            self._report_rows(filters, JoinSpec()),
            self.store.get_districts(),
        )
        if filters.district_id:
            districts = [d for d in districts if d.id == filters.district_id]
        return district_coverage_rows(rows, districts)

    async def district_coverage_report(self, filters: ReportFilters) -> List[DistrictCoverageRow]:
        value, _ = await self._guarded("district coverage report", self._district_coverage_report(filters), [])
        return value

    async def _monthly_report(self, filters):
        return monthly_rows(await self._report_rows(filters, JoinSpec(beneficiary=True)))

    async def monthly_report(self, filters: ReportFilters) -> List[MonthlyReportRow]:
        value, _ = await self._guarded("monthly report", self._monthly_report(filters), [])
        return value


class LatestRequestGate:
    """
    Runs dashboard computations so that only the newest one is applied.

    Submitting a new computation cancels the one still in flight; a
    superseded computation resolves to ``None`` instead of its result.
    """

    def __init__(self):
        self._sequence = 0
        self._task = None

    @property
    def sequence(self) -> int:
        return self._sequence

    async def submit(self, work: Awaitable):
        self._sequence += 1
        token = self._sequence
        if self._task is not None and not self._task.done():
            self._task.cancel()
        task = asyncio.ensure_future(work)
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if token != self._sequence:
                return None
            raise
        if token != self._sequence:
            return None
        return result
