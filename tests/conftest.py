from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional

import pytest

from errors import StoreUnavailable
from models import (
    AgeGroupStat,
    Beneficiary,
    Block,
    DashboardSummary,
    District,
    DistrictStat,
    JoinSpec,
    Page,
    TrendPoint,
    VaccinationRow,
    VaccineType,
    VaccineTypeStat,
    WriteResult,
)
from store import RecordStore

NOW = datetime(2026, 10, 19, 10, 30)
TODAY = NOW.date()


class InMemoryStore(RecordStore):
    """Dict-backed store; its precomputed aggregates are written independently of the engine."""

    def __init__(self):
        self.beneficiaries = {}
        self.vaccinations = {}
        self.districts = {}
        self.blocks = {}
        self.vaccine_types = {}
        self.calls = []

    # --- helpers for tests ---

    def add_district(self, id, name, target_population):
        self.districts[id] = District(id=id, name=name, target_population=target_population)

    def add_block(self, id, name, district_id):
        self.blocks[id] = Block(id=id, name=name, district_id=district_id)

    def add_vaccine_type(self, id, name, total_doses):
        self.vaccine_types[id] = VaccineType(id=id, name=name, total_doses=total_doses)

    def add_child(self, id, name, date_of_birth, district_id, gender="female"):
        self.beneficiaries[id] = Beneficiary(
            id=id, name=name, date_of_birth=date_of_birth, gender=gender,
            district_id=district_id, created_at=NOW,
        )

    def add_dose(self, beneficiary_id, vaccine_type_id, dose_number, date_given, district_id,
                 created_at=None, block_id=None):
        id = str(uuid.uuid4())
        self.vaccinations[id] = VaccinationRow(
            id=id, beneficiary_id=beneficiary_id, vaccine_type_id=vaccine_type_id,
            dose_number=dose_number, date_given=date_given, district_id=district_id,
            block_id=block_id, created_at=created_at or NOW,
        )
        return id

    # --- vaccinations ---

    def _matches(self, row, query):
        if query.date_from and row.date_given < query.date_from:
            return False
        if query.date_to and row.date_given > query.date_to:
            return False
        for field in ("district_id", "vaccine_type_id", "beneficiary_id"):
            value = getattr(query, field)
            if value and getattr(row, field) != value:
                return False
        return True

    def _joined(self, row, join):
        extra = {}
        if join.beneficiary and row.beneficiary_id in self.beneficiaries:
            b = self.beneficiaries[row.beneficiary_id]
            extra.update(beneficiary_name=b.name, beneficiary_date_of_birth=b.date_of_birth,
                         beneficiary_gender=b.gender)
        if join.vaccine_type and row.vaccine_type_id in self.vaccine_types:
            extra["vaccine_name"] = self.vaccine_types[row.vaccine_type_id].name
        if join.district and row.district_id in self.districts:
            d = self.districts[row.district_id]
            extra.update(district_name=d.name, district_target_population=d.target_population)
        if join.block and row.block_id in self.blocks:
            extra["block_name"] = self.blocks[row.block_id].name
        return row.model_copy(update=extra)

    async def query_vaccinations(self, query, join=None, limit=None, offset=0, newest_first=False):
        self.calls.append("query_vaccinations")
        rows = [r for r in self.vaccinations.values() if self._matches(r, query)]
        rows.sort(key=lambda r: (r.date_given, r.created_at, r.id), reverse=newest_first)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [self._joined(r, join or JoinSpec()) for r in rows]

    async def count_vaccinations(self, query):
        return sum(1 for r in self.vaccinations.values() if self._matches(r, query))

    async def get_vaccination(self, vaccination_id):
        return self.vaccinations.get(vaccination_id)

    async def insert_vaccination(self, vaccination):
        id = str(uuid.uuid4())
        self.vaccinations[id] = VaccinationRow(id=id, created_at=NOW, **vaccination.model_dump())
        return WriteResult(success=True, id=id)

    async def delete_vaccination(self, vaccination_id):
        if self.vaccinations.pop(vaccination_id, None) is None:
            return WriteResult(success=False, error="Vaccination not found")
        return WriteResult(success=True, id=vaccination_id)

    # --- beneficiaries ---

    async def query_beneficiaries(self, query, page, page_size):
        rows = [
            b for b in self.beneficiaries.values()
            if (not query.search or query.search.lower() in b.name.lower())
            and (not query.district_id or b.district_id == query.district_id)
            and (not query.gender or b.gender == query.gender)
        ]
        start = (page - 1) * page_size
        total_pages = max(1, -(-len(rows) // page_size))
        return Page(data=rows[start:start + page_size], total=len(rows), page=page,
                    page_size=page_size, total_pages=total_pages)

    async def get_beneficiary(self, beneficiary_id):
        return self.beneficiaries.get(beneficiary_id)

    async def insert_beneficiary(self, beneficiary):
        id = str(uuid.uuid4())
        self.beneficiaries[id] = Beneficiary(id=id, created_at=NOW, **beneficiary.model_dump())
        return WriteResult(success=True, id=id)

    async def update_beneficiary(self, beneficiary_id, changes):
        current = self.beneficiaries.get(beneficiary_id)
        if current is None:
            return WriteResult(success=False, error="Beneficiary not found")
        self.beneficiaries[beneficiary_id] = current.model_copy(update=changes.model_dump(exclude_unset=True))
        return WriteResult(success=True, id=beneficiary_id)

    async def delete_beneficiary(self, beneficiary_id):
        if self.beneficiaries.pop(beneficiary_id, None) is None:
            return WriteResult(success=False, error="Beneficiary not found")
        return WriteResult(success=True, id=beneficiary_id)

    # --- reference data ---

    async def get_districts(self):
        return sorted(self.districts.values(), key=lambda d: d.name)

    async def get_blocks(self, district_id=None):
        return [b for b in self.blocks.values() if not district_id or b.district_id == district_id]

    async def get_vaccine_types(self):
        return sorted(self.vaccine_types.values(), key=lambda v: v.name)

    # --- precomputed ---

    async def get_dashboard_summary(self, today):
        self.calls.append("get_dashboard_summary")
        dates = [r.date_given for r in self.vaccinations.values()]
        return DashboardSummary(
            total_vaccinations=len(dates),
            today_count=dates.count(today),
            week_count=len([d for d in dates if (today - d).days <= 7]),
            month_count=len([d for d in dates if (today - d).days <= 30]),
            total_beneficiaries=len(self.beneficiaries),
            total_districts=len(self.districts),
        )

    async def get_trend(self, days, today):
        self.calls.append("get_trend")
        points = []
        for back in reversed(range(days)):
            day = today - timedelta(days=back)
            points.append(TrendPoint(date=day, count=len([r for r in self.vaccinations.values() if r.date_given == day])))
        return points

    async def get_vaccine_type_stats(self, today):
        self.calls.append("get_vaccine_type_stats")
        names = sorted({self.vaccine_types[r.vaccine_type_id].name for r in self.vaccinations.values()})
        stats = []
        for name in names:
            rows = [r for r in self.vaccinations.values() if self.vaccine_types[r.vaccine_type_id].name == name]
            stats.append(VaccineTypeStat(
                vaccine_name=name,
                total_count=len(rows),
                week_count=len([r for r in rows if (today - r.date_given).days <= 7]),
                today_count=len([r for r in rows if r.date_given == today]),
            ))
        return sorted(stats, key=lambda s: -s.total_count)

    async def get_district_stats(self):
        self.calls.append("get_district_stats")
        stats = []
        for district in self.districts.values():
            total = len([r for r in self.vaccinations.values() if r.district_id == district.id])
            if not total:
                continue
            pct = round(total / district.target_population * 100, 2) if district.target_population else 0
            stats.append(DistrictStat(district_name=district.name, target_population=district.target_population,
                                      total_vaccinations=total, coverage_percentage=pct))
        return stats

    async def get_age_group_stats(self, now):
        self.calls.append("get_age_group_stats")
        counts = {"0-1 years": 0, "1-2 years": 0, "2-5 years": 0, "5+ years": 0}
        for r in self.vaccinations.values():
            dob = self.beneficiaries[r.beneficiary_id].date_of_birth
            years = (now - datetime(dob.year, dob.month, dob.day)).days / 365.25
            if years < 1:
                counts["0-1 years"] += 1
            elif years < 2:
                counts["1-2 years"] += 1
            elif years < 5:
                counts["2-5 years"] += 1
            else:
                counts["5+ years"] += 1
        return [AgeGroupStat(age_group=k, count=v) for k, v in counts.items()]


class FailingStore(InMemoryStore):
    """Every read fails as if the database were unreachable."""

    def _fail(self, *args, **kwargs):
        raise StoreUnavailable("test", ConnectionError("connection refused"))

    async def query_vaccinations(self, *args, **kwargs):
        self._fail()

    async def count_vaccinations(self, *args, **kwargs):
        self._fail()

    async def get_districts(self):
        self._fail()

    async def get_dashboard_summary(self, today):
        self._fail()

    async def get_trend(self, days, today):
        self._fail()

    async def get_vaccine_type_stats(self, today):
        self._fail()

    async def get_district_stats(self):
        self._fail()

    async def get_age_group_stats(self, now):
        self._fail()


def build_scenario(store: InMemoryStore) -> InMemoryStore:
    """Three doses: BCG today and OPV three days ago in district A, BCG ten days ago in B."""
    store.add_district("a", "District A", 1000)
    store.add_district("b", "District B", 0)
    store.add_block("a-1", "Block A1", "a")
    store.add_vaccine_type("bcg", "BCG", 1)
    store.add_vaccine_type("opv", "OPV", 5)
    store.add_child("infant", "Asha", TODAY - timedelta(days=120), "a", gender="female")
    store.add_child("toddler", "Ravi", TODAY - timedelta(days=500), "a", gender="male")
    store.add_child("older", "Meera", TODAY - timedelta(days=365 * 6), "b", gender="female")
    store.add_dose("infant", "bcg", 1, TODAY, "a", block_id="a-1")
    store.add_dose("toddler", "opv", 2, TODAY - timedelta(days=3), "a")
    store.add_dose("older", "bcg", 1, TODAY - timedelta(days=10), "b")
    return store


@pytest.fixture
def store() -> InMemoryStore:
    return build_scenario(InMemoryStore())


@pytest.fixture
def empty_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def failing_store() -> FailingStore:
    return build_scenario(FailingStore())
