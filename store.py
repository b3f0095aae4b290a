from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional

from models import (
    AgeGroupStat,
    Beneficiary,
    BeneficiaryCreate,
    BeneficiaryQuery,
    BeneficiaryUpdate,
    Block,
    DashboardSummary,
    District,
    DistrictStat,
    JoinSpec,
    Page,
    TrendPoint,
    VaccinationCreate,
    VaccinationQuery,
    VaccinationRow,
    VaccineType,
    VaccineTypeStat,
)


class RecordStore(ABC):
    """
    Read/write access to beneficiaries, vaccinations and reference data.

    Reads raise ``errors.StoreUnavailable`` when the backend fails. Writes
    report failure through ``WriteResult`` instead. The ``get_*_stats``
    family exposes aggregates the backend computes itself; their output has
    the same shape as the engine's in-process computation.
    """

    # --- Vaccinations ---

    @abstractmethod
    async def query_vaccinations(
        self,
        query: VaccinationQuery,
        join: Optional[JoinSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> List[VaccinationRow]:
        """newest_first orders by date_given then created_at, both descending."""

    @abstractmethod
    async def count_vaccinations(self, query: VaccinationQuery) -> int:
        ...

    @abstractmethod
    async def get_vaccination(self, vaccination_id: str) -> Optional[VaccinationRow]:
        ...

    @abstractmethod
    async def insert_vaccination(self, vaccination: VaccinationCreate):
        ...

    @abstractmethod
    async def delete_vaccination(self, vaccination_id: str):
        ...

    # --- Beneficiaries ---

    @abstractmethod
    async def query_beneficiaries(self, query: BeneficiaryQuery, page: int, page_size: int) -> Page:
        ...

    @abstractmethod
    async def get_beneficiary(self, beneficiary_id: str) -> Optional[Beneficiary]:
        ...

    @abstractmethod
    async def insert_beneficiary(self, beneficiary: BeneficiaryCreate):
        ...

    @abstractmethod
    async def update_beneficiary(self, beneficiary_id: str, changes: BeneficiaryUpdate):
        ...

    @abstractmethod
    async def delete_beneficiary(self, beneficiary_id: str):
        ...

    # --- Reference data ---

    @abstractmethod
    async def get_districts(self) -> List[District]:
        ...

    @abstractmethod
    async def get_blocks(self, district_id: Optional[str] = None) -> List[Block]:
        ...

    @abstractmethod
    async def get_vaccine_types(self) -> List[VaccineType]:
        ...

    async def get_district(self, district_id: str) -> Optional[District]:
        for district in await self.get_districts():
            if district.id == district_id:
                return district
        return None

    async def get_vaccine_type(self, vaccine_type_id: str) -> Optional[VaccineType]:
        for vaccine_type in await self.get_vaccine_types():
            if vaccine_type.id == vaccine_type_id:
                return vaccine_type
        return None

    # --- Precomputed aggregates ---

    @abstractmethod
    async def get_dashboard_summary(self, today: date) -> DashboardSummary:
        ...

    @abstractmethod
    async def get_trend(self, days: int, today: date) -> List[TrendPoint]:
        ...

    @abstractmethod
    async def get_vaccine_type_stats(self, today: date) -> List[VaccineTypeStat]:
        ...

    @abstractmethod
    async def get_district_stats(self) -> List[DistrictStat]:
        ...

    @abstractmethod
    async def get_age_group_stats(self, now: datetime) -> List[AgeGroupStat]:
        ...
