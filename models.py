from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime, date
import datetime as dt

Gender = Literal["male", "female", "other"]
DateRange = Literal["all", "today", "week", "month", "custom"]


# --- Reference data ---

class VaccineType(BaseModel):
    id: str
    name: str
    total_doses: int = Field(..., ge=1)
    description: Optional[str] = None
    min_age_months: Optional[int] = None
    max_age_months: Optional[int] = None


class District(BaseModel):
    id: str
    name: str
    state: Optional[str] = None
    target_population: int = Field(0, ge=0)


class Block(BaseModel):
    id: str
    name: str
    district_id: str
    target_population: int = Field(0, ge=0)


# --- Beneficiaries ---

class BeneficiaryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    date_of_birth: date
    gender: Gender
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    address: Optional[str] = None
    district_id: str = Field(..., min_length=1)
    block_id: Optional[str] = None
    village: Optional[str] = None


class BeneficiaryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    address: Optional[str] = None
    district_id: Optional[str] = Field(None, min_length=1)
    block_id: Optional[str] = None
    village: Optional[str] = None


class Beneficiary(BeneficiaryCreate):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    district_name: Optional[str] = None


class BeneficiaryQuery(BaseModel):
    search: Optional[str] = None
    district_id: Optional[str] = None
    gender: Optional[Gender] = None


# --- Vaccinations ---

class VaccinationCreate(BaseModel):
    beneficiary_id: str = Field(..., min_length=1)
    vaccine_type_id: str = Field(..., min_length=1)
    dose_number: int = Field(..., ge=1)
    date_given: date
    district_id: str = Field(..., min_length=1)
    block_id: Optional[str] = None
    village: Optional[str] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    administered_by: Optional[str] = None


class VaccinationRow(VaccinationCreate):
    """A stored vaccination, optionally carrying fields of joined records."""
    id: str
    created_at: Optional[datetime] = None
    beneficiary_name: Optional[str] = None
    beneficiary_date_of_birth: Optional[date] = None
    beneficiary_gender: Optional[Gender] = None
    vaccine_name: Optional[str] = None
    district_name: Optional[str] = None
    district_target_population: Optional[int] = None
    block_name: Optional[str] = None


class VaccinationQuery(BaseModel):
    """Store-level filter: inclusive date range plus equality on references."""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    district_id: Optional[str] = None
    vaccine_type_id: Optional[str] = None
    beneficiary_id: Optional[str] = None


class JoinSpec(BaseModel):
    beneficiary: bool = False
    vaccine_type: bool = False
    district: bool = False
    block: bool = False


class WriteResult(BaseModel):
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class Page(BaseModel):
    data: list
    total: int
    page: int
    page_size: int
    total_pages: int


# --- Filters ---

class FilterSelection(BaseModel):
    """What the dashboard filter bar submits; blanks mean "not selected"."""
    date_range: DateRange = "all"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    district_id: Optional[str] = None
    vaccine_type_id: Optional[str] = None


class CanonicalFilter(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    district_id: Optional[str] = None
    vaccine_type_id: Optional[str] = None

    model_config = {"frozen": True}

    def to_query(self) -> VaccinationQuery:
        return VaccinationQuery(
            date_from=self.start_date,
            date_to=self.end_date,
            district_id=self.district_id,
            vaccine_type_id=self.vaccine_type_id,
        )


# --- Dashboard results ---

class DashboardSummary(BaseModel):
    total_vaccinations: int = 0
    today_count: int = 0
    week_count: int = 0
    month_count: int = 0
    total_beneficiaries: int = 0
    total_districts: int = 0


class TrendPoint(BaseModel):
    date: dt.date
    count: int


class VaccineTypeStat(BaseModel):
    vaccine_name: str
    total_count: int
    week_count: int
    today_count: int


class DistrictStat(BaseModel):
    district_name: str
    target_population: int
    total_vaccinations: int
    coverage_percentage: float


class AgeGroupStat(BaseModel):
    age_group: str
    count: int


class RecentVaccination(BaseModel):
    id: str
    beneficiary_name: str
    vaccine_name: str
    dose_number: int
    date_given: date
    district_name: str
    block_name: str = ""


class DashboardSnapshot(BaseModel):
    summary: Optional[DashboardSummary] = None
    trend: List[TrendPoint] = []
    vaccine_types: List[VaccineTypeStat] = []
    districts: List[DistrictStat] = []
    age_groups: List[AgeGroupStat] = []
    recent: List[RecentVaccination] = []
    # sections whose store request failed; their values above are empty
    errors: List[str] = []


# --- Report rows ---

class ReportFilters(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    district_id: Optional[str] = None


class VaccineSummaryRow(BaseModel):
    vaccine_name: str
    total_doses: int
    dose_1: int = 0
    dose_2: int = 0
    dose_3: int = 0
    dose_4: int = 0


class DistrictCoverageRow(BaseModel):
    district_name: str
    target_population: int
    total_vaccinations: int
    unique_beneficiaries: int
    coverage_percentage: float


class MonthlyReportRow(BaseModel):
    month: str
    total_vaccinations: int
    unique_beneficiaries: int
    male_count: int
    female_count: int
