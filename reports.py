"""Flat tables for the three downloadable reports (CSV or printable HTML)."""
import io
from datetime import date, datetime
from enum import Enum
from typing import List, Literal, Optional, Union

import pandas as pd
from pydantic import BaseModel

from aggregation import DashboardEngine
from models import DistrictCoverageRow, MonthlyReportRow, ReportFilters, VaccineSummaryRow
from utils import parse_date


class ReportKind(str, Enum):
    SUMMARY = "summary"
    COVERAGE = "coverage"
    MONTHLY = "monthly"


REPORT_TITLES = {
    ReportKind.SUMMARY: "Vaccination Summary Report",
    ReportKind.COVERAGE: "District Coverage Report",
    ReportKind.MONTHLY: "Monthly Report",
}


class SummaryReport(BaseModel):
    kind: Literal[ReportKind.SUMMARY] = ReportKind.SUMMARY
    rows: List[VaccineSummaryRow]


class CoverageReport(BaseModel):
    kind: Literal[ReportKind.COVERAGE] = ReportKind.COVERAGE
    rows: List[DistrictCoverageRow]


class MonthlyReport(BaseModel):
    kind: Literal[ReportKind.MONTHLY] = ReportKind.MONTHLY
    rows: List[MonthlyReportRow]


Report = Union[SummaryReport, CoverageReport, MonthlyReport]


def parse_report_filters(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    district_id: Optional[str] = None,
) -> ReportFilters:
    return ReportFilters(
        start_date=parse_date(start_date, "start date"),
        end_date=parse_date(end_date, "end date"),
        district_id=district_id or None,
    )


async def build_report(kind: ReportKind, engine: DashboardEngine, filters: ReportFilters) -> Report:
    if kind is ReportKind.SUMMARY:
        return SummaryReport(rows=await engine.vaccine_summary_report(filters))
    if kind is ReportKind.COVERAGE:
        return CoverageReport(rows=await engine.district_coverage_report(filters))
    if kind is ReportKind.MONTHLY:
        return MonthlyReport(rows=await engine.monthly_report(filters))
    raise ValueError(f"Unknown report kind: {kind}")


def format_month(month: str) -> str:
    return datetime.strptime(month, "%Y-%m").strftime("%B %Y")


def to_table(report: Report) -> pd.DataFrame:
    """Every cell is a display string; column sets are fixed per report kind."""
    if isinstance(report, SummaryReport):
        columns = ["Vaccine", "Total Doses", "Dose 1", "Dose 2", "Dose 3", "Dose 4"]
        records = [
            [r.vaccine_name, str(r.total_doses), str(r.dose_1), str(r.dose_2), str(r.dose_3), str(r.dose_4)]
            for r in report.rows
        ]
    elif isinstance(report, CoverageReport):
        columns = ["District", "Target Population", "Total Vaccinations", "Unique Beneficiaries", "Coverage %"]
        records = [
            [
                r.district_name,
                str(r.target_population),
                str(r.total_vaccinations),
                str(r.unique_beneficiaries),
                f"{r.coverage_percentage:.2f}%",
            ]
            for r in report.rows
        ]
    elif isinstance(report, MonthlyReport):
        columns = ["Month", "Total Vaccinations", "Unique Beneficiaries", "Male", "Female"]
        records = [
            [
                format_month(r.month),
                str(r.total_vaccinations),
                str(r.unique_beneficiaries),
                str(r.male_count),
                str(r.female_count),
            ]
            for r in report.rows
        ]
    else:
        raise TypeError(f"Unsupported report: {type(report).__name__}")
    return pd.DataFrame(records, columns=columns)


def to_csv(report: Report) -> str:
    stream = io.StringIO()
    to_table(report).to_csv(stream, index=False)
    return stream.getvalue()


def to_html_table(report: Report) -> str:
    return to_table(report).to_html(index=False, border=0, classes="report-table")


def export_filename(kind: ReportKind, today: date) -> str:
    return f"{kind.value}_report_{today.isoformat()}.csv"
