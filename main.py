# main.py
from fastapi import FastAPI, Request, HTTPException, Query, Depends
from fastapi.responses import JSONResponse, StreamingResponse, HTMLResponse
from fastapi.templating import Jinja2Templates
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional
import io
import os

from aggregation import DashboardEngine
from config import load_settings, setup_logging
from database import MongoRecordStore, create_client, test_connection
from errors import IntegrityViolation, StoreUnavailable, ValidationFailure
from filters import merge_filters, normalize
from models import (
    BeneficiaryCreate,
    BeneficiaryQuery,
    BeneficiaryUpdate,
    CanonicalFilter,
    DateRange,
    FilterSelection,
    Gender,
    JoinSpec,
    Page,
    VaccinationCreate,
    WriteResult,
)
from records import RecordService
from reports import REPORT_TITLES, ReportKind, build_report, export_filename, parse_report_filters, to_csv, to_html_table
from store import RecordStore
from utils import parse_date, total_pages
from vaccine_data import BLOCKS, DISTRICTS, VACCINE_TYPES

settings = load_settings()

# Create FastAPI app
app = FastAPI(title="Vaccination Coverage Dashboard")
app.state.settings = settings

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # IMPORTANT: Restrict this in production!
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_db_client():
    setup_logging(settings)
    client = create_client(settings)
    store = MongoRecordStore(client[settings.db_name], settings)
    app.state.client = client
    app.state.store = store
    if await test_connection(client) and settings.seed_reference_data:
        await store.seed_reference_data(VACCINE_TYPES, DISTRICTS, BLOCKS)


@app.on_event("shutdown")
async def shutdown_db_client():
    client = getattr(app.state, "client", None)
    if client is not None:
        client.close()


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    return JSONResponse(status_code=503, content={"detail": "Record store unavailable. Please retry."})


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# --- Dependencies ---

def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_now() -> datetime:
    return datetime.now()


def get_engine(store: RecordStore = Depends(get_store), now: datetime = Depends(get_now)) -> DashboardEngine:
    return DashboardEngine(store, now)


def get_records(store: RecordStore = Depends(get_store), now: datetime = Depends(get_now)) -> RecordService:
    return RecordService(store, now.date())


def get_filters(
    date_range: DateRange = "all",
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    district_id: Optional[str] = None,
    vaccine_type_id: Optional[str] = None,
    now: datetime = Depends(get_now),
) -> CanonicalFilter:
    selection = FilterSelection(
        date_range=date_range,
        start_date=parse_date(start_date, "start date"),
        end_date=parse_date(end_date, "end date"),
        district_id=district_id or None,
        vaccine_type_id=vaccine_type_id or None,
    )
    return normalize(selection, now.date())


def _write_response(result: WriteResult, message: str, status_code: int = 200):
    if not result.success:
        not_found = bool(result.error) and "not found" in result.error.lower()
        raise HTTPException(status_code=404 if not_found else 400, detail=result.error or "Write failed")
    return JSONResponse(status_code=status_code, content={"message": message, "id": result.id})


# --- Dashboard API ---

@app.get("/api/dashboard")
async def dashboard(
    days: int = Query(settings.default_trend_days, ge=1, le=366),
    filters: CanonicalFilter = Depends(get_filters),
    engine: DashboardEngine = Depends(get_engine),
):
    """All dashboard widgets in one call; `errors` names the widgets whose data failed to load."""
    return await engine.snapshot(filters, days=days, recent_limit=settings.recent_fetch_limit)


@app.get("/api/dashboard/summary")
async def dashboard_summary(filters: CanonicalFilter = Depends(get_filters), engine: DashboardEngine = Depends(get_engine)):
    return await engine.summary(filters)


@app.get("/api/dashboard/trend")
async def dashboard_trend(
    days: int = Query(settings.default_trend_days, ge=1, le=366),
    filters: CanonicalFilter = Depends(get_filters),
    engine: DashboardEngine = Depends(get_engine),
):
    return await engine.trend(filters, days)


@app.get("/api/dashboard/vaccine-types")
async def dashboard_vaccine_types(filters: CanonicalFilter = Depends(get_filters), engine: DashboardEngine = Depends(get_engine)):
    return await engine.vaccine_types(filters)


@app.get("/api/dashboard/districts")
async def dashboard_districts(
    top: Optional[int] = Query(None, ge=1),
    filters: CanonicalFilter = Depends(get_filters),
    engine: DashboardEngine = Depends(get_engine),
):
    stats = await engine.districts(filters)
    return stats[:top] if top else stats


@app.get("/api/dashboard/age-groups")
async def dashboard_age_groups(filters: CanonicalFilter = Depends(get_filters), engine: DashboardEngine = Depends(get_engine)):
    return await engine.age_groups(filters)


@app.get("/api/dashboard/recent")
async def dashboard_recent(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.recent_page_size, ge=1, le=100),
    filters: CanonicalFilter = Depends(get_filters),
    engine: DashboardEngine = Depends(get_engine),
):
    return await engine.recent_page(filters, page, page_size, settings.recent_fetch_limit)


@app.get("/api/districts/{district_id}/dashboard")
async def district_dashboard(
    district_id: str,
    days: int = Query(settings.default_trend_days, ge=1, le=366),
    filters: CanonicalFilter = Depends(get_filters),
    engine: DashboardEngine = Depends(get_engine),
):
    """Dashboard scoped to one district; the path district overrides any district_id query value."""
    scoped = merge_filters(filters, CanonicalFilter(district_id=district_id))
    return await engine.snapshot(scoped, days=days, recent_limit=settings.recent_fetch_limit)


# --- Master data ---

@app.get("/api/districts")
async def list_districts(store: RecordStore = Depends(get_store)):
    return await store.get_districts()


@app.get("/api/blocks")
async def list_blocks(district_id: Optional[str] = None, store: RecordStore = Depends(get_store)):
    return await store.get_blocks(district_id or None)


@app.get("/api/vaccine-types")
async def list_vaccine_types(store: RecordStore = Depends(get_store)):
    return await store.get_vaccine_types()


# --- Beneficiaries ---

@app.get("/api/beneficiaries")
async def list_beneficiaries(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.list_page_size, ge=1, le=100),
    search: Optional[str] = None,
    district_id: Optional[str] = None,
    gender: Optional[Gender] = None,
    store: RecordStore = Depends(get_store),
):
    query = BeneficiaryQuery(search=search or None, district_id=district_id or None, gender=gender)
    return await store.query_beneficiaries(query, page, page_size)


@app.get("/api/beneficiaries/{beneficiary_id}")
async def get_beneficiary(beneficiary_id: str, store: RecordStore = Depends(get_store)):
    beneficiary = await store.get_beneficiary(beneficiary_id)
    if beneficiary is None:
        raise HTTPException(status_code=404, detail="Beneficiary not found")
    return beneficiary


@app.post("/api/beneficiaries")
async def add_beneficiary(data: BeneficiaryCreate, records: RecordService = Depends(get_records)):
    result = await records.add_beneficiary(data)
    return _write_response(result, "Beneficiary added successfully", status_code=201)


@app.put("/api/beneficiaries/{beneficiary_id}")
async def update_beneficiary(beneficiary_id: str, data: BeneficiaryUpdate, records: RecordService = Depends(get_records)):
    result = await records.update_beneficiary(beneficiary_id, data)
    return _write_response(result, "Beneficiary updated successfully")


@app.delete("/api/beneficiaries/{beneficiary_id}")
async def delete_beneficiary(beneficiary_id: str, records: RecordService = Depends(get_records)):
    try:
        result = await records.delete_beneficiary(beneficiary_id)
    except IntegrityViolation as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _write_response(result, "Beneficiary deleted successfully")


# --- Vaccinations ---

@app.get("/api/vaccinations")
async def list_vaccinations(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.list_page_size, ge=1, le=100),
    filters: CanonicalFilter = Depends(get_filters),
    store: RecordStore = Depends(get_store),
):
    query = filters.to_query()
    total = await store.count_vaccinations(query)
    rows = await store.query_vaccinations(
        query,
        JoinSpec(beneficiary=True, vaccine_type=True, district=True, block=True),
        limit=page_size,
        offset=(page - 1) * page_size,
        newest_first=True,
    )
    return Page(data=rows, total=total, page=page, page_size=page_size, total_pages=total_pages(total, page_size))


@app.get("/api/vaccinations/{vaccination_id}")
async def get_vaccination(vaccination_id: str, store: RecordStore = Depends(get_store)):
    vaccination = await store.get_vaccination(vaccination_id)
    if vaccination is None:
        raise HTTPException(status_code=404, detail="Vaccination not found")
    return vaccination


@app.post("/api/vaccinations")
async def add_vaccination(data: VaccinationCreate, records: RecordService = Depends(get_records)):
    result = await records.add_vaccination(data)
    return _write_response(result, "Vaccination recorded successfully", status_code=201)


@app.delete("/api/vaccinations/{vaccination_id}")
async def delete_vaccination(vaccination_id: str, records: RecordService = Depends(get_records)):
    result = await records.delete_vaccination(vaccination_id)
    return _write_response(result, "Vaccination deleted successfully")


# --- Reports ---

@app.get("/api/reports/{kind}")
async def get_report(
    kind: ReportKind,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    district_id: Optional[str] = None,
    engine: DashboardEngine = Depends(get_engine),
):
    report = await build_report(kind, engine, parse_report_filters(start_date, end_date, district_id))
    return {"title": REPORT_TITLES[kind], "kind": kind.value, "rows": report.rows}


@app.get("/api/reports/{kind}/export")
async def export_report(
    kind: ReportKind,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    district_id: Optional[str] = None,
    engine: DashboardEngine = Depends(get_engine),
):
    report = await build_report(kind, engine, parse_report_filters(start_date, end_date, district_id))
    if not report.rows:
        raise HTTPException(status_code=404, detail="No records found for the given criteria.")
    stream = io.StringIO(to_csv(report))
    return StreamingResponse(stream, media_type="text/csv", headers={
        "Content-Disposition": f"attachment; filename={export_filename(kind, engine.today)}"
    })


@app.get("/api/reports/{kind}/print", response_class=HTMLResponse)
async def print_report(
    request: Request,
    kind: ReportKind,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    district_id: Optional[str] = None,
    engine: DashboardEngine = Depends(get_engine),
):
    filters = parse_report_filters(start_date, end_date, district_id)
    report = await build_report(kind, engine, filters)
    return templates.TemplateResponse(request, "report_print.html", {
        "title": REPORT_TITLES[kind],
        "generated_on": engine.today.isoformat(),
        "filters": filters,
        "table": to_html_table(report),
        "empty": not report.rows,
    })
