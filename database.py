import logging
import re
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from config import Settings
from errors import StoreUnavailable
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
    WriteResult,
)
from store import RecordStore
from utils import AGE_GROUPS, DAYS_PER_YEAR, days_ago, total_pages

logger = logging.getLogger(__name__)

MS_PER_YEAR = DAYS_PER_YEAR * 86400 * 1000


def create_client(settings: Settings) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(settings.mongodb_uri)


async def test_connection(client: AsyncIOMotorClient) -> bool:
    try:
        await client.server_info()
        logger.info("MongoDB connection successful")
        return True
    except PyMongoError as e:
        logger.error("MongoDB connection failed: %s", e)
        return False


@contextmanager
def store_errors(operation: str):
    try:
        yield
    except PyMongoError as e:
        logger.error("Store operation %s failed: %s", operation, e)
        raise StoreUnavailable(operation, e) from e


def _from_doc(doc: dict) -> dict:
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    return doc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- Pipeline builders ---

def vaccination_match(query: VaccinationQuery) -> dict:
    match = {}
    if query.date_from or query.date_to:
        date_range = {}
        if query.date_from:
            date_range["$gte"] = query.date_from.isoformat()
        if query.date_to:
            date_range["$lte"] = query.date_to.isoformat()
        match["date_given"] = date_range
    for field in ("district_id", "vaccine_type_id", "beneficiary_id"):
        value = getattr(query, field)
        if value:
            match[field] = value
    return match


def lookup_stages(join: JoinSpec, settings: Settings) -> List[dict]:
    targets = [
        (join.beneficiary, settings.beneficiary_collection, "beneficiary_id", "_beneficiary"),
        (join.vaccine_type, settings.vaccine_type_collection, "vaccine_type_id", "_vaccine_type"),
        (join.district, settings.district_collection, "district_id", "_district"),
        (join.block, settings.block_collection, "block_id", "_block"),
    ]
    stages = []
    for wanted, collection, local_field, alias in targets:
        if not wanted:
            continue
        stages.append({"$lookup": {
            "from": collection,
            "localField": local_field,
            "foreignField": "_id",
            "as": alias,
        }})
        stages.append({"$unwind": {"path": f"${alias}", "preserveNullAndEmptyArrays": True}})
    return stages


def build_vaccination_pipeline(
    query: VaccinationQuery,
    join: JoinSpec,
    settings: Settings,
    limit: Optional[int] = None,
    offset: int = 0,
    newest_first: bool = False,
) -> List[dict]:
    direction = -1 if newest_first else 1
    pipeline = [
        {"$match": vaccination_match(query)},
        {"$sort": {"date_given": direction, "created_at": direction, "_id": direction}},
    ]
    if offset:
        pipeline.append({"$skip": offset})
    if limit is not None:
        pipeline.append({"$limit": limit})
    # join after paging so lookups only run for the returned page
    pipeline.extend(lookup_stages(join, settings))
    return pipeline


def row_from_doc(doc: dict) -> VaccinationRow:
    row = _from_doc(doc)
    beneficiary = row.pop("_beneficiary", None) or {}
    vaccine_type = row.pop("_vaccine_type", None) or {}
    district = row.pop("_district", None) or {}
    block = row.pop("_block", None) or {}
    row["beneficiary_name"] = beneficiary.get("name")
    row["beneficiary_date_of_birth"] = beneficiary.get("date_of_birth")
    row["beneficiary_gender"] = beneficiary.get("gender")
    row["vaccine_name"] = vaccine_type.get("name")
    row["district_name"] = district.get("name")
    row["district_target_population"] = district.get("target_population")
    row["block_name"] = block.get("name")
    return VaccinationRow(**row)


def summary_pipeline(today: date) -> List[dict]:
    today_iso = today.isoformat()
    week_start = days_ago(today, 7).isoformat()
    month_start = days_ago(today, 30).isoformat()
    return [{"$facet": {
        "total": [{"$count": "n"}],
        "today": [{"$match": {"date_given": today_iso}}, {"$count": "n"}],
        "week": [{"$match": {"date_given": {"$gte": week_start}}}, {"$count": "n"}],
        "month": [{"$match": {"date_given": {"$gte": month_start}}}, {"$count": "n"}],
    }}]


def trend_pipeline(days: int, today: date) -> List[dict]:
    start = days_ago(today, days - 1)
    return [
        {"$match": {"date_given": {"$gte": start.isoformat(), "$lte": today.isoformat()}}},
        {"$group": {"_id": "$date_given", "count": {"$sum": 1}}},
    ]


def vaccine_type_stats_pipeline(today: date, settings: Settings) -> List[dict]:
    today_iso = today.isoformat()
    week_start = days_ago(today, 7).isoformat()
    return [
        {"$group": {
            "_id": "$vaccine_type_id",
            "total_count": {"$sum": 1},
            "week_count": {"$sum": {"$cond": [{"$gte": ["$date_given", week_start]}, 1, 0]}},
            "today_count": {"$sum": {"$cond": [{"$eq": ["$date_given", today_iso]}, 1, 0]}},
        }},
        {"$lookup": {
            "from": settings.vaccine_type_collection,
            "localField": "_id",
            "foreignField": "_id",
            "as": "vaccine_type",
        }},
        {"$unwind": "$vaccine_type"},
        {"$group": {
            "_id": "$vaccine_type.name",
            "total_count": {"$sum": "$total_count"},
            "week_count": {"$sum": "$week_count"},
            "today_count": {"$sum": "$today_count"},
        }},
        {"$sort": {"total_count": -1, "_id": 1}},
    ]


def district_stats_pipeline(settings: Settings) -> List[dict]:
    return [
        {"$group": {"_id": "$district_id", "total_vaccinations": {"$sum": 1}}},
        {"$lookup": {
            "from": settings.district_collection,
            "localField": "_id",
            "foreignField": "_id",
            "as": "district",
        }},
        {"$unwind": "$district"},
        {"$group": {
            "_id": "$district.name",
            "target_population": {"$first": {"$ifNull": ["$district.target_population", 0]}},
            "total_vaccinations": {"$sum": "$total_vaccinations"},
        }},
        {"$addFields": {"coverage_percentage": {"$cond": [
            {"$eq": ["$target_population", 0]},
            0,
            {"$divide": [
                {"$floor": {"$add": [
                    {"$multiply": [{"$divide": ["$total_vaccinations", "$target_population"]}, 10000]},
                    0.5,
                ]}},
                100,
            ]},
        ]}}},
        {"$sort": {"total_vaccinations": -1, "_id": 1}},
    ]


def age_group_pipeline(now: datetime, settings: Settings) -> List[dict]:
    branches = []
    for label, _, high in AGE_GROUPS:
        if high is not None:
            branches.append({"case": {"$lt": ["$age", high]}, "then": label})
    return [
        {"$lookup": {
            "from": settings.beneficiary_collection,
            "localField": "beneficiary_id",
            "foreignField": "_id",
            "as": "beneficiary",
        }},
        {"$unwind": "$beneficiary"},
        {"$addFields": {"age": {"$divide": [
            {"$subtract": [now, {"$dateFromString": {"dateString": "$beneficiary.date_of_birth"}}]},
            MS_PER_YEAR,
        ]}}},
        {"$group": {
            "_id": {"$switch": {"branches": branches, "default": AGE_GROUPS[-1][0]}},
            "count": {"$sum": 1},
        }},
    ]


class MongoRecordStore(RecordStore):
    def __init__(self, db, settings: Settings):
        self.settings = settings
        self.beneficiaries = db[settings.beneficiary_collection]
        self.vaccinations = db[settings.vaccination_collection]
        self.districts = db[settings.district_collection]
        self.blocks = db[settings.block_collection]
        self.vaccine_types = db[settings.vaccine_type_collection]

    # --- Vaccinations ---

    async def query_vaccinations(self, query, join=None, limit=None, offset=0, newest_first=False):
        pipeline = build_vaccination_pipeline(
            query, join or JoinSpec(), self.settings,
            limit=limit, offset=offset, newest_first=newest_first,
        )
        with store_errors("query_vaccinations"):
            docs = await self.vaccinations.aggregate(pipeline).to_list(None)
        return [row_from_doc(doc) for doc in docs]

    async def count_vaccinations(self, query):
        with store_errors("count_vaccinations"):
            return await self.vaccinations.count_documents(vaccination_match(query))

    async def get_vaccination(self, vaccination_id):
        with store_errors("get_vaccination"):
            doc = await self.vaccinations.find_one({"_id": vaccination_id})
        return row_from_doc(doc) if doc else None

    async def insert_vaccination(self, vaccination: VaccinationCreate) -> WriteResult:
        doc = vaccination.model_dump(mode="json")
        doc["_id"] = str(uuid.uuid4())
        doc["created_at"] = _now_iso()
        try:
            result = await self.vaccinations.insert_one(doc)
        except PyMongoError as e:
            logger.error("Error adding vaccination: %s", e)
            return WriteResult(success=False, error=str(e))
        return WriteResult(success=True, id=str(result.inserted_id))

    async def delete_vaccination(self, vaccination_id) -> WriteResult:
        try:
            result = await self.vaccinations.delete_one({"_id": vaccination_id})
        except PyMongoError as e:
            logger.error("Error deleting vaccination %s: %s", vaccination_id, e)
            return WriteResult(success=False, error=str(e))
        if result.deleted_count == 0:
            return WriteResult(success=False, error="Vaccination not found")
        return WriteResult(success=True, id=vaccination_id)

    # --- Beneficiaries ---

    async def query_beneficiaries(self, query: BeneficiaryQuery, page: int, page_size: int) -> Page:
        match = {}
        if query.search:
            match["name"] = {"$regex": re.escape(query.search), "$options": "i"}
        if query.district_id:
            match["district_id"] = query.district_id
        if query.gender:
            match["gender"] = query.gender

        with store_errors("query_beneficiaries"):
            total = await self.beneficiaries.count_documents(match)
            district_names = {d.id: d.name for d in await self.get_districts()}
            cursor = (
                self.beneficiaries.find(match)
                .sort([("created_at", -1), ("_id", 1)])
                .skip((page - 1) * page_size)
                .limit(page_size)
            )
            records = []
            async for doc in cursor:
                record = _from_doc(doc)
                record["district_name"] = district_names.get(record.get("district_id"), "")
                records.append(Beneficiary(**record))
        return Page(
            data=records,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages(total, page_size),
        )

    async def get_beneficiary(self, beneficiary_id):
        with store_errors("get_beneficiary"):
            doc = await self.beneficiaries.find_one({"_id": beneficiary_id})
        return Beneficiary(**_from_doc(doc)) if doc else None

    async def insert_beneficiary(self, beneficiary: BeneficiaryCreate) -> WriteResult:
        doc = beneficiary.model_dump(mode="json")
        doc["_id"] = str(uuid.uuid4())
        doc["created_at"] = _now_iso()
        try:
            result = await self.beneficiaries.insert_one(doc)
        except PyMongoError as e:
            logger.error("Error adding beneficiary: %s", e)
            return WriteResult(success=False, error=str(e))
        return WriteResult(success=True, id=str(result.inserted_id))

    async def update_beneficiary(self, beneficiary_id, changes: BeneficiaryUpdate) -> WriteResult:
        update = changes.model_dump(mode="json", exclude_unset=True)
        update["updated_at"] = _now_iso()
        try:
            result = await self.beneficiaries.update_one({"_id": beneficiary_id}, {"$set": update})
        except PyMongoError as e:
            logger.error("Error updating beneficiary %s: %s", beneficiary_id, e)
            return WriteResult(success=False, error=str(e))
        if result.matched_count == 0:
            return WriteResult(success=False, error="Beneficiary not found")
        return WriteResult(success=True, id=beneficiary_id)

    async def delete_beneficiary(self, beneficiary_id) -> WriteResult:
        try:
            result = await self.beneficiaries.delete_one({"_id": beneficiary_id})
        except PyMongoError as e:
            logger.error("Error deleting beneficiary %s: %s", beneficiary_id, e)
            return WriteResult(success=False, error=str(e))
        if result.deleted_count == 0:
            return WriteResult(success=False, error="Beneficiary not found")
        return WriteResult(success=True, id=beneficiary_id)

    # --- Reference data ---

    async def _find_sorted(self, collection, operation, query=None):
        docs = []
        with store_errors(operation):
            async for doc in collection.find(query or {}).sort("name", 1):
                docs.append(_from_doc(doc))
        return docs

    async def get_districts(self):
        return [District(**d) for d in await self._find_sorted(self.districts, "get_districts")]

    async def get_blocks(self, district_id=None):
        query = {"district_id": district_id} if district_id else None
        return [Block(**b) for b in await self._find_sorted(self.blocks, "get_blocks", query)]

    async def get_vaccine_types(self):
        return [VaccineType(**v) for v in await self._find_sorted(self.vaccine_types, "get_vaccine_types")]

    async def get_district(self, district_id):
        with store_errors("get_district"):
            doc = await self.districts.find_one({"_id": district_id})
        return District(**_from_doc(doc)) if doc else None

    async def get_vaccine_type(self, vaccine_type_id):
        with store_errors("get_vaccine_type"):
            doc = await self.vaccine_types.find_one({"_id": vaccine_type_id})
        return VaccineType(**_from_doc(doc)) if doc else None

    # --- Precomputed aggregates ---

    async def get_dashboard_summary(self, today):
        with store_errors("get_dashboard_summary"):
            facets = (await self.vaccinations.aggregate(summary_pipeline(today)).to_list(None))[0]
            total_beneficiaries = await self.beneficiaries.count_documents({})
            total_districts = await self.districts.count_documents({})

        def n(key):
            return facets[key][0]["n"] if facets.get(key) else 0

        return DashboardSummary(
            total_vaccinations=n("total"),
            today_count=n("today"),
            week_count=n("week"),
            month_count=n("month"),
            total_beneficiaries=total_beneficiaries,
            total_districts=total_districts,
        )

    async def get_trend(self, days, today):
        with store_errors("get_trend"):
            results = await self.vaccinations.aggregate(trend_pipeline(days, today)).to_list(None)
        counts = {doc["_id"]: doc["count"] for doc in results}
        window = [days_ago(today, offset) for offset in range(days - 1, -1, -1)]
        return [TrendPoint(date=day, count=counts.get(day.isoformat(), 0)) for day in window]

    async def get_vaccine_type_stats(self, today):
        pipeline = vaccine_type_stats_pipeline(today, self.settings)
        with store_errors("get_vaccine_type_stats"):
            results = await self.vaccinations.aggregate(pipeline).to_list(None)
        return [
            VaccineTypeStat(
                vaccine_name=doc["_id"],
                total_count=doc["total_count"],
                week_count=doc["week_count"],
                today_count=doc["today_count"],
            )
            for doc in results
        ]

    async def get_district_stats(self):
        with store_errors("get_district_stats"):
            results = await self.vaccinations.aggregate(district_stats_pipeline(self.settings)).to_list(None)
        return [
            DistrictStat(
                district_name=doc["_id"],
                target_population=doc["target_population"],
                total_vaccinations=doc["total_vaccinations"],
                coverage_percentage=doc["coverage_percentage"],
            )
            for doc in results
        ]

    async def get_age_group_stats(self, now):
        with store_errors("get_age_group_stats"):
            results = await self.vaccinations.aggregate(age_group_pipeline(now, self.settings)).to_list(None)
        counts = {doc["_id"]: doc["count"] for doc in results}
        return [AgeGroupStat(age_group=label, count=counts.get(label, 0)) for label, _, _ in AGE_GROUPS]

    # --- Seeding ---

    async def seed_reference_data(self, vaccine_types, districts, blocks) -> bool:
        """Insert master data when the reference collections are empty."""
        with store_errors("seed_reference_data"):
            if await self.districts.count_documents({}) > 0:
                return False
            await self.vaccine_types.insert_many([{"_id": v["id"], **_without_id(v)} for v in vaccine_types])
            await self.districts.insert_many([{"_id": d["id"], **_without_id(d)} for d in districts])
            await self.blocks.insert_many([{"_id": b["id"], **_without_id(b)} for b in blocks])
        logger.info(
            "Seeded %d vaccine types, %d districts, %d blocks",
            len(vaccine_types), len(districts), len(blocks),
        )
        return True


def _without_id(record: dict) -> dict:
    return {k: v for k, v in record.items() if k != "id"}
