from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from main import app, get_now, get_store

from conftest import NOW, TODAY


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_now] = lambda: NOW
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def failing_client(failing_store):
    app.dependency_overrides[get_store] = lambda: failing_store
    app.dependency_overrides[get_now] = lambda: NOW
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_dashboard_snapshot(client):
    response = client.get("/api/dashboard")

    assert response.status_code == 200
    body = response.json()
    assert body["errors"] == []
    assert body["summary"]["total_vaccinations"] == 3
    assert len(body["trend"]) == 7
    assert [g["age_group"] for g in body["age_groups"]] == ["0-1 years", "1-2 years", "2-5 years", "5+ years"]


def test_dashboard_summary_week_filter(client):
    response = client.get("/api/dashboard/summary", params={"date_range": "week"})

    assert response.status_code == 200
    body = response.json()
    assert body["total_vaccinations"] == 2
    assert body["total_beneficiaries"] == 0


def test_dashboard_trend_window(client):
    response = client.get("/api/dashboard/trend", params={"days": 14, "district_id": "b"})

    points = response.json()
    assert len(points) == 14
    assert points[-1]["date"] == TODAY.isoformat()
    assert sum(p["count"] for p in points) == 1


def test_dashboard_trend_rejects_zero_days(client):
    assert client.get("/api/dashboard/trend", params={"days": 0}).status_code == 422


def test_dashboard_districts_top(client):
    response = client.get("/api/dashboard/districts", params={"top": 1})

    assert [d["district_name"] for d in response.json()] == ["District A"]


def test_dashboard_custom_range_with_bad_date(client):
    response = client.get("/api/dashboard/summary", params={"date_range": "custom", "start_date": "yesterday"})
    assert response.status_code == 400


def test_dashboard_recent_pages(client):
    response = client.get("/api/dashboard/recent", params={"page": 1, "page_size": 2})

    body = response.json()
    assert body["total"] == 3
    assert body["total_pages"] == 2
    assert body["data"][0]["beneficiary_name"] == "Asha"


def test_dashboard_failure_sets_error_flag(failing_client):
    body = failing_client.get("/api/dashboard").json()

    assert body["summary"] is None
    assert "summary" in body["errors"]


def test_failed_summary_returns_null(failing_client):
    response = failing_client.get("/api/dashboard/summary")
    assert response.status_code == 200
    assert response.json() is None


def test_district_dashboard_overrides_query_district(client):
    body = client.get("/api/districts/b/dashboard", params={"district_id": "a"}).json()

    assert body["summary"]["total_vaccinations"] == 1
    assert [d["district_name"] for d in body["districts"]] == ["District B"]
    assert [r["beneficiary_name"] for r in body["recent"]] == ["Meera"]


def test_master_data_unavailable(failing_client):
    assert failing_client.get("/api/districts").status_code == 503


def test_blocks_by_district(client):
    assert [b["id"] for b in client.get("/api/blocks", params={"district_id": "a"}).json()] == ["a-1"]


def test_delete_beneficiary_conflict(client, store):
    response = client.delete("/api/beneficiaries/infant")

    assert response.status_code == 409
    assert "infant" in store.beneficiaries


def test_update_beneficiary_rejects_null_district(client, store):
    response = client.put("/api/beneficiaries/infant", json={"district_id": None})

    assert response.status_code == 400
    assert store.beneficiaries["infant"].district_id == "a"


def test_delete_unknown_beneficiary(client):
    assert client.delete("/api/beneficiaries/ghost").status_code == 404


def test_create_beneficiary_and_vaccination(client, store):
    response = client.post("/api/beneficiaries", json={
        "name": "Dev", "date_of_birth": (TODAY - timedelta(days=45)).isoformat(),
        "gender": "male", "district_id": "a",
    })
    assert response.status_code == 201
    beneficiary_id = response.json()["id"]

    response = client.post("/api/vaccinations", json={
        "beneficiary_id": beneficiary_id, "vaccine_type_id": "opv", "dose_number": 1,
        "date_given": TODAY.isoformat(), "district_id": "a", "administered_by": "worker-7",
    })
    assert response.status_code == 201
    assert store.vaccinations[response.json()["id"]].administered_by == "worker-7"


def test_create_vaccination_missing_district(client):
    response = client.post("/api/vaccinations", json={
        "beneficiary_id": "infant", "vaccine_type_id": "opv", "dose_number": 1, "date_given": TODAY.isoformat(),
    })
    assert response.status_code == 422


def test_create_vaccination_beyond_series(client):
    response = client.post("/api/vaccinations", json={
        "beneficiary_id": "infant", "vaccine_type_id": "bcg", "dose_number": 2,
        "date_given": TODAY.isoformat(), "district_id": "a",
    })
    assert response.status_code == 400


def test_list_beneficiaries_search(client):
    body = client.get("/api/beneficiaries", params={"search": "rav"}).json()
    assert [b["name"] for b in body["data"]] == ["Ravi"]


def test_list_vaccinations_paginated(client):
    body = client.get("/api/vaccinations", params={"page": 1, "page_size": 2}).json()

    assert body["total"] == 3
    assert len(body["data"]) == 2
    assert body["data"][0]["vaccine_name"] == "BCG"


def test_report_json(client):
    body = client.get("/api/reports/coverage").json()
    assert body["title"] == "District Coverage Report"
    assert len(body["rows"]) == 2


def test_report_export_csv(client):
    response = client.get("/api/reports/summary/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "summary_report_2026-10-19.csv" in response.headers["content-disposition"]
    assert response.text.splitlines()[0] == "Vaccine,Total Doses,Dose 1,Dose 2,Dose 3,Dose 4"


def test_report_export_empty(client):
    response = client.get("/api/reports/monthly/export", params={"start_date": "2030-01-01"})
    assert response.status_code == 404


def test_report_print_page(client):
    response = client.get("/api/reports/monthly/print")

    assert response.status_code == 200
    assert "Monthly Report" in response.text
    assert "October 2026" in response.text


def test_unknown_report_kind(client):
    assert client.get("/api/reports/weekly").status_code == 422
