# SPDX-License-Identifier: Apache-2.0
"""
End-to-end tests for the HTTP API in controller.py, run through the Flask
test client against a temporary SQLite database.
"""
import io

import pytest
from openpyxl import Workbook

from salesboard.constants import TEMPLATE_HEADERS


def _payload(date, **overrides):
    payload = {
        "date": date,
        "totalSale": 1000,
        "totalSaleGmv": 800,
        "gmvSaleLive": 300,
        "gmvAdsSpend": 100,
        "gmvLiveAdsSpend": 40,
        "ttamSpendAds": 50,
        "ttamImpressions": 10000,
        "visitor": 500,
        "customers": 25,
    }
    payload.update(overrides)
    return payload


def _seed_records(client, headers, dates, **overrides):
    for date in dates:
        response = client.post("/api/records", json=_payload(date, **overrides), headers=headers)
        assert response.status_code == 200, response.get_data(as_text=True)


def _january_workbook() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(TEMPLATE_HEADERS)
    sheet.append(["01/01/2026", 2000, 1600, 600, 80, 200, 100, 20000, 1000, 50])
    sheet.append(["02/01/2026", 2000, 1600, 600, 80, 200, 100, 20000, 1000, 50])
    sheet.append(["15/02/2026", 2000, 1600, 600, 80, 200, 100, 20000, 1000, 50])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _upload(client, headers, path, content=None):
    data = {"month": "2026-01", "file": (io.BytesIO(content or _january_workbook()), "january.xlsx")}
    return client.post(path, data=data, headers=headers, content_type="multipart/form-data")


# ---------------------------------------------------------------------------
# Health and auth
# ---------------------------------------------------------------------------

class TestAuth:
    def test_health_is_public(self, app_client):
        response = app_client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json() == {"status": "ok"}

    def test_login(self, app_client):
        response = app_client.post("/api/auth/login", json={"username": "admin", "password": "password123"})
        body = response.get_json()
        assert response.status_code == 200
        assert body["token"]
        assert body["user"]["role"] == "ADMIN"

    def test_login_wrong_password(self, app_client):
        response = app_client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
        assert response.status_code == 401
        assert response.get_json()["message"] == "Invalid credentials"

    def test_missing_token(self, app_client):
        response = app_client.get("/api/records")
        assert response.status_code == 401
        assert response.get_json()["code"] == "unauthorized"

    def test_invalid_token(self, app_client):
        response = app_client.get("/api/records", headers={"Authorization": "Bearer forged"})
        assert response.status_code == 403

    def test_client_cannot_write(self, client_headers, app_client):
        response = app_client.post("/api/records", json=_payload("2026-01-01"), headers=client_headers)
        assert response.status_code == 403
        assert response.get_json()["message"] == "Admin access required"

    def test_client_can_read(self, client_headers, app_client):
        response = app_client.get("/api/records?month=2026-01", headers=client_headers)
        assert response.status_code == 200
        assert response.get_json() == []


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class TestRecords:
    def test_create_then_update_same_date(self, app_client, admin_headers):
        first = app_client.post("/api/records", json=_payload("2026-01-05"), headers=admin_headers).get_json()
        assert first["mode"] == "create"
        assert first["data"]["totalAdsSpend"] == 150.0
        assert first["data"]["roiTotal"] == pytest.approx(1000 / 150)

        second = app_client.post("/api/records", json=_payload("2026-01-05", totalSale=1500),
                                 headers=admin_headers).get_json()
        assert second["mode"] == "update"
        assert second["data"]["id"] == first["data"]["id"]
        assert second["data"]["totalSale"] == 1500.0

    def test_validation_error(self, app_client, admin_headers):
        response = app_client.post("/api/records", json=_payload("2026-01-05", totalSale=500),
                                   headers=admin_headers)
        body = response.get_json()
        assert response.status_code == 400
        assert body["code"] == "validation_error"
        assert body["errors"] == [{"field": "totalSale", "message": "Total Sale must be >= Total Sale GMV"}]

    def test_update_by_id(self, app_client, admin_headers):
        created = app_client.post("/api/records", json=_payload("2026-01-05"), headers=admin_headers).get_json()
        record_id = created["data"]["id"]

        response = app_client.put(f"/api/records/{record_id}", json=_payload(None, customers=30),
                                  headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()["data"]["customers"] == 30
        assert response.get_json()["data"]["date"] == "2026-01-05"

    def test_update_missing_record(self, app_client, admin_headers):
        response = app_client.put("/api/records/999", json=_payload(None), headers=admin_headers)
        assert response.status_code == 404

    def test_list_by_month_and_range(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-30", "2026-01-31", "2026-02-01"])

        january = app_client.get("/api/records?month=2026-01", headers=admin_headers).get_json()
        assert [record["date"] for record in january] == ["2026-01-30", "2026-01-31"]

        ranged = app_client.get("/api/records?startDate=2026-01-31&endDate=2026-02-01",
                                headers=admin_headers).get_json()
        assert len(ranged) == 2
        assert ranged[0]["gmvSaleProduct"] == 500.0

    def test_invalid_month(self, app_client, admin_headers):
        response = app_client.get("/api/records?month=January", headers=admin_headers)
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Summary, funnel, dashboard and monthly table
# ---------------------------------------------------------------------------

class TestMetricsEndpoints:
    def test_summary(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-01", "2026-01-02"])
        body = app_client.get("/api/summary?startDate=2026-01-01&endDate=2026-01-02",
                              headers=admin_headers).get_json()
        assert body["totalSale"] == 2000.0
        assert body["totalAdsSpend"] == 300.0
        assert body["roiTotal"] == pytest.approx(2000 / 300)
        assert body["recordCount"] == 2
        assert len(body["records"]) == 2

    def test_summary_requires_range(self, app_client, admin_headers):
        response = app_client.get("/api/summary?startDate=2026-01-01", headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json()["message"] == "Start and End date required"

    def test_summary_rejects_reversed_range(self, app_client, admin_headers):
        response = app_client.get("/api/summary?startDate=2026-01-02&endDate=2026-01-01", headers=admin_headers)
        assert response.status_code == 400

    def test_funnel(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-01"])
        _seed_records(app_client, admin_headers, ["2026-01-02"], visitor=400)
        body = app_client.get("/api/funnel?startDate=2026-01-02&endDate=2026-01-02",
                              headers=admin_headers).get_json()
        assert body["previous"]["startDate"] == "2026-01-01"
        assert [level["key"] for level in body["levels"]] == ["visitor", "customers", "revenue", "ads", "roi"]
        assert body["levels"][0]["status"] == "red"

    def test_dashboard(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-01", "2026-01-02"])
        body = app_client.get("/api/dashboard?startDate=2026-01-02&endDate=2026-01-02",
                              headers=admin_headers).get_json()
        assert body["title"] == "Test Shop"
        assert body["currency"] == "RM"
        assert body["comparisonStartDate"] == "2026-01-01"
        assert body["status"]["status"] == "Healthy"
        assert body["insight"]

    def test_monthly_table(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2025-12-31", "2026-01-01", "2026-01-02"])
        body = app_client.get("/api/monthly?month=2026-01", headers=admin_headers).get_json()
        assert [row["date"] for row in body["rows"]] == ["2026-01-01", "2026-01-02"]
        assert body["rows"][0]["status"] == "Stable"
        assert body["rows"][0]["reasons"] == []

    def test_monthly_requires_month(self, app_client, admin_headers):
        assert app_client.get("/api/monthly", headers=admin_headers).status_code == 400

    def test_monthly_summary(self, app_client, client_headers, admin_headers):
        _seed_records(app_client, admin_headers, ["2025-12-31", "2026-01-01", "2026-01-02"])
        response = app_client.get("/api/monthly/summary?startDate=2025-11-01&endDate=2026-01-31",
                                  headers=client_headers)
        assert response.status_code == 200
        months = response.get_json()
        assert [(m["startDate"], m["endDate"]) for m in months] == [
            ("2025-12-01", "2025-12-31"),
            ("2026-01-01", "2026-01-31"),
        ]
        assert [m["recordCount"] for m in months] == [1, 2]
        assert [m["totalSale"] for m in months] == [1000.0, 2000.0]

    def test_monthly_summary_requires_range(self, app_client, admin_headers):
        assert app_client.get("/api/monthly/summary", headers=admin_headers).status_code == 400


# ---------------------------------------------------------------------------
# Analysis and reports
# ---------------------------------------------------------------------------

class TestAnalysis:
    def test_first_analysis_auto_publishes(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-01", "2026-01-02"])
        url = "/api/analysis?startDate=2026-01-02&endDate=2026-01-02"

        first = app_client.get(url, headers=admin_headers).get_json()
        assert first["autoPublished"] is True
        assert first["published"]["version"] == 1
        assert first["published"]["clientName"] == "Test Shop"
        assert first["report"]["sale"]["comment"] == first["published"]["saleAnalysis"]
        assert [block["key"] for block in first["blocks"]] == ["sale", "prod", "live"]

        second = app_client.get(url, headers=admin_headers).get_json()
        assert second["autoPublished"] is False
        assert second["published"]["id"] == first["published"]["id"]

    def test_empty_range_not_published(self, app_client, admin_headers):
        body = app_client.get("/api/analysis?startDate=2026-01-01&endDate=2026-01-07",
                              headers=admin_headers).get_json()
        assert body["published"] is None
        assert body["autoPublished"] is False

    def test_publish_new_version(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-01", "2026-01-02"])
        app_client.get("/api/analysis?startDate=2026-01-02&endDate=2026-01-02", headers=admin_headers)

        response = app_client.post("/api/analysis/publish", headers=admin_headers, json={
            "startDate": "2026-01-02",
            "endDate": "2026-01-02",
            "edits": {"summaryContent": "Edited by the account manager"},
        })
        report = response.get_json()["report"]
        assert report["version"] == 2
        assert report["summaryContent"] == "Edited by the account manager"

        check = app_client.get("/api/reports/check?startDate=2026-01-02&endDate=2026-01-02&version=2",
                               headers=admin_headers).get_json()
        assert check["exists"] is True

        history = app_client.get("/api/reports", headers=admin_headers).get_json()
        assert [item["version"] for item in history] == [2, 1]

    def test_publish_requires_admin(self, app_client, client_headers):
        response = app_client.post("/api/analysis/publish", headers=client_headers,
                                   json={"startDate": "2026-01-01", "endDate": "2026-01-02"})
        assert response.status_code == 403

    def test_save_report_directly(self, app_client, admin_headers):
        response = app_client.post("/api/reports", headers=admin_headers, json={
            "startDate": "2026-01-01",
            "endDate": "2026-01-31",
            "saleAnalysis": "Manual analysis",
        })
        report = response.get_json()["report"]
        assert report["version"] == 1
        assert report["saleAnalysis"] == "Manual analysis"
        assert report["startDate"] == "2026-01-01"

    @pytest.mark.parametrize("path", ["/api/analysis/publish", "/api/reports"])
    def test_reversed_range_rejected(self, app_client, admin_headers, path):
        response = app_client.post(path, headers=admin_headers,
                                   json={"startDate": "2026-01-10", "endDate": "2026-01-01"})
        assert response.status_code == 400
        assert response.get_json()["code"] == "bad_request"
        assert response.get_json()["message"] == "Start date 2026-01-10 is after end date 2026-01-01"

        history = app_client.get("/api/reports", headers=admin_headers).get_json()
        assert history == []

    @pytest.mark.parametrize("path", ["/api/analysis/publish", "/api/reports"])
    def test_missing_dates_rejected(self, app_client, admin_headers, path):
        response = app_client.post(path, headers=admin_headers, json={"startDate": "2026-01-01"})
        assert response.status_code == 400

    def test_check_missing_report(self, app_client, client_headers):
        body = app_client.get("/api/reports/check?startDate=2026-03-01&endDate=2026-03-31",
                              headers=client_headers).get_json()
        assert body == {"exists": False, "report": None}


# ---------------------------------------------------------------------------
# Bulk import
# ---------------------------------------------------------------------------

class TestImport:
    def test_template_download(self, app_client, admin_headers):
        response = app_client.get("/api/import/template?month=2026-02", headers=admin_headers)
        assert response.status_code == 200
        assert "import_template_2026-02.xlsx" in response.headers["Content-Disposition"]
        assert response.data[:2] == b"PK"

    def test_template_requires_admin(self, app_client, client_headers):
        assert app_client.get("/api/import/template", headers=client_headers).status_code == 403

    def test_preview(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-10"])
        body = _upload(app_client, admin_headers, "/api/import/preview").get_json()
        preview = body["preview"]
        assert preview["validRows"] == 2
        assert preview["invalidRows"] == 1
        assert preview["existingRecordsToDelete"] == 1
        assert preview["errors"] == [{"row": 4, "reason": "Date does not match selected month (2026-01)"}]

    def test_confirm_and_undo(self, app_client, admin_headers):
        _seed_records(app_client, admin_headers, ["2026-01-10"])

        confirmed = _upload(app_client, admin_headers, "/api/import/confirm").get_json()
        assert confirmed["result"] == {"month": "2026-01", "recordsDeleted": 1, "recordsImported": 2, "skipped": 1}

        records = app_client.get("/api/records?month=2026-01", headers=admin_headers).get_json()
        assert [record["date"] for record in records] == ["2026-01-01", "2026-01-02"]

        status = app_client.get("/api/import/undo-status", headers=admin_headers).get_json()
        assert status["available"] is True
        assert status["month"] == "2026-01"

        undone = app_client.post("/api/import/undo", headers=admin_headers).get_json()
        assert undone["result"] == {"month": "2026-01", "recordsRestored": 1, "recordsRemoved": 2}

        records = app_client.get("/api/records?month=2026-01", headers=admin_headers).get_json()
        assert [record["date"] for record in records] == ["2026-01-10"]

        again = app_client.post("/api/import/undo", headers=admin_headers)
        assert again.status_code == 400
        assert again.get_json()["code"] == "undo_unavailable"

    def test_upload_requires_file(self, app_client, admin_headers):
        response = app_client.post("/api/import/preview", data={"month": "2026-01"}, headers=admin_headers,
                                   content_type="multipart/form-data")
        assert response.status_code == 400
        assert response.get_json()["message"] == "Month and file are required"

    def test_unreadable_file(self, app_client, admin_headers):
        response = _upload(app_client, admin_headers, "/api/import/confirm", content=b"not a workbook")
        assert response.status_code == 400
        assert response.get_json()["code"] == "import_error"


# ---------------------------------------------------------------------------
# Pricing lab
# ---------------------------------------------------------------------------

class TestPricing:
    def test_simulate(self, app_client, client_headers):
        response = app_client.post("/api/pricing/simulate", json={"simulated_price": 40}, headers=client_headers)
        body = response.get_json()
        assert response.status_code == 200
        assert body["inputs"]["simulated_price"] == 40.0
        assert body["result"]["active_price"] == 40.0
        assert body["result"]["is_invalid"] is False

    def test_simulate_with_camel_case_inputs(self, app_client, client_headers):
        response = app_client.post("/api/pricing/simulate", json={"productCost": 100}, headers=client_headers)
        assert response.status_code == 200
        assert response.get_json()["inputs"]["product_cost"] == 100.0

    def test_simulate_rejects_unknown_inputs(self, app_client, client_headers):
        response = app_client.post("/api/pricing/simulate", json={"cost": 100}, headers=client_headers)
        assert response.status_code == 400
        assert response.get_json()["message"] == "Unknown pricing inputs: cost"

    def test_simulate_rejects_text(self, app_client, client_headers):
        response = app_client.post("/api/pricing/simulate", json={"product_cost": "cheap"}, headers=client_headers)
        assert response.status_code == 400
