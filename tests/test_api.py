"""
Integration tests for the payout engine API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from selldown.api import create_app
from selldown.api.dependencies import get_engine
from selldown.engine import PayoutEngine
from selldown.storage import InMemoryStorage


@pytest.fixture
def client():
    """Test client backed by an in-memory engine"""
    app = create_app()
    test_engine = PayoutEngine(InMemoryStorage())
    app.dependency_overrides[get_engine] = lambda: test_engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def configured(client):
    """Client with one deal and one baseline loan registered"""
    r = client.put("/deals/D1", json={
        "assign_ratio": "0.5",
        "annual_interest_rate": "0.24",
        "interest_method": "ACTUAL_365",
    })
    assert r.status_code == 200
    r = client.put("/baseline-loans/LAN001", json={
        "current_outstanding_principal": "100000",
        "current_assigned_overdue_interest": "25.50",
        "deal_id": "D1",
    })
    assert r.status_code == 200
    return client


ROW = {
    "loanId": "LAN001",
    "openingPos": 100000,
    "closingPos": 95000,
    "totalInterestPaid": 500,
    "cycleStartDate": "2024-01-01",
    "cycleEndDate": "2024-01-31",
}


class TestHealthEndpoints:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestReferenceData:
    """Test deal and baseline registration"""

    def test_register_and_get_deal(self, client):
        client.put("/deals/D1", json={"assign_ratio": "0.5", "annual_interest_rate": "0.24", "month_on_month_day": 5})

        r = client.get("/deals/D1")
        assert r.status_code == 200
        assert r.json()["assign_ratio"] == "0.5"
        assert r.json()["month_on_month_day"] == 5

    def test_unknown_deal(self, client):
        assert client.get("/deals/NOPE").status_code == 404

    def test_invalid_deal_terms(self, client):
        r = client.put("/deals/D1", json={"assign_ratio": "1.5", "annual_interest_rate": "0.24"})
        assert r.status_code == 400

    def test_invalid_interest_method(self, client):
        r = client.put("/deals/D1", json={"assign_ratio": "0.5", "interest_method": "THIRTY_360"})
        assert r.status_code == 400


class TestLMSFileFlow:
    """End-to-end upload and processing"""

    def test_upload(self, configured):
        r = configured.post("/lms-files/year/2024/month/1", json={"rows": [ROW, {"openingPos": 1}]})

        assert r.status_code == 201
        data = r.json()
        assert data["accepted"] == 1
        assert data["rejected"] == 1
        assert data["stage"] == "LMS_UPLOADED"
        assert data["errors"][0]["row_number"] == 2

    def test_upload_invalid_month(self, configured):
        r = configured.post("/lms-files/year/2024/month/13", json={"rows": [ROW]})
        assert r.status_code == 400

    def test_process_and_list(self, configured):
        configured.post("/lms-files/year/2024/month/1", json={"rows": [ROW]})

        r = configured.post("/payouts/year/2024/month/1/process")
        assert r.status_code == 200
        summary = r.json()
        assert summary["processed"] == 1
        assert summary["discrepancy_count"] == 0

        r = configured.get("/lms-files/year/2024/month/1")
        assert r.status_code == 200
        record = r.json()["records"][0]
        assert record["seller_opening_pos"] == "50000.00"
        assert record["seller_total_interest_due"] == "986.30"
        assert record["seller_interest_overdue"] == "25.50"
        assert record["deal_status_id"] is not None

    def test_process_with_deal_filter(self, configured):
        configured.post("/lms-files/year/2024/month/1", json={"rows": [ROW]})

        r = configured.post("/payouts/year/2024/month/1/process", params={"deal_id": "OTHER"})

        assert r.status_code == 200
        assert r.json()["processed"] == 0

    def test_process_unknown_cycle(self, configured):
        r = configured.post("/payouts/year/2025/month/6/process")
        assert r.status_code == 404

    def test_delete(self, configured):
        configured.post("/lms-files/year/2024/month/1", json={"rows": [ROW]})

        r = configured.delete("/lms-files/year/2024/month/1")
        assert r.status_code == 200
        assert r.json()["deleted"] == 1

        assert configured.get("/lms-files/year/2024/month/1").json()["count"] == 0
        assert configured.delete("/lms-files/year/2025/month/1").status_code == 404
