"""
Equity Tax - API Tests
======================
End-to-end tests of the FastAPI routes against a fresh in-memory store.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend"))

from main import app, get_tax_return_service
from tax_returns import InMemoryTaxReturnRepository, TaxReturnService


PERSONAL_INFO = {
    "first_name": "Jane",
    "last_name": "Doe",
    "ssn": "123-45-6789",
    "date_of_birth": "1985-06-15",
    "address": {
        "street": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701"
    },
    "filing_status": "single"
}


@pytest.fixture
def client():
    service = TaxReturnService(InMemoryTaxReturnRepository(), default_tax_year=2023)
    app.dependency_overrides[get_tax_return_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def created_return(client):
    response = client.post(
        "/api/tax/returns",
        params={"user_id": "user-1"},
        json={
            "tax_year": 2023,
            "personal_info": PERSONAL_INFO,
            "income": {"wages": 60000, "interest": 500}
        }
    )
    assert response.status_code == 201
    return response.json()["data"]


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["components"]["tax_calculator"] == "ready"


class TestReferenceEndpoints:

    def test_brackets(self, client):
        body = client.get("/api/reference/brackets").json()

        assert body["success"] is True
        data = body["data"]
        assert data["tax_year"] == 2023
        assert data["standard_deduction"] == 13850
        assert len(data["brackets"]) == 7
        assert data["brackets"][0] == {"lower_bound": 0, "upper_bound": 11000, "rate": 0.10}
        assert data["brackets"][-1]["upper_bound"] is None

    def test_brackets_summary_and_categories(self, client):
        data = client.get("/api/reference/brackets").json()["data"]

        assert "Over $578,125: 37%" in data["summary"]
        assert "wages" in data["income_categories"]
        assert "mortgage_interest" in data["itemized_deduction_categories"]

    def test_unknown_year(self, client):
        response = client.get("/api/reference/brackets", params={"tax_year": 1999})
        assert response.status_code == 400


class TestEstimateEndpoints:

    def test_estimate_standard(self, client):
        response = client.post("/api/tax/estimate", json={
            "income": {"wages": 60000, "interest": 500},
            "deductions": {"type": "standard", "amount": 13850}
        })
        assert response.status_code == 200

        data = response.json()["data"]
        assert data["deduction_type"] == "standard"
        assert data["result"] == {
            "total_income": 60500,
            "total_deductions": 13850,
            "taxable_income": 46650,
            "tax_owed": 5570.5,
            "refund_amount": 0
        }
        assert len(data["bracket_breakdown"]) == 3
        assert data["marginal_rate"] == 0.22

    def test_estimate_defaults_to_standard_deduction(self, client):
        data = client.post("/api/tax/estimate", json={"income": {"wages": 63850}}).json()["data"]
        assert data["result"]["taxable_income"] == 50000
        assert data["result"]["tax_owed"] == 6307.5

    def test_estimate_itemized(self, client):
        data = client.post("/api/tax/estimate", json={
            "income": {"wages": 40000},
            "deductions": {"type": "itemized", "mortgage_interest": 10000, "charitable": 2000}
        }).json()["data"]

        assert data["deduction_type"] == "itemized"
        assert data["result"]["total_deductions"] == 12000
        assert data["result"]["taxable_income"] == 28000

    def test_estimate_rejects_negative_amounts(self, client):
        response = client.post("/api/tax/estimate", json={"income": {"wages": -5}})
        assert response.status_code == 422

    @pytest.mark.parametrize("value", ["inf", "nan"])
    def test_estimate_rejects_non_finite_amounts(self, client, value):
        response = client.post("/api/tax/estimate", json={"income": {"wages": value}})
        assert response.status_code == 422

    def test_estimate_unconfigured_year(self, client):
        response = client.post("/api/tax/estimate", json={
            "tax_year": 2022,
            "income": {"wages": 60000}
        })
        assert response.status_code == 400
        assert "2022" in response.json()["detail"]

    def test_compare_unconfigured_year(self, client):
        response = client.post("/api/tax/deductions/compare", json={
            "tax_year": 2022,
            "income": {"wages": 100000}
        })
        assert response.status_code == 400

    def test_compare_deductions(self, client):
        data = client.post("/api/tax/deductions/compare", json={
            "income": {"wages": 100000},
            "itemized": {"mortgage_interest": 15000, "property_tax": 5000}
        }).json()["data"]

        assert data["recommended"] == "itemized"
        assert data["tax_savings"] == 1353.0


class TestTaxReturnEndpoints:

    def test_create(self, created_return):
        assert created_return["status"] == "draft"
        assert created_return["calculations"]["tax_owed"] == 5570.5
        assert created_return["due_date"] == "2024-04-15"
        assert created_return["full_name"] == "Jane Doe"

    def test_ssn_never_returned(self, created_return):
        assert "ssn" not in created_return["personal_info"]
        assert created_return["personal_info"]["masked_ssn"] == "***-**-6789"

    def test_duplicate_year_conflict(self, client, created_return):
        response = client.post(
            "/api/tax/returns",
            params={"user_id": "user-1"},
            json={"tax_year": 2023, "personal_info": PERSONAL_INFO}
        )
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_create_validates_personal_info(self, client):
        response = client.post(
            "/api/tax/returns",
            params={"user_id": "user-1"},
            json={"personal_info": {**PERSONAL_INFO, "ssn": "nope"}}
        )
        assert response.status_code == 422

    def test_list_for_user(self, client, created_return):
        data = client.get("/api/tax/returns", params={"user_id": "user-1"}).json()["data"]
        assert [r["return_id"] for r in data] == [created_return["return_id"]]

        assert client.get("/api/tax/returns", params={"user_id": "someone-else"}).json()["data"] == []

    def test_get_missing(self, client):
        response = client.get("/api/tax/returns/does-not-exist")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_update_recomputes(self, client, created_return):
        response = client.put(
            f"/api/tax/returns/{created_return['return_id']}",
            json={"income": {"wages": 63850}}
        )
        assert response.status_code == 200
        assert response.json()["data"]["calculations"]["tax_owed"] == 6307.5

    def test_submit_then_update_conflict(self, client, created_return):
        return_id = created_return["return_id"]

        response = client.post(f"/api/tax/returns/{return_id}/submit")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "pending"
        assert response.json()["data"]["submitted_at"] is not None

        assert client.put(f"/api/tax/returns/{return_id}", json={"priority": "high"}).status_code == 409
        assert client.post(f"/api/tax/returns/{return_id}/submit").status_code == 409

    def test_delete_draft(self, client, created_return):
        return_id = created_return["return_id"]
        assert client.delete(f"/api/tax/returns/{return_id}").status_code == 200
        assert client.get(f"/api/tax/returns/{return_id}").status_code == 404


class TestAdminEndpoints:

    def review(self, client, return_id, **body):
        return client.put(f"/api/admin/tax-returns/{return_id}/review", json=body)

    def test_review_flow(self, client, created_return):
        return_id = created_return["return_id"]
        client.post(f"/api/tax/returns/{return_id}/submit")

        pending = client.get("/api/admin/tax-returns", params={"status": "pending"}).json()["data"]
        assert [r["return_id"] for r in pending] == [return_id]

        response = self.review(client, return_id, action="start_review", reviewer_id="admin-1")
        assert response.json()["data"]["status"] == "under_review"

        response = self.review(client, return_id, action="approve", reviewer_id="admin-1", comments="OK")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "approved"
        assert response.json()["data"]["review_comments"] == "OK"

        response = self.review(client, return_id, action="complete", reviewer_id="admin-1")
        assert response.json()["data"]["status"] == "completed"

    def test_reject_requires_reason(self, client, created_return):
        return_id = created_return["return_id"]
        client.post(f"/api/tax/returns/{return_id}/submit")

        assert self.review(client, return_id, action="reject", reviewer_id="admin-1").status_code == 422

        response = self.review(
            client, return_id, action="reject", reviewer_id="admin-1", reason="Missing W-2"
        )
        assert response.status_code == 200
        assert response.json()["data"]["rejection_reason"] == "Missing W-2"

    def test_cannot_approve_draft(self, client, created_return):
        response = self.review(
            client, created_return["return_id"], action="approve", reviewer_id="admin-1"
        )
        assert response.status_code == 409

    def test_list_all(self, client, created_return):
        data = client.get("/api/admin/tax-returns").json()["data"]
        assert len(data) == 1

    def test_analytics(self, client, created_return):
        data = client.get("/api/admin/analytics").json()["data"]

        assert data["total_returns"] == 1
        assert data["returns_by_status"]["draft"] == 1
        assert data["pending_returns"] == 0
        assert data["total_tax_owed"] == 5570.5
