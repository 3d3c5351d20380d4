"""
HTTP API tests through FastAPI's TestClient.
"""

import pytest
from datetime import timedelta
from unittest.mock import patch

from fastapi.testclient import TestClient

from corpreg.api.main import app
from corpreg.core import dao
from corpreg.core.errors import TransientStoreError
from corpreg.core.schema import utc_now

from conftest import CONTACT_FIELDS, COMPANY_FIELDS


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def registration_id(client):
    response = client.post("/registrations", json={"userId": "user-1", "fields": CONTACT_FIELDS})
    assert response.status_code == 201
    return response.json()["id"]


def _expire(registration_id):
    record = dao.get_registration(registration_id)
    record.expire_date = utc_now() - timedelta(days=1)
    dao.save_registration(record)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["registration_count"] == 0


class TestRegistrationEndpoints:

    def test_create_and_get(self, client, registration_id):
        response = client.get(f"/registrations/{registration_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["currentStage"] == "company-details"
        assert data["status"] == "payment-processing"
        assert data["companyName"] == "Acme Holdings"
        assert data["userId"] == "user-1"

    def test_create_missing_fields_is_422(self, client):
        response = client.post("/registrations", json={"fields": {"companyName": "Acme"}})
        assert response.status_code == 422
        assert "contactPersonEmail" in response.json()["missingFields"]

    def test_get_unknown_is_404(self, client):
        assert client.get("/registrations/missing").status_code == 404

    def test_list(self, client, registration_id):
        response = client.get("/registrations", params={"user_id": "user-1"})
        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert client.get("/registrations", params={"user_id": "user-2"}).json()["count"] == 0

    def test_put_with_expected_version(self, client, registration_id):
        record = client.get(f"/registrations/{registration_id}").json()
        record["registeredAddress"] = "1 Main Street"

        response = client.put(f"/registrations/{registration_id}", json={"record": record, "expectedVersion": 1})
        assert response.status_code == 200
        assert response.json()["registeredAddress"] == "1 Main Street"

        stale = client.put(f"/registrations/{registration_id}", json={"record": record, "expectedVersion": 1})
        assert stale.status_code == 409

    def test_step_gated_is_409(self, client, registration_id):
        response = client.post(f"/registrations/{registration_id}/steps/company-details",
                               json={"fields": COMPANY_FIELDS})
        assert response.status_code == 409

    def test_full_flow(self, client, registration_id):
        base = f"/registrations/{registration_id}"
        assert client.post(f"{base}/actions/approve-payment", json={"actor": "admin-1"}).status_code == 200

        response = client.post(f"{base}/steps/company-details", json={"fields": COMPANY_FIELDS})
        assert response.status_code == 200
        assert response.json()["currentStage"] == "documentation"

        content = client.get(f"{base}/content/documentation").json()
        assert content["kind"] == "processing"
        assert content["steps"]["company-details"] == "completed"

        client.post(f"{base}/actions/publish-documents", json={"actor": "admin-1"})
        content = client.get(f"{base}/content/documentation").json()
        assert content["granted"] is True
        assert content["registrationId"] == registration_id

        response = client.post(f"{base}/update-information")
        assert response.json()["isUpdating"] is True

    def test_unknown_action_is_422(self, client, registration_id):
        response = client.post(f"/registrations/{registration_id}/actions/teleport", json={"actor": "admin-1"})
        assert response.status_code == 422

    def test_blank_actor_rejected(self, client, registration_id):
        response = client.post(f"/registrations/{registration_id}/actions/approve-payment", json={"actor": " "})
        assert response.status_code == 422

    def test_reject_then_cancel(self, client, registration_id):
        base = f"/registrations/{registration_id}"
        assert client.post(f"{base}/cancel").status_code == 409

        client.post(f"{base}/actions/reject-payment", json={"actor": "admin-1"})
        content = client.get(f"{base}/content/company-details").json()
        assert content["kind"] == "rejected"

        response = client.post(f"{base}/cancel")
        assert response.status_code == 200
        assert response.json()["cancelledAt"] is not None
        assert client.get("/registrations").json()["count"] == 0

    def test_pin_and_noted(self, client, registration_id):
        base = f"/registrations/{registration_id}"
        assert client.patch(f"{base}/pin", json={"pinned": True}).json()["pinned"] is True
        noted = client.put(f"{base}/noted", json={"noted": True}).json()
        assert noted["noted"] is True
        assert noted["secretaryRecordsNotedAt"] is not None

    def test_delete(self, client, registration_id):
        response = client.delete(f"/registrations/{registration_id}")
        assert response.status_code == 200
        assert response.json() == {"success": True, "registrationId": registration_id, "blobsDeleted": 0}
        assert client.get(f"/registrations/{registration_id}").status_code == 404

    def test_store_unavailable_is_503(self, client):
        with patch("corpreg.core.service.dao.get_registration", side_effect=TransientStoreError("locked")):
            response = client.get("/registrations/reg-1")
        assert response.status_code == 503


class TestExpiryEndpoints:

    def test_check_expiry(self, client, registration_id):
        _expire(registration_id)
        response = client.get(f"/registrations/{registration_id}/check-expiry")
        assert response.status_code == 200
        data = response.json()
        assert data["isExpired"] is True
        assert data["updated"] is True

        content = client.get(f"/registrations/{registration_id}/content/contact-details").json()
        assert content["kind"] == "renewal-required"

    def test_expired_step_is_409(self, client, registration_id):
        base = f"/registrations/{registration_id}"
        client.post(f"{base}/actions/approve-payment", json={"actor": "admin-1"})
        _expire(registration_id)
        response = client.post(f"{base}/steps/company-details", json={"fields": COMPANY_FIELDS})
        assert response.status_code == 409
        assert "renewal required" in response.json()["detail"]

    def test_sweep_endpoint(self, client, registration_id):
        _expire(registration_id)
        assert client.post("/maintenance/sweep-expired").json()["updated"] == 1
        assert client.post("/maintenance/sweep-expired").json()["updated"] == 0


class TestRenewalEndpoints:

    def test_renewal_cycle(self, client, registration_id):
        _expire(registration_id)
        response = client.post("/renewal-payments", json={
            "registrationId": registration_id,
            "amount": 5000,
            "receiptReference": {"filePath": "documents/receipt.pdf"},
        })
        assert response.status_code == 201
        payment_id = response.json()["id"]

        duplicate = client.post("/renewal-payments", json={"registrationId": registration_id, "amount": 5000})
        assert duplicate.status_code == 409

        listed = client.get("/renewal-payments", params={"registration_id": registration_id}).json()
        assert listed["count"] == 1

        response = client.post(f"/renewal-payments/{payment_id}/approve",
                               json={"approvedBy": "admin-1", "extensionDays": 30})
        assert response.status_code == 200
        data = response.json()
        assert data["payment"]["status"] == "approved"
        assert data["registration"]["secretaryPeriodYear"] == 1
        assert data["registration"]["isExpired"] is False

        assert client.get(f"/renewal-payments/{payment_id}").json()["status"] == "approved"
        again = client.post(f"/renewal-payments/{payment_id}/reject", json={"rejectedBy": "admin-2"})
        assert again.status_code == 409

    def test_invalid_amount(self, client, registration_id):
        response = client.post("/renewal-payments", json={"registrationId": registration_id, "amount": 0})
        assert response.status_code == 422

    def test_renewal_for_active_registration_is_409(self, client, registration_id):
        response = client.post("/renewal-payments", json={"registrationId": registration_id, "amount": 100})
        assert response.status_code == 409

    def test_unknown_payment_is_404(self, client):
        assert client.get("/renewal-payments/missing").status_code == 404
