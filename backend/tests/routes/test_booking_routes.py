"""
HTTP tests for the v1 practitioner, booking and webhook routes.

The app is driven through FastAPI's TestClient with the database and
booking service dependencies overridden; the lifespan hook is not run.
"""

from __future__ import annotations

from typing import Iterator

from fastapi.testclient import TestClient
import pytest
import stripe

from bookingflow.api.dependencies import get_booking_service, get_db
from bookingflow.main import app
from bookingflow.models.booking import Booking, BookingStatus
from tests._utils.booking_data import (
    HOURLY_RATE,
    UNKNOWN_ID,
    checkout_event,
    future_slot,
    sign_payload,
)

PROBLEM_JSON = "application/problem+json"


@pytest.fixture
def client(db, booking_service) -> Iterator[TestClient]:
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_booking_service] = lambda: booking_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _booking_body(practitioner_id: str, **overrides):
    body = {
        "practitioner_id": practitioner_id,
        "client_name": "Casey Client",
        "client_email": "casey@example.com",
        "client_phone": "+44 7700 900123",
        "start_time": future_slot().isoformat(),
    }
    body.update(overrides)
    return body


class TestPractitionerRoutes:
    def test_list_practitioners(self, client, practitioner):
        response = client.get("/api/v1/practitioners")

        assert response.status_code == 200
        data = response.json()
        assert data[0]["id"] == practitioner.id
        assert data[0]["hourly_rate"] == HOURLY_RATE

    def test_availability(self, client, practitioner):
        response = client.get(f"/api/v1/practitioners/{practitioner.id}/availability")

        assert response.status_code == 200
        data = response.json()
        assert data["practitioner"]["name"] == "Dr Ada Example"
        assert data["source"] == "provider"
        assert data["is_fallback"] is False
        assert data["slots"]
        assert set(data["slots"][0]) == {"start", "end", "available"}

    def test_availability_fallback_flagged(self, client, practitioner, calcom_client):
        from bookingflow.integrations.calcom_client import CalComError

        calcom_client.get_busy_intervals.side_effect = CalComError("down")

        data = client.get(f"/api/v1/practitioners/{practitioner.id}/availability").json()

        assert data["is_fallback"] is True
        assert data["source"] == "fallback"

    def test_availability_unknown_practitioner(self, client, practitioner):
        response = client.get(f"/api/v1/practitioners/{UNKNOWN_ID}/availability")

        assert response.status_code == 404
        assert response.headers["content-type"].startswith(PROBLEM_JSON)
        assert response.json()["code"] == "PRACTITIONER_NOT_FOUND"

    def test_availability_malformed_id(self, client):
        response = client.get("/api/v1/practitioners/not-a-ulid/availability")

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"


class TestBookingRoutes:
    def test_create_booking(self, client, practitioner, checkout_create):
        response = client.post("/api/v1/bookings", json=_booking_body(practitioner.id))

        assert response.status_code == 201
        data = response.json()
        assert data["checkout_url"] == "https://checkout.stripe.com/c/pay/cs_test_1"
        assert data["amount"] == HOURLY_RATE
        assert len(data["booking_id"]) == 26

    def test_slot_taken_is_409(self, client, practitioner, checkout_create):
        body = _booking_body(practitioner.id)
        assert client.post("/api/v1/bookings", json=body).status_code == 201

        response = client.post("/api/v1/bookings", json={**body, "client_email": "late@example.com"})

        assert response.status_code == 409
        assert response.json()["code"] == "SLOT_TAKEN"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"client_email": "nope"},
            {"client_name": "  "},
            {"start_time": "2030-01-01T09:00:00"},
            {"unexpected": "field"},
        ],
    )
    def test_malformed_request_is_400(self, client, practitioner, checkout_create, overrides):
        response = client.post("/api/v1/bookings", json=_booking_body(practitioner.id, **overrides))

        assert response.status_code == 400
        assert response.headers["content-type"].startswith(PROBLEM_JSON)
        checkout_create.assert_not_called()

    def test_past_start_time_is_400(self, client, practitioner, checkout_create):
        response = client.post(
            "/api/v1/bookings",
            json=_booking_body(practitioner.id, start_time="2020-01-01T09:00:00+00:00"),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "START_TIME_NOT_FUTURE"

    def test_unknown_practitioner_is_404(self, client, practitioner, checkout_create):
        response = client.post("/api/v1/bookings", json=_booking_body(UNKNOWN_ID))

        assert response.status_code == 404

    def test_checkout_failure_is_502(self, client, practitioner, checkout_create):
        checkout_create.side_effect = stripe.APIConnectionError("down")

        response = client.post("/api/v1/bookings", json=_booking_body(practitioner.id))

        assert response.status_code == 502
        assert response.json()["code"] == "PROVIDER_UNAVAILABLE"

    def test_get_booking_and_by_session(self, client, practitioner, checkout_create):
        booking_id = client.post("/api/v1/bookings", json=_booking_body(practitioner.id)).json()["booking_id"]

        by_id = client.get(f"/api/v1/bookings/{booking_id}")
        by_session = client.get("/api/v1/bookings/by-session/cs_test_1")

        assert by_id.status_code == 200
        assert by_id.json()["status"] == "pending"
        assert by_id.json()["checkout_session_id"] == "cs_test_1"
        assert by_session.json()["id"] == booking_id

    def test_get_unknown_booking(self, client, practitioner):
        response = client.get(f"/api/v1/bookings/{UNKNOWN_ID}")

        assert response.status_code == 404
        assert response.json()["code"] == "BOOKING_NOT_FOUND"

    def test_cancel_and_retry_checkout(self, client, practitioner, checkout_create):
        booking_id = client.post("/api/v1/bookings", json=_booking_body(practitioner.id)).json()["booking_id"]

        retry = client.post(f"/api/v1/bookings/{booking_id}/checkout")
        assert retry.status_code == 422
        assert retry.json()["code"] == "CHECKOUT_ALREADY_EXISTS"

        cancel = client.post(f"/api/v1/bookings/{booking_id}/cancel")
        assert cancel.status_code == 200
        assert cancel.json() == {"booking_id": booking_id, "status": "cancelled"}


class TestStripeWebhookRoute:
    def _create(self, client, practitioner_id) -> str:
        return client.post("/api/v1/bookings", json=_booking_body(practitioner_id)).json()["booking_id"]

    def test_confirms_booking(self, client, db, practitioner, checkout_create, calcom_client):
        booking_id = self._create(client, practitioner.id)
        payload = checkout_event("cs_test_1", booking_id)

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={"stripe-signature": sign_payload(payload), "content-type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "status": "confirmed",
            "event_type": "checkout.session.completed",
            "booking_id": booking_id,
        }
        db.expire_all()
        assert db.get(Booking, booking_id).status == BookingStatus.CONFIRMED.value

        duplicate = client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={"stripe-signature": sign_payload(payload)},
        )
        assert duplicate.json()["status"] == "already_confirmed"
        assert calcom_client.create_booking.call_count == 1

    def test_bad_signature_is_400(self, client, db, practitioner, checkout_create):
        booking_id = self._create(client, practitioner.id)
        payload = checkout_event("cs_test_1", booking_id)

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, secret="whsec_forged")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "SIGNATURE_INVALID"
        db.expire_all()
        assert db.get(Booking, booking_id).status == BookingStatus.PENDING.value

    def test_missing_signature_is_400(self, client):
        response = client.post("/api/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 400

    def test_irrelevant_event_acknowledged(self, client, practitioner):
        payload = checkout_event("cs_x", None, event_type="customer.created")

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={"stripe-signature": sign_payload(payload)},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"


class TestOperationalRoutes:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] is True
        assert response.headers["cache-control"] == "no-store"

    def test_prometheus_metrics(self, client, practitioner):
        client.get("/api/v1/practitioners")

        response = client.get("/metrics/prometheus")

        assert response.status_code == 200
        assert "bookingflow_service_operations_total" in response.text
