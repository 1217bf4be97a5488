import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api import create_app
from config import Config
from service import BookingService

CUSTOMER = {"X-Actor-Id": "cust-1"}
STRANGER = {"X-Actor-Id": "cust-2"}
ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}

BOOKING = {
    "vehicle_id": "car-50",
    "start_date": "2024-01-01",
    "end_date": "2024-01-04",
    "add_ons": ["gps"],
}


@pytest.fixture
def service(manager, coordinator):
    return BookingService(manager, coordinator)


@pytest.fixture
def client(service, monkeypatch):
    monkeypatch.setattr(Config, "STRIPE_WEBHOOK_SECRET", None)
    monkeypatch.setattr(Config, "PAYMENT_PROCESSOR", "mock")
    return TestClient(create_app(service))


def create(client, headers=CUSTOMER, **overrides):
    return client.post("/api/bookings", json={**BOOKING, **overrides}, headers=headers)


def test_calculate_price(client):
    response = client.post("/api/bookings/calculate", json=BOOKING)

    assert response.status_code == 200
    data = response.json()["data"]
    assert float(data["pricing"]["base_amount"]) == 150
    assert float(data["pricing"]["add_ons_amount"]) == 30
    assert float(data["pricing"]["tax_amount"]) == 18
    assert float(data["total_amount"]) == 198
    assert data["pricing"]["total_days"] == 3


def test_create_and_fetch_booking(client):
    response = create(client, notes="Late arrival")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert "error" not in body
    booking = body["data"]
    assert booking["status"] == "pending"
    assert booking["payment_status"] == "pending"
    assert booking["notes"] == "Late arrival"

    fetched = client.get(f"/api/bookings/{booking['id']}", headers=CUSTOMER)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["id"] == booking["id"]

    assert client.get(f"/api/bookings/{booking['id']}", headers=STRANGER).status_code == 403


def test_requires_identity(client):
    assert client.post("/api/bookings", json=BOOKING).status_code == 401
    assert create(client, headers={"X-Actor-Id": "x", "X-Actor-Role": "root"}).status_code == 401


@pytest.mark.parametrize("overrides,status_code,kind", [
    ({"vehicle_id": "car-404"}, 404, "NotFound"),
    ({"vehicle_id": "car-off"}, 400, "NotBookable"),
    ({"add_ons": ["jetpack"]}, 400, "UnknownAddOn"),
    ({"start_date": "2024-01-04", "end_date": "2024-01-01"}, 400, "InvalidRange"),
    ({"notes": "x" * 501}, 400, "ValidationFailed"),
])
def test_create_errors(client, overrides, status_code, kind):
    response = create(client, **overrides)

    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    assert body["error"]["kind"] == kind
    assert "data" not in body


def test_conflict_is_409(client):
    create(client)

    response = create(client, headers=STRANGER, start_date="2024-01-04", end_date="2024-01-06")

    assert response.status_code == 409
    assert response.json()["error"]["message"] == "Car is already booked for these dates"


def test_malformed_request_is_rejected(client):
    response = client.post("/api/bookings", json={"vehicle_id": "car-50"}, headers=CUSTOMER)
    assert response.status_code == 422


def test_cancel(client):
    booking_id = create(client).json()["data"]["id"]

    assert client.put(f"/api/bookings/{booking_id}/cancel", json={}, headers=STRANGER).status_code == 403

    response = client.put(f"/api/bookings/{booking_id}/cancel", json={"reason": "Trip cancelled"}, headers=CUSTOMER)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "cancelled"
    assert data["cancellation"]["reason"] == "Trip cancelled"

    again = client.put(f"/api/bookings/{booking_id}/cancel", json={}, headers=CUSTOMER)
    assert again.status_code == 400
    assert again.json()["error"]["kind"] == "InvalidTransition"


def test_admin_status_updates(client):
    booking_id = create(client).json()["data"]["id"]

    assert client.put(f"/api/bookings/{booking_id}/status", json={"status": "confirmed"},
                      headers=CUSTOMER).status_code == 403
    skipped = client.put(f"/api/bookings/{booking_id}/status", json={"status": "completed"}, headers=ADMIN)
    assert skipped.json()["error"]["kind"] == "InvalidTransition"
    unknown = client.put(f"/api/bookings/{booking_id}/status", json={"status": "lost"}, headers=ADMIN)
    assert unknown.json()["error"]["kind"] == "InvalidStatus"

    response = client.put(f"/api/bookings/{booking_id}/status", json={"status": "confirmed"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "confirmed"


def test_listings(client):
    create(client)
    create(client, headers=STRANGER, vehicle_id="car-45")

    mine = client.get("/api/bookings/my", headers=CUSTOMER).json()["data"]
    assert mine["total"] == 1
    assert mine["items"][0]["customer_ref"] == "cust-1"

    assert client.get("/api/bookings", headers=CUSTOMER).status_code == 403
    everything = client.get("/api/bookings", headers=ADMIN).json()["data"]
    assert everything["total"] == 2
    assert everything["limit"] == 20

    assert client.get("/api/bookings/my?status=lost", headers=CUSTOMER).status_code == 422


def test_payment_flow(client, processor):
    booking_id = create(client).json()["data"]["id"]

    intent = client.post("/api/payments/create-intent", json={"booking_id": booking_id}, headers=CUSTOMER)
    assert intent.status_code == 200
    intent = intent.json()["data"]
    assert intent["amount_minor"] == 19800
    assert intent["client_secret"]

    processor.settle(intent["ref"], "succeeded")
    confirmed = client.post("/api/payments/confirm",
                            json={"booking_id": booking_id, "payment_intent_id": intent["ref"]}, headers=CUSTOMER)
    assert confirmed.status_code == 200
    assert confirmed.json()["data"]["status"] == "confirmed"
    assert confirmed.json()["data"]["payment_status"] == "paid"

    status = client.get(f"/api/payments/{booking_id}/status", headers=CUSTOMER).json()["data"]
    assert status["payment_status"] == "paid"
    assert status["processor_status"] == "succeeded"

    again = client.post("/api/payments/create-intent", json={"booking_id": booking_id}, headers=CUSTOMER)
    assert again.json()["error"]["kind"] == "AlreadyPaid"

    assert client.post(f"/api/payments/{booking_id}/refund", headers=CUSTOMER).status_code == 403
    refunded = client.post(f"/api/payments/{booking_id}/refund", headers=ADMIN)
    assert refunded.status_code == 200
    assert refunded.json()["data"]["payment_status"] == "refunded"


def test_refund_unpaid_booking(client):
    booking_id = create(client).json()["data"]["id"]

    response = client.post(f"/api/payments/{booking_id}/refund", headers=ADMIN)

    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "NotPaid"


def test_processor_outage_is_503(client, processor):
    booking_id = create(client).json()["data"]["id"]
    processor.fail_next_calls = 10

    response = client.post("/api/payments/create-intent", json={"booking_id": booking_id}, headers=CUSTOMER)

    assert response.status_code == 503
    assert response.json()["error"]["kind"] == "ProcessorUnavailable"


def webhook_event(event_type, intent_ref, booking_id=None):
    return json.dumps({
        "type": event_type,
        "data": {"object": {"id": intent_ref, "metadata": {"reservation_id": booking_id} if booking_id else {}}},
    })


def test_webhook_marks_booking_paid(client, processor):
    booking_id = create(client).json()["data"]["id"]
    intent_ref = client.post("/api/payments/create-intent", json={"booking_id": booking_id},
                             headers=CUSTOMER).json()["data"]["ref"]
    processor.settle(intent_ref, "succeeded")

    response = client.post("/api/payments/webhook",
                           content=webhook_event("payment_intent.succeeded", intent_ref, booking_id))
    assert response.json() == {"received": True, "applied": True}

    # late failure for the same intent
    client.post("/api/payments/webhook", content=webhook_event("payment_intent.payment_failed", intent_ref))

    booking = client.get(f"/api/bookings/{booking_id}", headers=CUSTOMER).json()["data"]
    assert booking["status"] == "confirmed"
    assert booking["payment_status"] == "paid"


def test_webhook_ignores_unknown_events(client):
    response = client.post("/api/payments/webhook", content=webhook_event("charge.refunded", "ch_1"))
    assert response.status_code == 200
    assert response.json() == {"received": True}

    unknown_ref = client.post("/api/payments/webhook",
                              content=webhook_event("payment_intent.succeeded", "pi_unknown"))
    assert unknown_ref.json() == {"received": True, "applied": False}


def test_webhook_rejects_garbage(client):
    assert client.post("/api/payments/webhook", content=b"not json").status_code == 400


def test_unsettled_intent_is_not_paid_by_webhook(client):
    booking_id = create(client).json()["data"]["id"]
    intent_ref = client.post("/api/payments/create-intent", json={"booking_id": booking_id},
                             headers=CUSTOMER).json()["data"]["ref"]

    response = client.post("/api/payments/webhook", content=webhook_event("payment_intent.succeeded", intent_ref))

    assert response.status_code == 200
    booking = client.get(f"/api/bookings/{booking_id}", headers=CUSTOMER).json()["data"]
    assert (booking["status"], booking["payment_status"]) == ("pending", "pending")


def test_unsigned_webhook_rejected_without_secret(client, processor, monkeypatch):
    monkeypatch.setattr(Config, "PAYMENT_PROCESSOR", "stripe")
    booking_id = create(client).json()["data"]["id"]
    intent_ref = client.post("/api/payments/create-intent", json={"booking_id": booking_id},
                             headers=CUSTOMER).json()["data"]["ref"]
    processor.settle(intent_ref, "succeeded")

    response = client.post("/api/payments/webhook",
                           content=webhook_event("payment_intent.succeeded", intent_ref, booking_id))

    assert response.status_code == 503
    booking = client.get(f"/api/bookings/{booking_id}", headers=CUSTOMER).json()["data"]
    assert booking["payment_status"] == "pending"


@pytest.mark.parametrize("path", ["/api/bookings/my", "/api/bookings"])
@pytest.mark.parametrize("query", ["limit=500", "limit=0", "page=0"])
def test_paging_bounds_are_validated(client, path, query):
    assert client.get(f"{path}?{query}", headers=ADMIN).status_code == 422


def test_past_start_date_is_rejected(client):
    response = create(client, start_date="2001-01-01", end_date="2001-01-04")

    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "InvalidRange"
    assert response.json()["error"]["message"] == "Start date cannot be in the past"


def test_vehicle_without_rate_is_not_bookable(client, catalog):
    catalog.vehicles["car-50"] = catalog.vehicles["car-50"].model_copy(update={"daily_rate": Decimal("0")})

    response = client.post("/api/bookings/calculate", json=BOOKING)

    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "NotBookable"
