from datetime import datetime, timedelta

import stripe

from models.audit_log import AuditLog
from models.booking import Booking, BookingStatus
from reservations import holds
from tests.conftest import fresh

CONTACT = {"name": "Jane Doe", "email": "Jane@Example.com", "phone": "07700900000"}


def _reserve(client, slot_id, **overrides):
    body = dict(CONTACT, slot_id=slot_id)
    body.update(overrides)
    return client.post("/reservations", json=body)


def test_reserve_returns_client_secret(client, make_slot, stripe_calls):
    slot = make_slot()

    resp = _reserve(client, slot.id)

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["client_secret"] == "pi_test_1_secret_abc"
    assert data["state"] == "AWAITING_PAYMENT"
    assert data["amount"] == 10000

    booking = fresh(Booking, data["booking_id"])
    assert booking.status == BookingStatus.PENDING
    assert booking.email == "jane@example.com"
    assert booking.gateway_intent_id == "pi_test_1"
    assert holds.get_live_hold(slot.id) is not None

    call = stripe_calls[0]
    assert call["amount"] == 10000
    assert call["currency"] == "gbp"
    assert call["metadata"] == {
        "booking_id": str(booking.id),
        "slot_id": str(slot.id),
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
    }
    assert call["idempotency_key"] == f"booking-{booking.id}"


def test_second_client_is_refused_while_held(client, make_slot, stripe_calls):
    slot = make_slot()
    assert _reserve(client, slot.id).status_code == 201

    resp = _reserve(client, slot.id, email="other@example.com")

    assert resp.status_code == 409
    assert resp.get_json()["code"] == "SLOT_HELD"
    assert len(stripe_calls) == 1


def test_gateway_failure_unwinds(client, make_slot, monkeypatch):
    slot = make_slot()

    def failing_create(**kwargs):
        raise stripe.StripeError("card network down")

    monkeypatch.setattr(stripe.PaymentIntent, "create", failing_create)

    resp = _reserve(client, slot.id)

    assert resp.status_code == 502
    assert resp.get_json()["retryable"] is True
    assert holds.get_live_hold(slot.id) is None
    booking = Booking.query.filter_by(slot_id=slot.id).one()
    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancel_reason.startswith("reservation_failed")
    assert AuditLog.query.filter_by(action="RESERVATION_FAILED").count() == 1


def test_missing_contact_fields(client, make_slot, stripe_calls):
    slot = make_slot()

    resp = _reserve(client, slot.id, phone="")

    assert resp.status_code == 400
    assert holds.get_live_hold(slot.id) is None
    assert stripe_calls == []


def test_missing_slot_id(client):
    resp = client.post("/reservations", json=CONTACT)
    assert resp.status_code == 400


def test_unknown_slot(client, stripe_calls):
    resp = _reserve(client, 4242)
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "SLOT_NOT_FOUND"


def test_slot_inside_lead_time_is_refused(client, make_slot, stripe_calls):
    slot = make_slot(start=datetime.utcnow() + timedelta(minutes=30))

    resp = _reserve(client, slot.id)

    assert resp.status_code == 400
    assert resp.get_json()["code"] == "SLOT_TOO_SOON"
    assert holds.get_live_hold(slot.id) is None


def test_client_cancel_requires_matching_email(client, make_slot, stripe_calls):
    slot = make_slot()
    booking_id = _reserve(client, slot.id).get_json()["booking_id"]

    resp = client.delete(f"/reservations/{booking_id}?email=someone@else.com")
    assert resp.status_code == 404

    resp = client.delete(f"/reservations/{booking_id}", json={"email": "jane@example.com"})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == BookingStatus.CANCELLED
    assert holds.get_live_hold(slot.id) is None

    # slot is immediately bookable again
    assert _reserve(client, slot.id, email="next@example.com").status_code == 201


def test_booking_status_polling(client, make_slot, stripe_calls):
    slot = make_slot()
    booking_id = _reserve(client, slot.id).get_json()["booking_id"]

    resp = client.get(f"/bookings/{booking_id}/status")
    assert resp.status_code == 200
    assert resp.get_json() == {
        "booking_id": booking_id,
        "status": "PENDING",
        "confirmed": False,
        "message": "No confirmed booking found",
    }

    assert client.get("/bookings/999/status").status_code == 404


def test_reserve_rate_limit(app, client, make_slot, stripe_calls):
    app.config["RESERVE_RATE_MAX_REQUESTS"] = 2
    slot = make_slot()

    codes = [_reserve(client, slot.id).status_code for _ in range(3)]

    assert codes == [201, 409, 429]
