from datetime import datetime, timedelta

from models.audit_log import AuditLog
from models.slot import Slot
from reservations import holds, ledger
from tests.conftest import STAFF_EMAIL, STAFF_PASSWORD, fresh


def _slot_payload(day=None, **overrides):
    day = day or (datetime.utcnow().date() + timedelta(days=3))
    body = {"date": day.isoformat(), "start_time": "10:00", "end_time": "11:00", "staff_member": "alice"}
    body.update(overrides)
    return body


def _confirmed(slot, amount=10000, ref="pi_paid"):
    holds.acquire_or_refresh(slot.id)
    booking = ledger.create_provisional(slot.id, "Jane", "jane@example.com", "1", amount, "gbp")
    return ledger.confirm(booking.id, slot.id, ref)


def test_staff_routes_require_login(client):
    assert client.get("/admin/slots").status_code == 401
    assert client.post("/admin/slots", json=_slot_payload()).status_code == 401
    assert client.get("/admin/bookings").status_code == 401
    assert client.post("/admin/holds/sweep").status_code == 401


def test_login_and_me(client, staff):
    assert client.post("/auth/login", json={"email": STAFF_EMAIL, "password": "wrong"}).status_code == 401

    resp = client.post("/auth/login", json={"email": STAFF_EMAIL.upper(), "password": STAFF_PASSWORD})
    assert resp.status_code == 200
    token = resp.get_json()["token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.get_json()["email"] == STAFF_EMAIL

    out = client.post("/auth/logout", headers={"Authorization": f"Bearer {token}"})
    assert out.status_code == 200
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_cookie_session_requires_csrf(client, staff):
    client.post("/auth/login", json={"email": STAFF_EMAIL, "password": STAFF_PASSWORD})

    resp = client.post("/admin/slots", json=_slot_payload())
    assert resp.status_code == 403

    csrf = client.get_cookie("csrf_token").value
    resp = client.post("/admin/slots", json=_slot_payload(), headers={"X-CSRF-Token": csrf})
    assert resp.status_code == 201


def test_create_list_and_delete_slot(client, staff_headers):
    resp = client.post("/admin/slots", json=_slot_payload(), headers=staff_headers)
    assert resp.status_code == 201
    slot_id = resp.get_json()["id"]
    assert resp.get_json()["staff_member"] == "alice"

    dup = client.post("/admin/slots", json=_slot_payload(), headers=staff_headers)
    assert dup.status_code == 409
    assert dup.get_json()["code"] == "SLOT_EXISTS"

    listed = client.get("/admin/slots", headers=staff_headers).get_json()
    assert [s["id"] for s in listed] == [slot_id]
    assert listed[0]["booking"] is None and listed[0]["hold"] is None

    assert client.delete(f"/admin/slots/{slot_id}", headers=staff_headers).status_code == 204
    assert fresh(Slot, slot_id) is None
    assert AuditLog.query.filter_by(action="SLOT_DELETE").count() == 1


def test_create_slot_validation(client, staff_headers):
    bad = [
        _slot_payload(end_time="09:00"),
        _slot_payload(start_time="25:00"),
        _slot_payload(staff_member=""),
        {"date": "not-a-date", "start_time": "10:00", "end_time": "11:00", "staff_member": "x"},
    ]
    for body in bad:
        assert client.post("/admin/slots", json=body, headers=staff_headers).status_code == 400


def test_cannot_delete_held_or_booked_slot(client, staff_headers, make_slot):
    held, booked = make_slot(), make_slot()
    holds.acquire_or_refresh(held.id)
    _confirmed(booked)

    for slot in (held, booked):
        resp = client.delete(f"/admin/slots/{slot.id}", headers=staff_headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "SLOT_IN_USE"


def test_release_hold(client, staff_headers, make_slot):
    slot = make_slot()
    holds.acquire_or_refresh(slot.id)

    first = client.delete(f"/admin/holds/{slot.id}", headers=staff_headers)
    second = client.delete(f"/admin/holds/{slot.id}", headers=staff_headers)

    assert first.get_json() == {"released": True}
    assert second.get_json() == {"released": False}


def test_sweep_with_cron_secret(client, make_slot):
    slot = make_slot()
    now = datetime.utcnow()
    holds.acquire_or_refresh(slot.id, ttl=timedelta(minutes=1), now=now - timedelta(minutes=10))

    assert client.post("/admin/holds/sweep", headers={"Authorization": "Bearer wrong"}).status_code == 401

    resp = client.post("/admin/holds/sweep", headers={"Authorization": "Bearer cron-test-secret"})

    assert resp.status_code == 200
    assert resp.get_json()["holds_deleted"] == 1
    assert holds.get_live_hold(slot.id) is None


def test_bookings_and_earnings(client, staff_headers, make_slot):
    now = datetime.utcnow()
    this_month = make_slot()
    old = make_slot(start=now.replace(year=now.year - 1, day=1, hour=9, minute=0, second=0, microsecond=0))
    _confirmed(this_month, amount=10000, ref="pi_a")
    _confirmed(old, amount=7500, ref="pi_b")
    make_slot()  # unbooked

    resp = client.get("/admin/bookings", headers=staff_headers)

    assert resp.status_code == 200
    data = resp.get_json()
    assert [b["slot"]["id"] for b in data["bookings"]] == [this_month.id, old.id]
    monthly = data["earnings"]["monthly"]
    assert monthly[f"{this_month.start_time:%Y-%m}"] == 10000
    assert monthly[f"{old.start_time:%Y-%m}"] == 7500
    assert data["earnings"]["yearly"] == (10000 if this_month.start_time.year == now.year else 0)
