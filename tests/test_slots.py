from datetime import datetime, timedelta

from reservations import holds


def _window(days=7):
    today = datetime.utcnow().date()
    return today.isoformat(), (today + timedelta(days=days)).isoformat()


def test_lists_only_open_slots(client, make_slot):
    open_slot = make_slot()
    held = make_slot()
    make_slot(start=datetime.utcnow() + timedelta(minutes=30))  # inside lead time
    holds.acquire_or_refresh(held.id)
    start, end = _window()

    resp = client.get(f"/slots?start_date={start}&end_date={end}")

    assert resp.status_code == 200
    assert [s["id"] for s in resp.get_json()] == [open_slot.id]
    assert resp.headers["Cache-Control"].startswith("no-cache")


def test_accepts_camel_case_params(client, make_slot):
    slot = make_slot()
    start, end = _window()

    resp = client.get(f"/slots?startDate={start}&endDate={end}")

    assert [s["id"] for s in resp.get_json()] == [slot.id]


def test_listing_validation(client):
    start, end = _window()
    assert client.get("/slots").status_code == 400
    assert client.get(f"/slots?start_date=yesterday&end_date={end}").status_code == 400
    assert client.get(f"/slots?start_date={end}&end_date={start}").status_code == 400
    start, far = _window(days=60)
    resp = client.get(f"/slots?start_date={start}&end_date={far}")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Date range too large"


def test_availability(client, make_slot):
    slot = make_slot()

    assert client.get(f"/slots/{slot.id}/availability").get_json() == {
        "slot_id": slot.id,
        "available": True,
        "confirmed": False,
        "held_until": None,
    }

    hold = holds.acquire_or_refresh(slot.id)
    data = client.get(f"/slots/{slot.id}/availability").get_json()
    assert data["available"] is False
    assert data["held_until"] == hold.expires_at.isoformat()

    assert client.get("/slots/999/availability").status_code == 404
