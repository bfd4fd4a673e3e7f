from collections import defaultdict
from datetime import datetime

from flask import Blueprint, jsonify, g, request, current_app

from reservations import holds, ledger, sweeper
from reservations import slots as slot_store
from utils.audit import log_event
from utils.auth_context import staff_required, staff_or_cron_required
from utils.dates import combine, parse_hhmm, parse_iso, parse_range

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _earnings(rows, now: datetime):
    """Monthly totals keyed YYYY-MM by slot date, plus the current year's total."""
    monthly = defaultdict(int)
    yearly = 0
    for booking, slot in rows:
        monthly[f"{slot.start_time:%Y-%m}"] += booking.amount
        if slot.start_time.year == now.year:
            yearly += booking.amount
    return {"monthly": dict(sorted(monthly.items())), "yearly": yearly}


# ---------- STAFF: slots ----------
@admin_bp.get("/slots")
@staff_required
def list_slots():
    start = end = None
    start_date = request.args.get("start_date")
    end_date = request.args.get("end_date")
    try:
        if start_date and end_date:
            start, end = parse_range(start_date, end_date)
        elif start_date:
            start = parse_iso(start_date)
    except ValueError:
        return jsonify(error="Invalid date. Use ISO e.g. 2026-01-20"), 400

    now = datetime.utcnow()
    out = []
    for slot, booking, hold in slot_store.list_all(start, end):
        item = slot.to_dict()
        item["booking"] = booking.to_dict() if booking else None
        item["hold"] = (
            {"expires_at": hold.expires_at.isoformat(), "live": hold.is_live(now)}
            if hold else None
        )
        out.append(item)
    return jsonify(out), 200


@admin_bp.post("/slots")
@staff_required
def create_slot():
    data = request.get_json(silent=True) or {}
    staff_member = (data.get("staff_member") or data.get("midwife") or "").strip()

    if not staff_member or not data.get("date") or not data.get("start_time") or not data.get("end_time"):
        return jsonify(error="date, start_time, end_time, staff_member are required"), 400
    if len(staff_member) > 80:
        return jsonify(error="staff_member too long"), 400

    try:
        day = parse_iso(data["date"]).date()
        st = combine(day, parse_hhmm(data["start_time"]))
        et = combine(day, parse_hhmm(data["end_time"]))
    except ValueError:
        return jsonify(error="Invalid input. Use date YYYY-MM-DD and times HH:MM"), 400

    if et <= st:
        return jsonify(error="end_time must be after start_time"), 400

    slot = slot_store.create_slot(staff_member, st, et)
    log_event("SLOT_CREATE", entity="slot", entity_id=slot.id, metadata={"staff_member": staff_member})
    return jsonify(slot.to_dict()), 201


@admin_bp.delete("/slots/<int:slot_id>")
@staff_required
def delete_slot(slot_id: int):
    slot_store.delete_slot(slot_id)
    log_event("SLOT_DELETE", entity="slot", entity_id=slot_id)
    return "", 204


# ---------- STAFF / CRON: holds ----------
@admin_bp.delete("/holds/<int:slot_id>")
@staff_required
def release_hold(slot_id: int):
    released = holds.release(slot_id)
    log_event("HOLD_RELEASED_BY_STAFF", entity="slot", entity_id=slot_id, metadata={"released": released})
    return jsonify(released=released), 200


@admin_bp.post("/holds/sweep")
@staff_or_cron_required
def sweep_holds():
    result = sweeper.sweep()
    source = "cron" if getattr(g, "via_cron", False) else "staff"
    current_app.logger.info("Manual sweep triggered by %s", source)
    return jsonify(message="Expired holds cleanup finished", **result.to_dict()), 200


# ---------- STAFF: bookings and earnings ----------
@admin_bp.get("/bookings")
@staff_required
def list_bookings():
    rows = ledger.confirmed_bookings()
    bookings = []
    for booking, slot in rows:
        item = booking.to_dict()
        item["slot"] = slot.to_dict()
        bookings.append(item)
    return jsonify(bookings=bookings, earnings=_earnings(rows, datetime.utcnow())), 200
