from datetime import timedelta

from flask import Blueprint, request, jsonify, current_app

from reservations import slots as slot_store
from reservations.orchestrator import booking_cutoff
from utils.dates import parse_range

slots_bp = Blueprint("slots", __name__)


# ---------- CLIENTS: view open slots ----------
@slots_bp.get("/slots")
def list_available_slots():
    start_date = request.args.get("start_date") or request.args.get("startDate")
    end_date = request.args.get("end_date") or request.args.get("endDate")

    if not start_date or not end_date:
        return jsonify(
            error="Start and end dates are required",
            details="Please provide both start_date and end_date query parameters",
        ), 400

    try:
        start, end = parse_range(start_date, end_date)
    except ValueError:
        return jsonify(error="Invalid date format", details="Dates must be ISO e.g. 2026-01-20 or 2026-01-20T09:00:00Z"), 400

    if start >= end:
        return jsonify(error="Invalid date range", details="Start date must be before end date"), 400

    max_days = current_app.config.get("MAX_LISTING_RANGE_DAYS", 30)
    if end - start > timedelta(days=max_days + 1):
        return jsonify(error="Date range too large", details=f"Maximum date range is {max_days} days"), 400

    cutoff = booking_cutoff()
    rows = slot_store.list_available(start, end, cutoff)

    resp = jsonify([s.to_dict() for s in rows])
    resp.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    return resp, 200


@slots_bp.get("/slots/<int:slot_id>/availability")
def slot_availability(slot_id: int):
    return jsonify(slot_store.availability(slot_id)), 200
