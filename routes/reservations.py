from flask import Blueprint, request, jsonify

from models import db
from models.booking import Booking, BookingStatus
from reservations import orchestrator
from security.rate_limit import check_reserve_rate
from utils.audit import log_event

reservations_bp = Blueprint("reservations", __name__)


# ---------- CLIENTS: reserve a slot and start payment ----------
@reservations_bp.post("/reservations")
def create_reservation():
    data = request.get_json(silent=True) or {}
    slot_id = data.get("slot_id") or data.get("slotId")

    try:
        slot_id = int(slot_id)
    except (TypeError, ValueError):
        return jsonify(error="Missing required fields (slot_id, name, email, phone)"), 400

    allowed, retry_after = check_reserve_rate()
    if not allowed:
        log_event("RESERVATION_RATE_LIMIT", entity="slot", entity_id=slot_id, metadata={"retry_after": retry_after})
        return jsonify(error="Too many booking attempts. Please try again later.", retry_after_seconds=retry_after), 429

    reservation = orchestrator.reserve_slot(
        slot_id,
        name=data.get("name"),
        email=data.get("email"),
        phone=data.get("phone"),
    )
    return jsonify(reservation.to_dict()), 201


# ---------- CLIENTS: abandon checkout ----------
@reservations_bp.delete("/reservations/<int:booking_id>")
def cancel_reservation(booking_id: int):
    email = request.args.get("email") or (request.get_json(silent=True) or {}).get("email")
    booking = orchestrator.cancel_reservation(booking_id, email)
    return jsonify(message="Booking cancelled and hold released", status=booking.status), 200


# ---------- CLIENTS: poll for webhook confirmation ----------
@reservations_bp.get("/bookings/<int:booking_id>/status")
def booking_status(booking_id: int):
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        return jsonify(confirmed=False, message="Booking not found"), 404

    confirmed = booking.status == BookingStatus.CONFIRMED
    return jsonify(
        booking_id=booking.id,
        status=booking.status,
        confirmed=confirmed,
        message="Booking confirmed" if confirmed else "No confirmed booking found",
    ), 200
