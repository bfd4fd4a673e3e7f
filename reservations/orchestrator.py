import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from models import db
from models.booking import Booking
from models.slot import Slot
from reservations import gateway, holds, ledger
from reservations.errors import BookingNotFound, ReservationError, SlotNotFound, SlotTooSoon, UpstreamFailure, ValidationError
from utils.audit import log_event

logger = logging.getLogger(__name__)


class ReservationState:
    START = "START"
    HOLD_ACQUIRED = "HOLD_ACQUIRED"
    BOOKING_CREATED = "BOOKING_CREATED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"


@dataclass
class Reservation:
    booking_id: int
    slot_id: int
    client_secret: str
    hold_expires_at: datetime
    amount: int
    currency: str
    state: str = ReservationState.AWAITING_PAYMENT

    def to_dict(self):
        return {
            "booking_id": self.booking_id,
            "slot_id": self.slot_id,
            "client_secret": self.client_secret,
            "hold_expires_at": self.hold_expires_at.isoformat(),
            "amount": self.amount,
            "currency": self.currency,
            "state": self.state,
        }


def booking_cutoff(now: datetime = None) -> datetime:
    """Earliest bookable start: now + MIN_LEAD_TIME_HOURS, rounded down to the hour."""
    now = now or datetime.utcnow()
    lead = timedelta(hours=current_app.config.get("MIN_LEAD_TIME_HOURS", 2))
    return (now + lead).replace(minute=0, second=0, microsecond=0)


def _validate_contact(name, email, phone):
    name = (name or "").strip()
    email = (email or "").strip().lower()
    phone = (phone or "").strip()

    if not name or not email or not phone:
        raise ValidationError("Missing required fields (slot_id, name, email, phone)")
    if len(name) > 120 or len(email) > 255 or len(phone) > 30:
        raise ValidationError("Contact details too long")
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("Invalid email address")
    return name, email, phone


def reserve_slot(slot_id: int, name: str, email: str, phone: str, now: datetime = None) -> Reservation:
    """
    START -> HOLD_ACQUIRED -> BOOKING_CREATED -> AWAITING_PAYMENT.

    Returns once the gateway hands back a client secret; confirmation arrives
    later through the payment webhook. Anything failing after the hold is
    taken unwinds the hold (and the provisional booking) on a best-effort
    basis; the sweeper covers whatever that misses.
    """
    now = now or datetime.utcnow()
    name, email, phone = _validate_contact(name, email, phone)

    slot = db.session.get(Slot, slot_id)
    if slot is None:
        raise SlotNotFound(slot_id)
    cutoff = booking_cutoff(now)
    if slot.start_time < cutoff:
        raise SlotTooSoon(slot_id, cutoff)

    logger.info("Reservation for slot %s: %s", slot_id, ReservationState.START)
    hold = holds.acquire_or_refresh(slot_id, now=now)
    state = ReservationState.HOLD_ACQUIRED
    logger.info("Reservation for slot %s: %s", slot_id, state)
    log_event("HOLD_ACQUIRED", entity="slot", entity_id=slot_id, metadata={"expires_at": hold.expires_at})

    booking = None
    amount = current_app.config.get("BOOKING_AMOUNT", 10000)
    currency = current_app.config.get("PAYMENT_CURRENCY", "gbp")
    try:
        booking = ledger.create_provisional(slot_id, name, email, phone, amount, currency)
        state = ReservationState.BOOKING_CREATED
        logger.info("Reservation for slot %s: %s (booking %s)", slot_id, state, booking.id)

        handle = gateway.request_payment(
            amount=booking.amount,
            currency=booking.currency,
            metadata={
                "booking_id": booking.id,
                "slot_id": slot_id,
                "customer_name": name,
                "customer_email": email,
            },
            description=f"{current_app.config.get('PAYMENT_DESCRIPTION')} - Booking ID: {booking.id}",
        )
        booking.gateway_intent_id = handle.ref
        db.session.commit()
        state = ReservationState.AWAITING_PAYMENT
    except Exception as exc:
        db.session.rollback()
        booking_id = _unwind(slot_id, booking, state)
        log_event(
            "RESERVATION_FAILED",
            entity="slot",
            entity_id=slot_id,
            metadata={"state": state, "booking_id": booking_id, "error": str(exc)},
        )
        if isinstance(exc, ReservationError):
            raise
        logger.exception("Reservation for slot %s failed at %s", slot_id, state)
        raise UpstreamFailure("Failed to initiate payment") from exc

    log_event(
        "RESERVATION_CREATED",
        entity="booking",
        entity_id=booking.id,
        metadata={"slot_id": slot_id, "payment_intent": handle.ref, "hold_expires_at": hold.expires_at},
    )
    logger.info("Reservation for slot %s: %s (booking %s)", slot_id, state, booking.id)
    return Reservation(
        booking_id=booking.id,
        slot_id=slot_id,
        client_secret=handle.client_secret,
        hold_expires_at=hold.expires_at,
        amount=booking.amount,
        currency=booking.currency,
        state=state,
    )


def _unwind(slot_id: int, booking, state: str):
    # Advisory cleanup; the sweeper stays the authoritative backstop.
    booking_id = None
    try:
        if booking is not None:
            booking_id = booking.id
            ledger.cancel(booking_id, reason=f"reservation_failed:{state}")
        else:
            holds.release(slot_id)
    except Exception:
        db.session.rollback()
        logger.exception("Could not unwind reservation for slot %s at %s; sweeper will reclaim it", slot_id, state)
    return booking_id


def cancel_reservation(booking_id: int, email: str):
    """
    Client-initiated abandonment before payment. The contact email must
    match so booking ids cannot be cancelled by guessing.
    """
    booking = db.session.get(Booking, booking_id)
    if booking is None or booking.email != (email or "").strip().lower():
        raise BookingNotFound(booking_id)
    booking = ledger.cancel(booking_id, reason="client_cancelled")
    log_event("BOOKING_CANCELLED", entity="booking", entity_id=booking.id, metadata={"slot_id": booking.slot_id})
    return booking
