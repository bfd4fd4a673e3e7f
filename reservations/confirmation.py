"""
Consumes asynchronous payment outcomes.

Delivery is at-least-once, so every path here is safe to repeat. Only a
StorageFailure escapes: the webhook answers 500 and the gateway retries.
Everything the gateway cannot fix by retrying (missing or unknown
correlation ids, a booking that is no longer pending) is logged, audited
and acknowledged.
"""
import logging

from models import db
from models.slot import Slot
from reservations import ledger, notifications
from reservations.errors import (
    AlreadyConfirmed,
    BookingNotCancellable,
    BookingNotFound,
    BookingNotPending,
    CorrelationError,
    SlotAlreadyConfirmed,
    SlotNotFound,
)
from utils.audit import log_event

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
CANCELLED = "cancelled"
DUPLICATE = "duplicate"
IGNORED = "ignored"


def _correlation_ids(metadata):
    metadata = metadata or {}
    raw_booking = metadata.get("booking_id") or metadata.get("bookingId")
    raw_slot = metadata.get("slot_id") or metadata.get("availabilityId")
    try:
        booking_id = int(raw_booking)
    except (TypeError, ValueError):
        raise CorrelationError(f"Missing or invalid booking id in payment metadata: {raw_booking!r}")
    try:
        slot_id = int(raw_slot) if raw_slot not in (None, "") else None
    except (TypeError, ValueError):
        raise CorrelationError(f"Invalid slot id in payment metadata: {raw_slot!r}")
    return booking_id, slot_id


def _unmatched(kind: str, payment_ref, metadata, exc) -> str:
    logger.error("Unmatched %s payment %s (%s): %s", kind, payment_ref, type(exc).__name__, exc)
    log_event(
        "PAYMENT_UNMATCHED",
        entity="payment",
        entity_id=payment_ref,
        metadata={"event": kind, "reason": getattr(exc, "code", None), "detail": str(exc), "metadata": dict(metadata or {})},
    )
    return IGNORED


def handle_payment_succeeded(metadata, payment_ref: str) -> str:
    try:
        booking_id, slot_id = _correlation_ids(metadata)
        booking = ledger.confirm(booking_id, slot_id, payment_ref)
    except AlreadyConfirmed as exc:
        logger.info("Duplicate success callback for booking %s (payment %s)", exc.booking.id, payment_ref)
        log_event("PAYMENT_DUPLICATE", entity="booking", entity_id=exc.booking.id, metadata={"payment_ref": payment_ref})
        return DUPLICATE
    except BookingNotPending as exc:
        # Paid after the hold was swept or the client cancelled: needs manual follow-up.
        return _unmatched("succeeded", payment_ref, metadata, exc)
    except (CorrelationError, BookingNotFound, SlotNotFound, SlotAlreadyConfirmed) as exc:
        return _unmatched("succeeded", payment_ref, metadata, exc)

    log_event(
        "PAYMENT_CONFIRMED",
        entity="booking",
        entity_id=booking.id,
        metadata={"slot_id": booking.slot_id, "payment_ref": payment_ref, "amount": booking.amount},
    )

    slot = db.session.get(Slot, booking.slot_id)
    notifications.notify_client_confirmed(booking, slot)
    notifications.notify_staff_confirmed(booking, slot)
    return CONFIRMED


def handle_payment_failed(metadata, payment_ref: str = None) -> str:
    try:
        booking_id, _ = _correlation_ids(metadata)
        booking = ledger.cancel(booking_id, reason="payment_failed")
    except BookingNotCancellable as exc:
        # A failure report for an intent whose booking already confirmed
        logger.warning("Ignoring payment failure for confirmed booking %s", exc.booking.id)
        return IGNORED
    except (CorrelationError, BookingNotFound) as exc:
        return _unmatched("failed", payment_ref, metadata, exc)

    log_event(
        "PAYMENT_FAILED",
        entity="booking",
        entity_id=booking.id,
        metadata={"slot_id": booking.slot_id, "payment_ref": payment_ref, "status": booking.status},
    )
    return CANCELLED
