import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.booking import Booking, BookingStatus
from models.slot import Slot
from reservations import holds
from reservations.errors import (
    AlreadyConfirmed,
    BookingNotCancellable,
    BookingNotFound,
    BookingNotPending,
    CorrelationError,
    SlotAlreadyConfirmed,
    SlotNotFound,
    StorageFailure,
)

logger = logging.getLogger(__name__)


def create_provisional(slot_id: int, name: str, email: str, phone: str, amount: int, currency: str) -> Booking:
    """
    Inserts a PENDING, unpaid booking. The caller must already hold the slot;
    the hold is not re-checked here.
    """
    booking = Booking(
        slot_id=slot_id,
        name=name,
        email=email,
        phone=phone,
        amount=amount,
        currency=currency,
        paid=False,
        status=BookingStatus.PENDING,
    )
    db.session.add(booking)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure("Failed to create provisional booking") from exc

    logger.info("Provisional booking %s created for slot %s", booking.id, slot_id)
    return booking


def _locked_booking(booking_id: int):
    return (
        db.session.query(Booking)
        .filter(Booking.id == booking_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def confirm(booking_id: int, slot_id: int, payment_ref: str) -> Booking:
    """
    Marks the booking paid and CONFIRMED, links the slot to it and drops the
    slot's hold, all in one transaction.

    Raises AlreadyConfirmed when the booking was confirmed before (repeat
    delivery of the same payment). Commit failures surface as StorageFailure.
    """
    try:
        booking = _locked_booking(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        if booking.status == BookingStatus.CONFIRMED:
            raise AlreadyConfirmed(booking)
        if booking.status != BookingStatus.PENDING:
            raise BookingNotPending(booking)
        if slot_id is not None and int(slot_id) != booking.slot_id:
            raise CorrelationError(
                f"Payment for booking {booking.id} names slot {slot_id}, booking is for slot {booking.slot_id}"
            )

        slot = db.session.query(Slot).filter(Slot.id == booking.slot_id).with_for_update().first()
        if slot is None:
            raise SlotNotFound(booking.slot_id)
        if slot.booking_id is not None and slot.booking_id != booking.id:
            raise SlotAlreadyConfirmed(slot.id)

        now = datetime.utcnow()
        booking.paid = True
        booking.status = BookingStatus.CONFIRMED
        booking.payment_ref = payment_ref
        booking.confirmed_at = now
        slot.booking_id = booking.id

        holds.release(slot.id, commit=False)
        db.session.commit()
    except (BookingNotFound, AlreadyConfirmed, BookingNotPending, CorrelationError, SlotNotFound, SlotAlreadyConfirmed):
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        # slots.booking_id is unique: another booking won the slot concurrently
        logger.warning("Unique violation while confirming booking %s: %s", booking_id, exc.orig)
        raise SlotAlreadyConfirmed(slot_id) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Confirm transaction failed for booking %s", booking_id)
        raise StorageFailure(f"Failed to confirm booking {booking_id}") from exc

    logger.info("Booking %s confirmed for slot %s (payment %s)", booking.id, booking.slot_id, payment_ref)
    return booking


def cancel(booking_id: int, reason: str = None) -> Booking:
    """
    Cancels a still-pending booking and releases its slot's hold in the same
    transaction. Cancelling an already cancelled/abandoned booking is a no-op.
    """
    booking = _locked_booking(booking_id)
    if booking is None:
        db.session.rollback()
        raise BookingNotFound(booking_id)

    if booking.status == BookingStatus.CONFIRMED or booking.paid:
        db.session.rollback()
        raise BookingNotCancellable(booking)

    if booking.status in BookingStatus.TERMINAL:
        db.session.rollback()
        logger.info("Booking %s already %s, nothing to cancel", booking.id, booking.status)
        return booking

    try:
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = datetime.utcnow()
        booking.cancel_reason = (reason or "cancelled")[:120]
        holds.release(booking.slot_id, commit=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure(f"Failed to cancel booking {booking_id}") from exc

    logger.info("Booking %s cancelled (%s), slot %s released", booking.id, booking.cancel_reason, booking.slot_id)
    return booking


def is_abandonable(booking: Booking) -> bool:
    # A payment callback may be in flight; anything with money attached stays.
    return (
        booking.status == BookingStatus.PENDING
        and not booking.paid
        and booking.payment_ref is None
    )


def mark_abandoned(booking: Booking, now: datetime = None) -> bool:
    """Transitions an eligible booking to ABANDONED. Does not commit."""
    if not is_abandonable(booking):
        return False
    booking.status = BookingStatus.ABANDONED
    booking.cancelled_at = now or datetime.utcnow()
    booking.cancel_reason = "hold_expired"
    return True


def pending_for_slot(slot_id: int):
    return (
        db.session.query(Booking)
        .filter(Booking.slot_id == slot_id, Booking.status == BookingStatus.PENDING)
        .with_for_update()
        .all()
    )


def stale_pending(created_before: datetime):
    return (
        Booking.query
        .filter(Booking.status == BookingStatus.PENDING, Booking.created_at < created_before)
        .order_by(Booking.created_at.asc())
        .with_for_update()
        .all()
    )


def purge_abandoned(older_than: datetime) -> int:
    """Erases ABANDONED bookings created before ``older_than`` that never saw a payment."""
    linked = select(Slot.booking_id).where(Slot.booking_id.isnot(None))
    stmt = delete(Booking).where(
        Booking.status == BookingStatus.ABANDONED,
        Booking.paid.is_(False),
        Booking.payment_ref.is_(None),
        Booking.created_at < older_than,
        Booking.id.not_in(linked),
    ).execution_options(synchronize_session=False)

    try:
        result = db.session.execute(stmt)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure("Failed to purge abandoned bookings") from exc

    if result.rowcount:
        logger.info("Purged %s abandoned bookings older than %s", result.rowcount, older_than.isoformat())
    return result.rowcount


def confirmed_bookings():
    """Confirmed bookings with their slots, latest slot first."""
    return (
        db.session.query(Booking, Slot)
        .join(Slot, Slot.booking_id == Booking.id)
        .filter(Booking.status == BookingStatus.CONFIRMED)
        .order_by(Slot.start_time.desc())
        .all()
    )
