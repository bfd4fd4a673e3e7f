"""Slot store: staff-owned calendar windows and the availability view over them."""
import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.booking import Booking
from models.hold import Hold
from models.slot import Slot
from reservations import holds
from reservations.errors import Conflict, SlotHasBooking, SlotNotFound, StorageFailure

logger = logging.getLogger(__name__)

MAX_LISTING_ROWS = 500


def _live_hold_exists(now: datetime):
    return select(Hold.id).where(Hold.slot_id == Slot.id, Hold.expires_at > now).exists()


def list_available(start: datetime, end: datetime, cutoff: datetime, now: datetime = None):
    """
    Slots starting in [max(start, cutoff), end) with no confirmed booking and
    no live hold.
    """
    now = now or datetime.utcnow()
    effective_start = max(start, cutoff)
    return (
        Slot.query
        .filter(
            Slot.start_time >= effective_start,
            Slot.start_time < end,
            Slot.booking_id.is_(None),
            ~_live_hold_exists(now),
        )
        .order_by(Slot.start_time.asc())
        .limit(MAX_LISTING_ROWS)
        .all()
    )


def availability(slot_id: int, now: datetime = None) -> dict:
    now = now or datetime.utcnow()
    slot = db.session.get(Slot, slot_id)
    if slot is None:
        raise SlotNotFound(slot_id)
    hold = holds.get_live_hold(slot_id, now=now)
    confirmed = slot.booking_id is not None
    return {
        "slot_id": slot.id,
        "available": not confirmed and hold is None,
        "confirmed": confirmed,
        "held_until": hold.expires_at.isoformat() if hold else None,
    }


def list_all(start: datetime = None, end: datetime = None):
    """Staff view: every slot with its confirmed booking and current hold."""
    q = (
        db.session.query(Slot, Booking, Hold)
        .outerjoin(Booking, Booking.id == Slot.booking_id)
        .outerjoin(Hold, Hold.slot_id == Slot.id)
    )
    if start:
        q = q.filter(Slot.start_time >= start)
    if end:
        q = q.filter(Slot.start_time < end)
    return q.order_by(Slot.start_time.asc()).all()


def create_slot(staff_member: str, start_time: datetime, end_time: datetime) -> Slot:
    slot = Slot(staff_member=staff_member, start_time=start_time, end_time=end_time)
    db.session.add(slot)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict("This availability slot already exists", code="SLOT_EXISTS") from exc
    logger.info("Slot %s created for %s at %s", slot.id, staff_member, start_time.isoformat())
    return slot


def delete_slot(slot_id: int, now: datetime = None) -> None:
    """
    Staff deletion, allowed only while the slot is unbooked and unheld.
    Leftover expired holds and unpaid attempt records go with it.
    """
    now = now or datetime.utcnow()
    slot = db.session.get(Slot, slot_id)
    if slot is None:
        raise SlotNotFound(slot_id)
    if slot.booking_id is not None or holds.get_live_hold(slot_id, now=now) is not None:
        raise SlotHasBooking(slot_id)

    try:
        db.session.execute(delete(Hold).where(Hold.slot_id == slot_id, Hold.expires_at <= now))
        db.session.execute(
            delete(Booking)
            .where(Booking.slot_id == slot_id, Booking.paid.is_(False), Booking.payment_ref.is_(None))
            .execution_options(synchronize_session=False)
        )
        db.session.delete(slot)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        # A hold or payment landed between the check and the delete
        raise SlotHasBooking(slot_id) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure(f"Failed to delete slot {slot_id}") from exc
    logger.info("Slot %s deleted", slot_id)
