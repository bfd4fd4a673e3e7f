import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import delete, literal, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.hold import Hold
from models.slot import Slot
from reservations.errors import SlotAlreadyConfirmed, SlotHeldByOther, SlotNotFound, StorageFailure

logger = logging.getLogger(__name__)

holds_table = Hold.__table__

# Dialects with INSERT ... ON CONFLICT DO UPDATE ... WHERE
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def hold_ttl() -> timedelta:
    return timedelta(minutes=current_app.config.get("HOLD_TTL_MINUTES", 15))


def _upsert_insert():
    dialect = db.session.get_bind().dialect.name
    try:
        return _UPSERT_INSERTS[dialect]
    except KeyError:
        raise StorageFailure(f"Hold upsert is not supported on {dialect}")


def acquire_or_refresh(slot_id: int, ttl: timedelta = None, now: datetime = None) -> Hold:
    """
    Claims the slot for ``ttl`` (default HOLD_TTL_MINUTES).

    A live hold is never extended by another acquire: the slot is refused
    with SlotHeldByOther until the hold is released or expires. An expired
    hold is replaced in place by the same conditional write, so two
    concurrent acquirers can never both win.
    """
    now = now or datetime.utcnow()
    ttl = ttl or hold_ttl()

    slot = db.session.get(Slot, slot_id)
    if slot is None:
        raise SlotNotFound(slot_id)
    if slot.booking_id is not None:
        raise SlotAlreadyConfirmed(slot_id)

    insert = _upsert_insert()
    # The row comes from the slot itself, so a slot linked to a booking
    # in the meantime yields nothing to insert or update.
    unlinked_slot = select(
        Slot.id,
        literal(now + ttl, type_=db.DateTime),
        literal(now, type_=db.DateTime),
        literal(now, type_=db.DateTime),
    ).where(Slot.id == slot_id, Slot.booking_id.is_(None))
    stmt = insert(holds_table).from_select(
        ["slot_id", "expires_at", "created_at", "updated_at"],
        unlinked_slot,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["slot_id"],
        set_={
            "expires_at": stmt.excluded.expires_at,
            "created_at": stmt.excluded.created_at,
            "updated_at": stmt.excluded.updated_at,
        },
        where=holds_table.c.expires_at <= now,
    )

    try:
        result = db.session.execute(stmt)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Hold upsert failed for slot %s", slot_id)
        raise StorageFailure("Failed to create or update hold on the slot") from exc

    if result.rowcount == 0:
        slot = db.session.get(Slot, slot_id, populate_existing=True)
        if slot is None:
            raise SlotNotFound(slot_id)
        if slot.booking_id is not None:
            logger.info("Slot %s was confirmed while acquiring a hold", slot_id)
            raise SlotAlreadyConfirmed(slot_id)
        existing = get_live_hold(slot_id, now=now)
        logger.info("Slot %s already held until %s", slot_id, existing.expires_at if existing else "?")
        raise SlotHeldByOther(slot_id, existing.expires_at if existing else None)

    hold = Hold.query.filter_by(slot_id=slot_id).one()
    # The row may already sit in the identity map from an earlier read
    db.session.refresh(hold)
    logger.info("Hold placed on slot %s until %s", slot_id, hold.expires_at.isoformat())
    return hold


def release(slot_id: int, commit: bool = True) -> bool:
    """
    Deletes the slot's hold. Returns False when there was nothing to delete.
    With commit=False the delete joins the caller's transaction.
    """
    try:
        result = db.session.execute(delete(holds_table).where(holds_table.c.slot_id == slot_id))
        if commit:
            db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure("Failed to release hold") from exc

    released = result.rowcount > 0
    if released:
        logger.info("Hold released for slot %s", slot_id)
    else:
        logger.debug("No hold to release for slot %s", slot_id)
    return released


def delete_if_expired(slot_id: int, now: datetime) -> bool:
    """Joins the caller's transaction; a hold re-acquired meanwhile is left alone."""
    result = db.session.execute(
        delete(holds_table).where(
            holds_table.c.slot_id == slot_id,
            holds_table.c.expires_at < now,
        )
    )
    return result.rowcount > 0


def get_live_hold(slot_id: int, now: datetime = None):
    now = now or datetime.utcnow()
    return Hold.query.filter(Hold.slot_id == slot_id, Hold.expires_at > now).first()


def find_expired(now: datetime = None):
    now = now or datetime.utcnow()
    return Hold.query.filter(Hold.expires_at < now).order_by(Hold.expires_at.asc()).all()
