from datetime import datetime, timedelta

from models import db
from models.audit_log import AuditLog
from models.booking import Booking, BookingStatus
from models.hold import Hold
from models.rate_limit import RateLimitBucket
from reservations import holds, ledger, slots as slot_store, sweeper
from tests.conftest import fresh


def _reserve(slot, email="jane@example.com"):
    holds.acquire_or_refresh(slot.id)
    return ledger.create_provisional(slot.id, "Jane Doe", email, "07700900000", 10000, "gbp")


def test_sweep_reclaims_expired_hold_and_abandons_booking(app, make_slot):
    slot = make_slot()
    booking = _reserve(slot)
    later = datetime.utcnow() + timedelta(minutes=16)

    result = sweeper.sweep(now=later)

    assert result.holds_deleted == 1
    assert result.bookings_abandoned == 1
    assert Hold.query.count() == 0
    booking = fresh(Booking, booking.id)
    assert booking.status == BookingStatus.ABANDONED
    assert booking.cancel_reason == "hold_expired"
    assert AuditLog.query.filter_by(action="SWEEP_COMPLETED").count() == 1

    cutoff = datetime.utcnow()
    listed = slot_store.list_available(cutoff, cutoff + timedelta(days=7), cutoff, now=later)
    assert slot.id in [s.id for s in listed]


def test_sweep_leaves_live_holds_alone(app, make_slot):
    slot = make_slot()
    booking = _reserve(slot)

    result = sweeper.sweep(now=datetime.utcnow() + timedelta(minutes=5))

    assert result.holds_deleted == 0
    assert result.bookings_abandoned == 0
    assert holds.get_live_hold(slot.id) is not None
    assert fresh(Booking, booking.id).status == BookingStatus.PENDING
    assert AuditLog.query.filter_by(action="SWEEP_COMPLETED").count() == 0


def test_sweep_never_touches_confirmed_booking(app, make_slot):
    slot = make_slot()
    booking = _reserve(slot)
    ledger.confirm(booking.id, slot.id, "pi_paid")

    result = sweeper.sweep(now=datetime.utcnow() + timedelta(minutes=30))

    assert result.bookings_abandoned == 0
    assert fresh(Booking, booking.id).status == BookingStatus.CONFIRMED


def test_sweep_abandons_attempt_whose_hold_was_taken_over(app, make_slot):
    slot = make_slot()
    first = _reserve(slot, email="first@example.com")
    later = datetime.utcnow() + timedelta(minutes=16)

    # Another client takes the expired hold before any sweep ran
    holds.acquire_or_refresh(slot.id, now=later)
    second = ledger.create_provisional(slot.id, "Second", "second@example.com", "2", 10000, "gbp")
    second.created_at = later
    db.session.commit()

    result = sweeper.sweep(now=later + timedelta(seconds=1))

    assert result.holds_deleted == 0
    assert fresh(Booking, first.id).status == BookingStatus.ABANDONED
    assert fresh(Booking, second.id).status == BookingStatus.PENDING
    assert holds.get_live_hold(slot.id, now=later + timedelta(seconds=1)) is not None


def test_sweep_purges_abandoned_after_retention(app, make_slot):
    slot = make_slot()
    booking = _reserve(slot)
    sweeper.sweep(now=datetime.utcnow() + timedelta(minutes=16))
    booking_id = booking.id

    result = sweeper.sweep(now=datetime.utcnow() + timedelta(days=121))

    assert result.bookings_purged == 1
    assert fresh(Booking, booking_id) is None


def test_sweep_evicts_closed_rate_limit_windows(app):
    now = datetime.utcnow()
    db.session.add(RateLimitBucket(key="login:1.2.3.4", window_start=now - timedelta(hours=2), window_seconds=60, count=3))
    db.session.add(RateLimitBucket(key="login:5.6.7.8", window_start=now, window_seconds=60, count=1))
    db.session.commit()

    result = sweeper.sweep(now=now + timedelta(seconds=1))

    assert result.rate_limits_evicted == 1
    assert [b.key for b in RateLimitBucket.query.all()] == ["login:5.6.7.8"]


def test_run_sweeper_job_survives_errors(app, monkeypatch):
    def boom(now=None):
        raise RuntimeError("db gone")

    monkeypatch.setattr(sweeper, "sweep", boom)
    sweeper.run_sweeper_job(app)


def test_sweep_drops_leftover_hold_of_confirmed_booking(app, make_slot):
    slot = make_slot()
    booking = _reserve(slot)
    booking.status = BookingStatus.CONFIRMED
    booking.paid = True
    booking.payment_ref = "pi_paid"
    slot.booking_id = booking.id
    db.session.commit()
    assert Hold.query.filter_by(slot_id=slot.id).count() == 1

    result = sweeper.sweep(now=datetime.utcnow() + timedelta(minutes=16))

    assert result.holds_deleted == 1
    assert result.bookings_abandoned == 0
    assert Hold.query.count() == 0
    assert fresh(Booking, booking.id).status == BookingStatus.CONFIRMED
