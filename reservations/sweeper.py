import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from reservations import holds, ledger
from reservations.errors import StorageFailure
from security.rate_limit import purge_expired_buckets
from utils.audit import log_event

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    holds_deleted: int = 0
    bookings_abandoned: int = 0
    bookings_purged: int = 0
    rate_limits_evicted: int = 0
    failures: int = 0

    def to_dict(self):
        return asdict(self)

    @property
    def changed(self) -> bool:
        return any((self.holds_deleted, self.bookings_abandoned, self.bookings_purged))


def _sweep_hold(slot_id: int, now: datetime, result: SweepResult):
    # One unit per hold: the hold delete and the abandonments commit together.
    if not holds.delete_if_expired(slot_id, now):
        db.session.rollback()
        logger.debug("Hold on slot %s was re-acquired before the sweep reached it", slot_id)
        return

    abandoned = 0
    for booking in ledger.pending_for_slot(slot_id):
        if ledger.mark_abandoned(booking, now):
            abandoned += 1
    db.session.commit()

    result.holds_deleted += 1
    result.bookings_abandoned += abandoned
    logger.info("Expired hold on slot %s removed, %s booking(s) abandoned", slot_id, abandoned)


def _abandon_stale_pending(now: datetime, result: SweepResult):
    """
    Pending bookings older than the hold TTL whose hold is already gone,
    e.g. an attempt whose expired hold was taken over by another client
    before a sweep ran.
    """
    stale = ledger.stale_pending(now - holds.hold_ttl())
    abandoned = 0
    for booking in stale:
        if ledger.mark_abandoned(booking, now):
            abandoned += 1
    if abandoned:
        db.session.commit()
        logger.info("Abandoned %s stale pending booking(s)", abandoned)
    result.bookings_abandoned += abandoned


def sweep(now: datetime = None) -> SweepResult:
    """
    Reclaims expired holds, abandons their unpaid bookings and purges
    abandoned bookings past the retention window.
    """
    now = now or datetime.utcnow()
    result = SweepResult()

    expired_slot_ids = [h.slot_id for h in holds.find_expired(now)]
    for slot_id in expired_slot_ids:
        try:
            _sweep_hold(slot_id, now, result)
        except (SQLAlchemyError, StorageFailure):
            db.session.rollback()
            result.failures += 1
            logger.exception("Sweeping hold on slot %s failed; retrying next pass", slot_id)

    try:
        _abandon_stale_pending(now, result)
    except SQLAlchemyError:
        db.session.rollback()
        result.failures += 1
        logger.exception("Abandoning stale pending bookings failed")

    retention = timedelta(days=current_app.config.get("ABANDONED_RETENTION_DAYS", 120))
    try:
        result.bookings_purged = ledger.purge_abandoned(now - retention)
    except StorageFailure:
        result.failures += 1
        logger.exception("Purging abandoned bookings failed")

    try:
        result.rate_limits_evicted = purge_expired_buckets(now)
    except StorageFailure:
        result.failures += 1
        logger.exception("Evicting rate limit buckets failed")

    if result.changed or result.failures:
        log_event("SWEEP_COMPLETED", entity="sweeper", metadata=result.to_dict())
    logger.info("Sweep finished: %s", result.to_dict())
    return result


def run_sweeper_job(app):
    with app.app_context():
        try:
            sweep()
        except Exception:
            # Keep the scheduler alive; next interval retries.
            logger.exception("Sweeper job crashed")
        finally:
            db.session.remove()


def start_scheduler(app) -> BackgroundScheduler:
    interval = app.config.get("SWEEP_INTERVAL_SECONDS", 300)
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        run_sweeper_job,
        "interval",
        seconds=interval,
        args=[app],
        id="expiry_sweeper",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(),
    )
    scheduler.start()
    logger.info("Expiry sweeper scheduled every %ss", interval)
    return scheduler
