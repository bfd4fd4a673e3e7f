from datetime import datetime, timedelta

from flask import current_app, request
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.rate_limit import RateLimitBucket
from reservations.errors import StorageFailure


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    return forwarded.split(",")[0].strip() or request.remote_addr or "unknown"


def check_and_increment(scope: str, window_seconds: int, max_requests: int, now: datetime = None) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    Fixed window per (scope, client IP), stored in the database so every
    instance shares the same counters.
    """
    key = f"{scope}:{client_ip()}"[:128]
    now = now or datetime.utcnow()

    row = RateLimitBucket.query.filter_by(key=key).first()
    if not row:
        row = RateLimitBucket(key=key, window_start=now, window_seconds=window_seconds, count=0)
        db.session.add(row)

    window_end = row.window_start + timedelta(seconds=window_seconds)

    # Reset window if expired
    if now >= window_end:
        row.window_start = now
        row.window_seconds = window_seconds
        row.count = 0
        window_end = row.window_start + timedelta(seconds=window_seconds)

    row.count += 1
    try:
        db.session.commit()
    except IntegrityError:
        # Another instance created the bucket first; count this request as allowed.
        db.session.rollback()
        return True, 0

    if row.count > max_requests:
        retry_after = int((window_end - now).total_seconds())
        return False, max(retry_after, 1)

    return True, 0


def check_login_rate() -> tuple[bool, int]:
    return check_and_increment(
        "login",
        current_app.config.get("LOGIN_RATE_WINDOW_SECONDS", 60),
        current_app.config.get("LOGIN_RATE_MAX_REQUESTS", 10),
    )


def check_reserve_rate() -> tuple[bool, int]:
    return check_and_increment(
        "reserve",
        current_app.config.get("RESERVE_RATE_WINDOW_SECONDS", 3600),
        current_app.config.get("RESERVE_RATE_MAX_REQUESTS", 20),
    )


def check_contact_rate() -> tuple[bool, int]:
    return check_and_increment(
        "contact",
        current_app.config.get("CONTACT_RATE_WINDOW_SECONDS", 3600),
        current_app.config.get("CONTACT_RATE_MAX_REQUESTS", 5),
    )


def purge_expired_buckets(now: datetime = None) -> int:
    """TTL eviction: drops buckets whose window has closed."""
    now = now or datetime.utcnow()
    buckets = RateLimitBucket.query.with_entities(
        RateLimitBucket.id, RateLimitBucket.window_start, RateLimitBucket.window_seconds
    ).all()
    expired_ids = [
        b.id for b in buckets
        if b.window_start + timedelta(seconds=b.window_seconds) <= now
    ]
    if not expired_ids:
        return 0
    try:
        result = db.session.execute(delete(RateLimitBucket).where(RateLimitBucket.id.in_(expired_ids)))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure("Failed to evict rate limit buckets") from exc
    return result.rowcount
