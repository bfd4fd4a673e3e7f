import hmac
from functools import wraps
from flask import current_app, g, jsonify, request
from security.session import get_session, token_from_request
from models import db
from models.user import StaffUser

def load_current_user():
    """Auth collaborator: any resolved staff principal is authorized for staff routes."""
    raw_token, via_cookie = token_from_request()
    g.user = None
    g.session = None
    g.auth_via_cookie = False

    sess = get_session(raw_token)
    if not sess:
        return
    user = db.session.get(StaffUser, sess.user_id)
    if user is None or not user.is_active:
        return
    g.session = sess
    g.user = user
    g.auth_via_cookie = via_cookie

def staff_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Unauthorized", message="Valid authentication token required."), 401
        return fn(*args, **kwargs)
    return wrapper

def staff_or_cron_required(fn):
    """Staff session, or the scheduler's `Authorization: Bearer <CRON_JOB_SECRET>`."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is not None:
            return fn(*args, **kwargs)
        cron_secret = current_app.config.get("CRON_JOB_SECRET")
        provided = request.headers.get("Authorization", "")
        if cron_secret and hmac.compare_digest(provided, f"Bearer {cron_secret}"):
            g.via_cron = True
            return fn(*args, **kwargs)
        return jsonify(error="Unauthorized", message="Valid authentication token required."), 401
    return wrapper
