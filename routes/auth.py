from flask import Blueprint, request, jsonify, current_app, g

from models.user import StaffUser
from security.password import verify_password
from security.session import create_session, revoke_session, token_from_request
from utils.audit import log_event
from utils.auth_context import staff_required
from security.rate_limit import check_login_rate
from security.csrf import issue_csrf_token


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify(error="Email and password are required"), 400

    allowed, retry_after = check_login_rate()
    if not allowed:
        log_event("LOGIN_RATE_LIMIT", metadata={"email": email, "retry_after": retry_after})
        return jsonify(error="Too many login requests. Slow down.", retry_after_seconds=retry_after), 429

    user = StaffUser.query.filter_by(email=email).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", actor_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    raw_token = create_session(user.id)
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "debriefslot_session")
    max_age = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    # Token in the body for bearer clients, cookie for the browser admin panel
    resp = jsonify(message="Login OK", token=raw_token)
    resp.set_cookie(
        cookie_name,
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=max_age,
        path="/",
    )

    resp = issue_csrf_token(resp)

    log_event("STAFF_LOGIN", actor_id=user.id)
    return resp, 200


@auth_bp.get("/me")
@staff_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
    ), 200


@auth_bp.post("/logout")
@staff_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "debriefslot_session")
    raw_token, _ = token_from_request()

    revoke_session(raw_token)
    log_event("STAFF_LOGOUT")

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    return resp, 200
