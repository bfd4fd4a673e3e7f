import logging
from datetime import datetime

from flask import Blueprint, request, jsonify, current_app

from security.rate_limit import check_contact_rate, client_ip as request_ip
from utils import emailer
from utils.audit import log_event

logger = logging.getLogger(__name__)

contact_bp = Blueprint("contact", __name__)

FIELD_LIMITS = {"name": 100, "email": 100, "subject": 200, "message": 2000}
MIN_MESSAGE_LENGTH = 5


def _validate(data):
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    subject = (data.get("subject") or "").strip() or None
    message = (data.get("message") or "").strip()

    errors = {}
    if not name:
        errors["name"] = "Name is required"
    if not email or "@" not in email or email.startswith("@") or email.endswith("@"):
        errors["email"] = "Please enter a valid email address"
    if len(message) < MIN_MESSAGE_LENGTH:
        errors["message"] = f"Message must be at least {MIN_MESSAGE_LENGTH} characters"

    values = {"name": name, "email": email, "subject": subject, "message": message}
    for field, limit in FIELD_LIMITS.items():
        if values[field] and len(values[field]) > limit:
            errors[field] = f"{field.capitalize()} must be less than {limit} characters"
    return values, errors


# ---------- PUBLIC: contact form ----------
@contact_bp.post("/contact")
def submit_contact():
    client_ip = request_ip()

    allowed, retry_after = check_contact_rate()
    if not allowed:
        logger.warning("Contact form rate limit exceeded for %s", client_ip)
        return jsonify(
            error="Too many submissions. Please wait before sending another message.",
            success=False,
            retry_after_seconds=retry_after,
        ), 429

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify(error="Invalid request format. Please try again.", success=False), 400

    values, errors = _validate(data)
    if errors:
        readable = "; ".join(f"{field}: {msg}" for field, msg in errors.items())
        return jsonify(error=f"Please fix the following: {readable}", details=errors, success=False), 400

    # Honeypot: the field is hidden from people, bots fill it in
    if (data.get("website") or "").strip():
        logger.warning("Contact form honeypot triggered from %s", client_ip)
        log_event("CONTACT_HONEYPOT", entity="contact", metadata={"email": values["email"]})
        return jsonify(error="Please try again later.", success=False), 400

    team_email = current_app.config.get("TEAM_EMAIL_ADDRESS")
    body = values["message"]
    if values["subject"]:
        body = f"Subject: {values['subject']}\n\n{body}"
    body = (
        f"From: {values['name']} <{values['email']}>\n\n"
        f"{body}\n\n---\n"
        f"Submitted from: {client_ip}\n"
        f"Timestamp: {datetime.utcnow().isoformat()}Z\n"
    )

    sent, error = emailer.send_email(team_email, f"Contact form: {values['name']}", body)
    if not sent:
        logger.error("Contact form email from %s not sent: %s", values["email"], error)
        if error in ("Email not configured", "No recipient"):
            return jsonify(
                error="Email service temporarily unavailable. Please try again later.",
                success=False,
                code="EMAIL_SERVICE_ERROR",
            ), 503
        return jsonify(error="Unable to send your message right now. Please try again.", success=False), 500

    log_event("CONTACT_MESSAGE", entity="contact", metadata={"email": values["email"], "subject": values["subject"]})
    return jsonify(
        success=True,
        message="Your message has been sent successfully. We'll get back to you within 24 hours!",
    ), 200
