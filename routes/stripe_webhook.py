import json
import logging

from flask import Blueprint, request, jsonify

from reservations import confirmation, gateway
from reservations.errors import StorageFailure

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

SUCCEEDED_EVENTS = {"payment_intent.succeeded"}
FAILED_EVENTS = {"payment_intent.payment_failed", "payment_intent.canceled"}


@webhook_bp.post("/stripe")
def stripe_webhook():
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    try:
        gateway.verify_webhook(payload, sig_header)
    except RuntimeError:
        logger.error("Stripe webhook called but STRIPE_WEBHOOK_SECRET is not configured")
        return jsonify(error="Webhook secret not configured"), 500
    except ValueError as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        return jsonify(error="Invalid webhook signature"), 400

    try:
        event = json.loads(payload)
    except ValueError:
        return jsonify(error="Invalid payload"), 400

    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}
    metadata = intent.get("metadata") or {}
    intent_id = intent.get("id")

    try:
        if event_type in SUCCEEDED_EVENTS:
            outcome = confirmation.handle_payment_succeeded(metadata, intent_id)
        elif event_type in FAILED_EVENTS:
            outcome = confirmation.handle_payment_failed(metadata, intent_id)
        else:
            logger.info("Webhook: received unhandled event type %s", event_type)
            outcome = "unhandled"
    except StorageFailure as exc:
        # Not acknowledged: Stripe retries delivery
        logger.error("Webhook %s for %s not processed: %s", event_type, intent_id, exc)
        return jsonify(error="Webhook database error"), 500

    return jsonify(received=True, outcome=outcome), 200
