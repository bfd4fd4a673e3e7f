"""Outbound side of the payment gateway (Stripe PaymentIntents)."""
import logging
from dataclasses import dataclass

import stripe
from flask import current_app

from reservations.errors import UpstreamFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentHandle:
    ref: str            # gateway intent id
    client_secret: str  # handed to the browser to complete payment


def request_payment(amount: int, currency: str, metadata: dict, description: str = None) -> PaymentHandle:
    """
    Creates a PaymentIntent carrying the booking/slot correlation ids in its
    metadata. Any gateway or configuration problem is an UpstreamFailure.
    """
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise UpstreamFailure("Payment processing is not configured on the server", code="PAYMENT_NOT_CONFIGURED")

    stripe.api_key = api_key
    booking_id = metadata.get("booking_id")
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount,
            currency=currency,
            metadata={k: str(v) for k, v in metadata.items() if v is not None},
            description=description,
            idempotency_key=f"booking-{booking_id}" if booking_id else None,
        )
    except stripe.StripeError as exc:
        logger.warning("Stripe refused PaymentIntent for booking %s: %s", booking_id, exc)
        raise UpstreamFailure(getattr(exc, "user_message", None) or "Payment provider error") from exc

    logger.info("PaymentIntent %s created for booking %s", intent.id, booking_id)
    return PaymentHandle(ref=intent.id, client_secret=intent.client_secret)


def verify_webhook(payload: bytes, sig_header: str) -> None:
    """Raises ValueError when the payload is not signed by our webhook secret."""
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise RuntimeError("Webhook secret not configured")
    if not sig_header:
        raise ValueError("Missing Stripe signature")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), sig_header, secret)
    except stripe.SignatureVerificationError as exc:
        raise ValueError(str(exc)) from exc
