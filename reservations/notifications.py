"""Booking confirmation emails. Fire-and-forget: nothing here raises."""
import logging

from flask import current_app

from utils import emailer

logger = logging.getLogger(__name__)


def _format_amount(amount: int, currency: str) -> str:
    symbol = "£" if (currency or "").lower() == "gbp" else f"{(currency or '').upper()} "
    return f"{symbol}{amount / 100:.2f}"


def _format_when(slot) -> str:
    return f"{slot.start_time:%A %d %B %Y}, {slot.start_time:%H:%M}-{slot.end_time:%H:%M}"


def _deliver(kind: str, booking, to_email: str, subject: str, body: str) -> bool:
    try:
        sent, error = emailer.send_email(to_email, subject, body)
    except Exception:
        logger.exception("%s email for booking %s crashed", kind, booking.id)
        return False
    if not sent:
        logger.warning("%s email for booking %s not sent: %s", kind, booking.id, error)
    return sent


def notify_client_confirmed(booking, slot) -> bool:
    body = (
        f"Dear {booking.name},\n\n"
        f"Your consultation is confirmed.\n\n"
        f"When: {_format_when(slot)}\n"
        f"With: {slot.staff_member.title()}\n"
        f"Booking reference: {booking.id}\n"
        f"Amount paid: {_format_amount(booking.amount, booking.currency)}\n\n"
        "If you need to change anything, simply reply to this email.\n"
    )
    return _deliver("Client confirmation", booking, booking.email, "Your booking is confirmed", body)


def notify_staff_confirmed(booking, slot) -> bool:
    team_email = current_app.config.get("TEAM_EMAIL_ADDRESS")
    if not team_email:
        logger.warning("TEAM_EMAIL_ADDRESS not set; staff not notified of booking %s", booking.id)
        return False

    body = (
        "A new booking has been paid.\n\n"
        f"Client: {booking.name}\n"
        f"Email: {booking.email}\n"
        f"Phone: {booking.phone}\n"
        f"When: {_format_when(slot)}\n"
        f"Staff: {slot.staff_member}\n"
        f"Booking ID: {booking.id}\n"
        f"Amount: {_format_amount(booking.amount, booking.currency)}\n"
        f"Payment reference: {booking.payment_ref}\n"
    )
    return _deliver("Staff notification", booking, team_email, f"New booking: {booking.name}", body)
