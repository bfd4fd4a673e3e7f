from datetime import datetime
from models.db import db


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ABANDONED = "ABANDONED"
    CANCELLED = "CANCELLED"

    TERMINAL = (CONFIRMED, ABANDONED, CANCELLED)


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    # Not unique: a slot collects abandoned/cancelled attempts over time.
    # The single confirmed booking is the one linked from slots.booking_id.
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(30), nullable=False)

    amount = db.Column(db.Integer, nullable=False)  # smallest unit (pence)
    currency = db.Column(db.String(10), nullable=False, default="gbp")

    paid = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING, index=True)

    payment_ref = db.Column(db.String(255), nullable=True, unique=True)
    gateway_intent_id = db.Column(db.String(255), nullable=True, index=True)
    cancel_reason = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "amount": self.amount,
            "currency": self.currency,
            "paid": self.paid,
            "status": self.status,
            "payment_ref": self.payment_ref,
            "created_at": self.created_at.isoformat(),
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }
