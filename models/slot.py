from datetime import datetime
from models.db import db

class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    staff_member = db.Column(db.String(80), nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    # Linked only when a booking is confirmed; unique so a slot is sold once.
    booking_id = db.Column(
        db.Integer,
        db.ForeignKey("bookings.id", use_alter=True, name="fk_slots_booking_id"),
        nullable=True,
        unique=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("staff_member", "start_time", "end_time", name="uq_staff_timeslot"),
    )

    @property
    def date(self):
        return self.start_time.date()

    def to_dict(self):
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "staff_member": self.staff_member,
        }
