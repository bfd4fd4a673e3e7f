from datetime import datetime
from models.db import db

class Hold(db.Model):
    __tablename__ = "holds"

    id = db.Column(db.Integer, primary_key=True)

    # One hold per slot: the storage-level mutual exclusion for checkout
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, unique=True, index=True)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now
