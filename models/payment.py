from datetime import datetime
from enum import Enum

from models.db import db


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobileMoney"


class PaymentEntry(db.Model):
    """One ledger line. Appended, never edited or removed."""

    __tablename__ = "payment_entries"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.String(32), db.ForeignKey("bookings.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)  # whole currency units
    method = db.Column(db.String(20), nullable=False)
    # Gateway reference (checkout id, receipt number); de-duplication key
    external_ref = db.Column(db.String(255), nullable=True, unique=True, index=True)

    recorded_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    booking = db.relationship("Booking", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "method": self.method,
            "at": self.recorded_at.isoformat() if self.recorded_at else None,
            "externalRef": self.external_ref,
        }
