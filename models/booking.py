import uuid
from datetime import datetime
from enum import Enum

from models.db import db


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# paid -> confirmed happens only when an added service or fine reopens a balance
ALLOWED_TRANSITIONS = {
    BookingStatus.CONFIRMED: {BookingStatus.PAID, BookingStatus.CANCELLED},
    BookingStatus.PAID: {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.CONFIRMED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = {BookingStatus.COMPLETED, BookingStatus.CANCELLED}


class CancelledBy(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"


class RefundStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    RETAINED = "retained"
    REFUNDED = "refunded"
    PENDING = "pending"


def _new_booking_id() -> str:
    return uuid.uuid4().hex


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.String(32), primary_key=True, default=_new_booking_id)

    client_name = db.Column(db.String(120), nullable=False)
    client_email = db.Column(db.String(255), nullable=False, index=True)  # normalized
    client_phone = db.Column(db.String(30), nullable=False)

    service = db.Column(db.String(255), nullable=False)
    source = db.Column(db.String(20), nullable=False, default="online")  # online, walk_in
    appointment_date = db.Column(db.Date, nullable=False, index=True)
    time_slot = db.Column(db.String(40), nullable=False)

    # Money is stored in whole currency units
    original_price = db.Column(db.Integer, nullable=False)
    discount = db.Column(db.Integer, nullable=False, default=0)
    discount_percent = db.Column(db.Integer, nullable=False, default=0)
    discount_source = db.Column(db.String(40), nullable=True)  # returning_client_30, referral, prize...
    promo_code = db.Column(db.String(40), nullable=True)
    final_price = db.Column(db.Integer, nullable=False)
    deposit_paid = db.Column(db.Integer, nullable=False, default=0)

    fine_amount = db.Column(db.Integer, nullable=True)
    fine_reason = db.Column(db.String(255), nullable=True)
    fine_added_at = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True)
    paid_in_full_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    calendar_event_id = db.Column(db.String(255), nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.String(20), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    refund_status = db.Column(db.String(20), nullable=True)
    refund_amount = db.Column(db.Integer, nullable=True)
    refund_notes = db.Column(db.String(255), nullable=True)
    refund_external_ref = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)

    rescheduled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Every UPDATE is checked against this counter (optimistic concurrency)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    additional_services = db.relationship(
        "ServiceLine",
        order_by="ServiceLine.id",
        cascade="all, delete-orphan",
        lazy="selectin",
        back_populates="booking",
    )
    payments = db.relationship(
        "PaymentEntry",
        order_by="PaymentEntry.id",
        cascade="all, delete-orphan",
        lazy="selectin",
        back_populates="booking",
    )
    reschedule_history = db.relationship(
        "RescheduleEntry",
        order_by="RescheduleEntry.id",
        cascade="all, delete-orphan",
        lazy="selectin",
        back_populates="booking",
    )
    slot_hold = db.relationship(
        "SlotHold",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
        back_populates="booking",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Booking id={self.id} status={self.status} final={self.final_price} paid={self.deposit_paid}>"

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    @property
    def fine(self):
        if self.fine_amount is None:
            return None
        return {"amount": self.fine_amount, "reason": self.fine_reason, "addedAt": _iso(self.fine_added_at)}

    @property
    def balance_due(self) -> int:
        return max(self.final_price - self.deposit_paid, 0)

    @property
    def is_paid_in_full(self) -> bool:
        return self.deposit_paid >= self.final_price

    def expected_final_price(self) -> int:
        extras = sum(line.price for line in self.additional_services)
        return self.original_price - self.discount + extras + (self.fine_amount or 0)

    def recompute_final_price(self) -> int:
        self.final_price = self.expected_final_price()
        return self.final_price

    def transition_to(self, new_status: BookingStatus):
        from engine.errors import InvalidState

        current = self.status_enum
        if new_status == current:
            return
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidState(
                f"Cannot move booking from {current.value} to {new_status.value}",
                status=current.value,
            )
        self.status = new_status.value

    def to_dict(self) -> dict:
        cancelled = self.status == BookingStatus.CANCELLED.value
        return {
            "id": self.id,
            "name": self.client_name,
            "email": self.client_email,
            "phone": self.client_phone,
            "service": self.service,
            "source": self.source,
            "date": self.appointment_date.isoformat(),
            "timeSlot": self.time_slot,
            "originalPrice": self.original_price,
            "discount": self.discount,
            "discountPercent": self.discount_percent,
            "discountSource": self.discount_source,
            "promoCode": self.promo_code,
            "finalPrice": self.final_price,
            "depositPaid": self.deposit_paid,
            "balanceDue": self.balance_due,
            "additionalServices": [line.to_dict() for line in self.additional_services],
            "fine": self.fine,
            "payments": [p.to_dict() for p in self.payments],
            "status": self.status,
            "paidInFullAt": _iso(self.paid_in_full_at),
            "completedAt": _iso(self.completed_at),
            "calendarEventId": self.calendar_event_id,
            "cancellation": {
                "cancelledAt": _iso(self.cancelled_at),
                "cancelledBy": self.cancelled_by,
                "reason": self.cancellation_reason,
                "refundStatus": self.refund_status,
                "refundAmount": self.refund_amount,
                "refundNotes": self.refund_notes,
                "refundedAt": _iso(self.refunded_at),
            } if cancelled else None,
            "rescheduleHistory": [r.to_dict() for r in self.reschedule_history],
            "createdAt": _iso(self.created_at),
            "version": self.version_id,
        }


class ServiceLine(db.Model):
    __tablename__ = "booking_service_lines"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.String(32), db.ForeignKey("bookings.id"), nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Integer, nullable=False)
    added_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    booking = db.relationship("Booking", back_populates="additional_services")

    def to_dict(self) -> dict:
        return {"name": self.name, "price": self.price, "addedAt": _iso(self.added_at)}


class RescheduleEntry(db.Model):
    __tablename__ = "booking_reschedules"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.String(32), db.ForeignKey("bookings.id"), nullable=False, index=True)
    from_date = db.Column(db.Date, nullable=False)
    from_slot = db.Column(db.String(40), nullable=False)
    to_date = db.Column(db.Date, nullable=False)
    to_slot = db.Column(db.String(40), nullable=False)
    rescheduled_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    rescheduled_by = db.Column(db.String(80), nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    booking = db.relationship("Booking", back_populates="reschedule_history")

    def to_dict(self) -> dict:
        return {
            "fromDate": self.from_date.isoformat(),
            "fromSlot": self.from_slot,
            "toDate": self.to_date.isoformat(),
            "toSlot": self.to_slot,
            "at": _iso(self.rescheduled_at),
            "by": self.rescheduled_by,
            "notes": self.notes,
        }


class SlotHold(db.Model):
    """Index row for a non-cancelled booking's (date, slot) pair."""

    __tablename__ = "slot_holds"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.String(32), db.ForeignKey("bookings.id"), nullable=False, unique=True)
    appointment_date = db.Column(db.Date, nullable=False)
    time_slot = db.Column(db.String(40), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    booking = db.relationship("Booking", back_populates="slot_hold")

    __table_args__ = (
        # Hard business-rule: one active booking per slot (prevents double booking)
        db.UniqueConstraint("appointment_date", "time_slot", name="uq_slot_hold_date_slot"),
    )


def _iso(value):
    return value.isoformat() if value else None
