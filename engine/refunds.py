from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from engine.errors import ValidationError
from engine.policy import BookingPolicy
from models.booking import RefundStatus
from utils.clock import slot_start_utc


class Disposition(str, Enum):
    RETAIN = "retain"
    REFUND_NOW = "refund_now"
    REFUND_PENDING = "refund_pending"


@dataclass(frozen=True)
class CancellationOutcome:
    refund_status: RefundStatus
    refund_amount: int
    is_late: bool
    hours_until_appointment: Optional[float]


def hours_until(booking, now: datetime, policy: BookingPolicy) -> Optional[float]:
    start = slot_start_utc(booking.appointment_date, booking.time_slot, policy.business_timezone)
    if start is None:
        return None
    return (start - now).total_seconds() / 3600


def parse_disposition(value) -> Optional[Disposition]:
    if value is None or value == "":
        return None
    if isinstance(value, Disposition):
        return value
    try:
        return Disposition(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            "disposition must be one of retain, refund_now, refund_pending",
            field="disposition",
        )


def default_disposition(is_late: bool, cancelled_by: str) -> Disposition:
    # Clients cancelling outside the window get their deposit back; everyone else
    # must choose explicitly or the deposit is kept.
    if cancelled_by == "client" and not is_late:
        return Disposition.REFUND_PENDING
    return Disposition.RETAIN


def evaluate_cancellation(
    booking,
    now: datetime,
    policy: BookingPolicy,
    disposition=None,
    requested_amount: Optional[int] = None,
    cancelled_by: str = "admin",
) -> CancellationOutcome:
    """
    Decide the refund outcome of cancelling ``booking`` at ``now``.

    Lateness is advisory: it is always computed the same way (an unparseable
    slot counts as already past) but only picks the disposition when the
    caller did not choose one. With nothing paid there is nothing to refund,
    whatever the disposition.
    """
    hours = hours_until(booking, now, policy)
    is_late = True if hours is None else hours < policy.late_cancellation_threshold_hours

    chosen = parse_disposition(disposition) or default_disposition(is_late, cancelled_by)
    if requested_amount is not None and chosen is Disposition.RETAIN:
        raise ValidationError(
            "refundAmount needs a refund_now or refund_pending disposition",
            field="disposition",
        )

    paid = booking.deposit_paid or 0
    if paid <= 0:
        return CancellationOutcome(RefundStatus.NOT_REQUIRED, 0, is_late, hours)

    if chosen is Disposition.RETAIN:
        return CancellationOutcome(RefundStatus.RETAINED, 0, is_late, hours)

    amount = paid if requested_amount is None else int(requested_amount)
    if amount <= 0:
        raise ValidationError("refundAmount must be positive", field="refundAmount")
    if amount > paid:
        raise ValidationError(
            f"refundAmount {amount} exceeds the {paid} paid on this booking",
            field="refundAmount",
        )

    status = RefundStatus.REFUNDED if chosen is Disposition.REFUND_NOW else RefundStatus.PENDING
    return CancellationOutcome(status, amount, is_late, hours)
