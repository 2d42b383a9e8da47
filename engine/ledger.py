from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from engine.errors import InvalidAmount, ValidationError
from engine.events import EngineEvent
from models.booking import BookingStatus
from models.payment import PaymentEntry, PaymentMethod

# Revenue is recorded here only for money that moved through the till or a card
# terminal; mobile money is reconciled by its gateway adapter.
REVENUE_METHODS = {PaymentMethod.CASH, PaymentMethod.CARD}


@dataclass
class LedgerResult:
    booking: object
    entry: Optional[PaymentEntry] = None
    duplicate: bool = False
    just_completed_payment: bool = False
    notice: Optional[str] = None
    events: list = field(default_factory=list)


def parse_method(value) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    raw = (value or "").strip()
    aliases = {"mobile_money": "mobileMoney", "mpesa": "mobileMoney", "mobilemoney": "mobileMoney"}
    raw = aliases.get(raw.lower(), raw)
    try:
        return PaymentMethod(raw)
    except ValueError:
        raise ValidationError("method must be one of cash, card, mobileMoney", field="method")


def find_entry(booking, external_ref: str):
    for entry in booking.payments:
        if entry.external_ref == external_ref:
            return entry
    return None


def add_payment(booking, amount, method, external_ref: Optional[str] = None, now: datetime = None) -> LedgerResult:
    """
    Append a payment to ``booking`` and settle its status.

    A repeated ``external_ref`` is a no-op that reports ``duplicate``. Zero
    amounts are accepted only from card or mobile-money gateways, and only with
    an ``external_ref``: they record a notification without moving money.
    Crossing paid-in-full stamps ``paid_in_full_at`` once; later crossings (after
    a reopened balance) do not report ``just_completed_payment`` again.
    """
    method = parse_method(method)
    external_ref = (external_ref or "").strip() or None

    if external_ref and find_entry(booking, external_ref) is not None:
        return LedgerResult(
            booking=booking,
            duplicate=True,
            notice=f"Payment {external_ref} already recorded",
        )

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("amount must be a whole number", field="amount")
    if amount < 0:
        raise InvalidAmount("amount must not be negative", field="amount")
    if amount == 0 and (method is PaymentMethod.CASH or not external_ref):
        raise InvalidAmount(
            "A zero amount is only accepted as a gateway notification with an externalRef",
            field="amount",
        )

    entry = PaymentEntry(amount=amount, method=method.value, external_ref=external_ref, recorded_at=now)
    booking.payments.append(entry)
    booking.deposit_paid = (booking.deposit_paid or 0) + amount

    result = LedgerResult(booking=booking, entry=entry)

    if amount > 0 and method in REVENUE_METHODS:
        result.events.append(EngineEvent("payment_recorded", booking.id, {
            "booking_id": booking.id,
            "amount": amount,
            "method": method.value,
            "date": now.isoformat() if now else None,
        }))

    if booking.status_enum is BookingStatus.CANCELLED:
        result.notice = "Payment recorded against a cancelled booking"
    else:
        result.just_completed_payment, events = settle_status(booking, now, method.value)
        result.events.extend(events)

    return result


def settle_status(booking, now: datetime, method: Optional[str] = None) -> tuple[bool, list]:
    """
    Move a confirmed booking to paid once its deposit covers the final price.

    Returns (just_completed_payment, events). ``paid_in_full_at`` is stamped
    only the first time, so re-delivered notifications never fire paid_in_full
    twice.
    """
    if booking.status_enum not in (BookingStatus.CONFIRMED, BookingStatus.PAID):
        return False, []
    if not booking.is_paid_in_full:
        return False, []

    booking.transition_to(BookingStatus.PAID)
    if booking.paid_in_full_at is not None:
        return False, []

    booking.paid_in_full_at = now
    return True, [EngineEvent("paid_in_full", booking.id, {
        "booking_id": booking.id,
        "email": booking.client_email,
        "name": booking.client_name,
        "final_price": booking.final_price,
        "deposit_paid": booking.deposit_paid,
        "method": method,
    })]


def reopen_if_underpaid(booking) -> None:
    # An added service or fine can push a paid booking back under its total
    if booking.status_enum is BookingStatus.PAID and not booking.is_paid_in_full:
        booking.transition_to(BookingStatus.CONFIRMED)
