from datetime import date, datetime

import pytest

from engine.errors import InvalidState, ValidationError
from engine.ledger import add_payment, parse_method, reopen_if_underpaid
from models.booking import Booking, BookingStatus
from models.payment import PaymentMethod

NOW = datetime(2026, 3, 2, 6, 0)


def _booking(final_price=5000, deposit=0, status="confirmed"):
    return Booking(
        id="b1",
        client_name="Amina",
        client_email="amina@example.com",
        client_phone="+254700000001",
        service="Classic full set",
        appointment_date=date(2026, 3, 12),
        time_slot="10:00",
        original_price=final_price,
        discount=0,
        discount_percent=0,
        final_price=final_price,
        deposit_paid=deposit,
        status=status,
    )


def test_cash_covering_the_balance_marks_paid():
    booking = _booking(deposit=3000)
    result = add_payment(booking, 2000, "cash", now=NOW)

    assert booking.deposit_paid == 5000
    assert booking.status == BookingStatus.PAID.value
    assert booking.paid_in_full_at == NOW
    assert result.just_completed_payment is True
    assert [e.name for e in result.events] == ["payment_recorded", "paid_in_full"]


def test_partial_payment_keeps_booking_confirmed():
    booking = _booking()
    result = add_payment(booking, 1500, "card", now=NOW)

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.deposit_paid == 1500
    assert result.just_completed_payment is False


def test_repeated_external_ref_is_a_no_op():
    booking = _booking()
    add_payment(booking, 1500, "mobileMoney", "ws_CO_1", NOW)
    again = add_payment(booking, 1500, "mobileMoney", "ws_CO_1", NOW)

    assert again.duplicate is True
    assert again.events == []
    assert booking.deposit_paid == 1500
    assert len(booking.payments) == 1


def test_mobile_money_is_not_revenue():
    result = add_payment(_booking(), 1500, "mpesa", "ws_CO_2", NOW)
    assert [e.name for e in result.events] == []
    assert result.entry.method == PaymentMethod.MOBILE_MONEY.value


def test_paid_in_full_is_reported_once():
    booking = _booking(deposit=5000, status="paid")
    booking.paid_in_full_at = NOW
    booking.final_price = 5500
    reopen_if_underpaid(booking)
    assert booking.status == BookingStatus.CONFIRMED.value

    result = add_payment(booking, 500, "cash", now=NOW)
    assert booking.status == BookingStatus.PAID.value
    assert result.just_completed_payment is False
    assert "paid_in_full" not in [e.name for e in result.events]


def test_payment_on_cancelled_booking_is_recorded_without_status_change():
    booking = _booking(status="cancelled")
    result = add_payment(booking, 5000, "cash", now=NOW)

    assert booking.status == BookingStatus.CANCELLED.value
    assert booking.deposit_paid == 5000
    assert result.notice


@pytest.mark.parametrize(
    "amount, method, ref",
    [
        (-1, "cash", None),
        (0, "cash", None),
        (0, "card", None),
        (10.5, "cash", None),
    ],
)
def test_rejects_bad_amounts(amount, method, ref):
    with pytest.raises(ValidationError):
        add_payment(_booking(), amount, method, ref, NOW)


def test_zero_amount_gateway_notification_is_accepted():
    booking = _booking()
    result = add_payment(booking, 0, "mobileMoney", "ws_CO_3", NOW)
    assert result.entry.amount == 0
    assert booking.deposit_paid == 0


def test_unknown_method_is_rejected():
    with pytest.raises(ValidationError):
        parse_method("cheque")


def test_completed_cannot_go_back_to_paid():
    booking = _booking(deposit=5000, status="completed")
    with pytest.raises(InvalidState):
        booking.transition_to(BookingStatus.PAID)
