from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from engine import events
from engine.bookings import BookingRequest
from engine.errors import AlreadyFined, CodeRejected, InvalidState, SlotConflict, ValidationError
from models import AuditLog, SlotHold, db
from models.booking import BookingStatus


def _paid(engine, booking):
    return engine.record_payment(booking.id, booking.final_price - booking.deposit_paid, "cash").booking


def test_create_prices_the_booking(make_booking):
    booking = make_booking()

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.final_price == 5000
    assert booking.deposit_paid == 0
    assert booking.discount_source is None
    assert db.session.query(SlotHold).filter_by(booking_id=booking.id).count() == 1


def test_create_is_audited(make_booking):
    booking = make_booking()
    row = AuditLog.query.filter_by(action="BOOKING_CREATE", entity_id=booking.id).one()
    assert row.to_dict()["metadata"]["final_price"] == 5000


def test_returning_client_gets_tier_discount(engine, make_booking, clock):
    first = make_booking()
    _paid(engine, first)
    engine.complete(first.id)

    second = make_booking(date=(clock.now.date() + timedelta(days=15)).isoformat())
    assert second.discount_percent == 7
    assert second.discount == 350
    assert second.final_price == 4650
    assert second.discount_source == "returning_client_30"


def test_unfinished_visits_do_not_count_towards_tier(engine, make_booking, clock):
    first = make_booking()
    _paid(engine, first)

    second = make_booking(date=(clock.now.date() + timedelta(days=15)).isoformat())
    assert second.discount_percent == 0


def test_walk_ins_skip_tier_and_codes(engine, make_booking, clock):
    first = make_booking()
    _paid(engine, first)
    engine.complete(first.id)

    walk_in = make_booking(source="walk_in", date=clock.now.date().isoformat())
    assert walk_in.discount == 0
    with pytest.raises(ValidationError):
        make_booking(source="walk_in", promoCode="SPINABCDEF")


def test_same_slot_cannot_be_booked_twice(make_booking):
    booking = make_booking(timeSlot="10:00")
    with pytest.raises(SlotConflict):
        make_booking(timeSlot="10:00", date=booking.appointment_date.isoformat(), email="other@example.com")


def test_cancelling_releases_the_slot(engine, make_booking):
    booking = make_booking(timeSlot="10:00")
    engine.cancel(booking.id)

    again = make_booking(timeSlot="10:00", date=booking.appointment_date.isoformat())
    assert again.id != booking.id
    assert engine.find_by_slot(booking.appointment_date, "10:00").id == again.id


def test_online_booking_in_the_past_is_rejected(make_booking, clock):
    with pytest.raises(ValidationError):
        make_booking(date=(clock.now.date() - timedelta(days=1)).isoformat())


def test_initial_payment_is_recorded_with_the_booking(make_booking):
    booking = make_booking(initialPayment={"amount": 1500, "method": "mobileMoney", "externalRef": "ws_CO_9"})
    assert booking.deposit_paid == 1500
    assert [p.external_ref for p in booking.payments] == ["ws_CO_9"]


def test_adding_a_service_reopens_a_paid_booking(engine, make_booking):
    booking = _paid(engine, make_booking())
    assert booking.status == BookingStatus.PAID.value

    booking = engine.add_service(booking.id, "Lower lashes", 800).booking
    assert booking.final_price == 5800
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.final_price == booking.expected_final_price()

    booking = engine.record_payment(booking.id, 800, "cash").booking
    assert booking.status == BookingStatus.PAID.value


def test_paid_in_full_fires_once(engine, make_booking):
    received = []

    def receiver(sender, **payload):
        received.append(sender)

    booking = make_booking()
    with events.paid_in_full.connected_to(receiver):
        _paid(engine, booking)
        engine.add_fine(booking.id)
        engine.record_payment(booking.id, 500, "cash")

    assert received == [booking.id]


def test_fine_defaults_and_only_once(engine, make_booking, policy):
    booking = make_booking()
    booking = engine.add_fine(booking.id).booking
    assert booking.fine_amount == policy.default_fine_amount
    assert booking.final_price == 5000 + policy.default_fine_amount

    with pytest.raises(AlreadyFined):
        engine.add_fine(booking.id, 200)


def test_terminal_bookings_take_no_new_charges(engine, make_booking):
    booking = make_booking()
    engine.cancel(booking.id)

    with pytest.raises(InvalidState):
        engine.add_service(booking.id, "Lower lashes", 800)
    with pytest.raises(InvalidState):
        engine.add_fine(booking.id, 500)


def test_cancel_twice_is_a_warning_not_an_error(engine, make_booking):
    booking = make_booking()
    first = engine.cancel(booking.id, reason="Client asked")
    second = engine.cancel(booking.id)

    assert first.already_cancelled is False
    assert second.already_cancelled is True
    assert second.notice == "Booking was already cancelled"
    assert second.events == []
    assert second.booking.cancellation_reason == "Client asked"


def test_early_client_cancellation_queues_refund(engine, make_booking):
    booking = make_booking(initialPayment={"amount": 1500, "method": "cash"})
    result = engine.cancel(booking.id, by="client")

    assert result.is_late is False
    assert result.booking.refund_status == "pending"
    assert result.booking.refund_amount == 1500
    assert [e.name for e in result.events] == ["cancelled", "slot_released"]

    settled = engine.settle_refund(booking.id, "RF-1")
    assert settled.booking.refund_status == "refunded"
    assert settled.booking.refunded_at is not None
    assert engine.settle_refund(booking.id).notice


def test_late_cancellation_retains_deposit(engine, make_booking, clock):
    booking = make_booking(timeSlot="08:00", initialPayment={"amount": 1500, "method": "cash"})
    # 03:00 UTC is 06:00 in Nairobi, two hours before the appointment
    clock.now = datetime.combine(booking.appointment_date, datetime.min.time()) + timedelta(hours=3)

    result = engine.cancel(booking.id, reason="No show risk")
    assert result.is_late is True
    assert result.booking.refund_status == "retained"
    assert result.booking.refund_amount == 0


def test_cancel_without_deposit_needs_no_refund(engine, make_booking):
    booking = make_booking(calendarEventId="evt-1")
    result = engine.cancel(booking.id, disposition="refund_now")
    assert result.booking.refund_status == "not_required"
    assert result.calendar_event_released is True


def test_admin_refund_amount_needs_a_refund_disposition(engine, make_booking):
    booking = make_booking(initialPayment={"amount": 1500, "method": "cash"})

    with pytest.raises(ValidationError) as exc:
        engine.cancel(booking.id, by="admin", refund_amount=1000)
    assert exc.value.details["field"] == "disposition"
    assert engine.get(booking.id).status == "confirmed"

    result = engine.cancel(booking.id, by="admin", disposition="refund_now", refund_amount=1000)
    assert result.booking.refund_status == "refunded"
    assert result.booking.refund_amount == 1000


def test_completed_booking_cannot_be_cancelled(engine, make_booking):
    booking = _paid(engine, make_booking())
    engine.complete(booking.id)
    with pytest.raises(InvalidState):
        engine.cancel(booking.id)


def test_reschedule_moves_the_slot(engine, make_booking):
    booking = make_booking(timeSlot="10:00")
    new_date = booking.appointment_date + timedelta(days=1)

    result = engine.reschedule(booking.id, new_date.isoformat(), "11:00", by="admin:jane", notes="Client travel")
    moved = result.booking
    assert (moved.appointment_date, moved.time_slot) == (new_date, "11:00")
    assert moved.reschedule_history[0].to_dict()["fromSlot"] == "10:00"
    assert moved.reschedule_history[0].notes == "Client travel"
    assert engine.find_by_slot(booking.appointment_date, "10:00") is None
    assert engine.find_by_slot(new_date, "11:00").id == booking.id


def test_reschedule_rules(engine, make_booking, clock):
    booking = make_booking(timeSlot="10:00")
    other = make_booking(timeSlot="12:00", date=booking.appointment_date.isoformat(), email="b@example.com")
    day = booking.appointment_date.isoformat()

    with pytest.raises(SlotConflict):
        engine.reschedule(booking.id, day, "12:00")
    with pytest.raises(ValidationError):
        engine.reschedule(booking.id, day, "10:00")
    with pytest.raises(ValidationError):
        engine.reschedule(booking.id, (clock.now.date() - timedelta(days=1)).isoformat(), "10:00")

    engine.cancel(other.id)
    with pytest.raises(InvalidState):
        engine.reschedule(other.id, day, "15:00")


def test_complete_requires_full_payment_and_issues_referral(engine, make_booking, policy):
    booking = make_booking()
    with pytest.raises(InvalidState):
        engine.complete(booking.id)

    _paid(engine, booking)
    result = engine.complete(booking.id)
    assert result.booking.status == BookingStatus.COMPLETED.value
    assert result.referral_code.effect_value == policy.referral_discount_percent

    again = engine.complete(booking.id)
    assert again.notice
    assert again.referral_code.code == result.referral_code.code


def test_external_ref_belongs_to_one_booking(engine, make_booking):
    first = make_booking()
    second = make_booking(email="b@example.com")
    engine.record_payment(first.id, 1000, "mobileMoney", "ws_CO_7")

    with pytest.raises(ValidationError):
        engine.record_payment(second.id, 1000, "mobileMoney", "ws_CO_7")
    assert engine.record_payment(first.id, 1000, "mobileMoney", "ws_CO_7").duplicate is True


def test_code_applied_to_confirmed_booking(engine, make_booking):
    booking = make_booking()
    code = engine.issue_code("amina@example.com", "prize", "discount_percentage", value=15, ttl_days=30)

    result = engine.redeem_code(code.code, "amina@example.com", "checkout", booking_id=booking.id)
    assert result.booking.discount == 750
    assert result.booking.final_price == 4250
    assert result.booking.promo_code == code.code

    another = engine.issue_code("amina@example.com", "prize", "discount_percentage", value=10)
    with pytest.raises(InvalidState):
        engine.redeem_code(another.code, "amina@example.com", "checkout", booking_id=booking.id)
    assert engine.codes.get(another.code).active is True


def test_promo_code_at_creation_is_consumed(engine, make_booking):
    code = engine.issue_code("amina@example.com", "prize", "free_item", item="Lash bath")
    booking = make_booking(promoCode=code.code.lower())

    assert booking.discount_source == "prize"
    assert [line.name for line in booking.additional_services] == ["Lash bath"]
    assert engine.codes.get(code.code).used_by == "amina@example.com"


def test_failed_creation_does_not_burn_the_code(engine, make_booking):
    taken = make_booking(timeSlot="10:00")
    code = engine.issue_code("amina@example.com", "prize", "discount_percentage", value=10)

    with pytest.raises(SlotConflict):
        engine.create(BookingRequest.from_payload({
            "name": "Amina", "email": "amina@example.com", "phone": "1",
            "service": "Fill", "date": taken.appointment_date.isoformat(),
            "timeSlot": "10:00", "originalPrice": 3000, "promoCode": code.code,
        }))
    assert engine.codes.get(code.code).active is True


def test_returning_discount_lookup(engine, make_booking, clock):
    first = make_booking()
    _paid(engine, first)
    engine.complete(first.id)

    quote = engine.returning_discount("Amina@Example.com", (clock.now.date() + timedelta(days=40)).isoformat())
    assert quote["discountPercent"] == 4
    assert quote["daysSince"] == 40


def test_booking_client_is_the_code_redeemer(engine, make_booking):
    booking = make_booking()
    own = engine.issue_code("amina@example.com", "referral", "discount_percentage", value=10)

    with pytest.raises(ValidationError):
        engine.redeem_code(own.code, "someone-else@example.com", "checkout", booking_id=booking.id)
    with pytest.raises(CodeRejected) as exc:
        engine.redeem_code(own.code, None, "checkout", booking_id=booking.id)
    assert exc.value.reason == "self_use"

    assert engine.codes.get(own.code).active is True
    assert engine.get(booking.id).discount == 0


def test_failed_audit_write_does_not_fail_the_payment(engine, make_booking, monkeypatch, caplog):
    booking = make_booking()

    def broken(*args, **kwargs):
        raise SQLAlchemyError("audit_logs is gone")

    monkeypatch.setattr("utils.audit.log_event", broken)
    with caplog.at_level("ERROR", logger="utils.audit"):
        result = engine.record_payment(booking.id, 1000, "cash")

    assert result.booking.deposit_paid == 1000
    assert "audit write for PAYMENT_RECORDED" in caplog.text
