"""
Booking lifecycle: the operations callers (booking form, admin console,
payment adapters) invoke.

Each mutating operation loads the booking, applies one change and commits
it in a single transaction through BookingStore.update, so concurrent calls
on the same booking serialise on its version counter. Events are published
only after the commit succeeds.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func, select

from engine import parsing
from engine.codes import CodeRegistry, normalize_code, normalize_identity
from engine.discounts import DiscountContext, compute_discount, days_since, tier_discount
from engine.errors import (
    AlreadyFined,
    InvalidState,
    NotFound,
    SlotConflict,
    ValidationError,
)
from engine.events import EngineEvent, publish
from engine.ledger import LedgerResult, add_payment, reopen_if_underpaid, settle_status
from engine.policy import BookingPolicy, current_policy
from engine.refunds import evaluate_cancellation
from engine.store import BookingStore
from models import db
from models.booking import (
    Booking,
    BookingStatus,
    CancelledBy,
    RefundStatus,
    RescheduleEntry,
    ServiceLine,
    SlotHold,
    _new_booking_id,
)
from models.payment import PaymentEntry
from models.redeemable_code import CodeEffect, CodeType, RedemptionContext
from utils.clock import slot_start_utc, utcnow

logger = logging.getLogger(__name__)

WALK_IN = "walk_in"
ONLINE = "online"
CODE_SOURCES = {CodeType.REFERRAL.value, CodeType.PRIZE.value}


@dataclass
class BookingRequest:
    name: str
    email: str
    phone: str
    service: str
    appointment_date: date
    time_slot: str
    original_price: int
    promo_code: Optional[str] = None
    referral_code: Optional[str] = None
    source: str = ONLINE
    calendar_event_id: Optional[str] = None
    initial_payment: Optional[dict] = None

    @classmethod
    def from_payload(cls, data: dict) -> "BookingRequest":
        source = (data.get("source") or ONLINE).strip().lower()
        if source not in (ONLINE, WALK_IN):
            raise ValidationError("source must be online or walk_in", field="source")

        price = parsing.amount(data.get("originalPrice"), "originalPrice")
        if price < 0:
            raise ValidationError("originalPrice must not be negative", field="originalPrice")

        initial = data.get("initialPayment")
        if initial is not None and not isinstance(initial, dict):
            raise ValidationError("initialPayment must be an object", field="initialPayment")

        return cls(
            name=parsing.required_str(data, "name", 120),
            email=parsing.email(data.get("email")),
            phone=parsing.required_str(data, "phone", 30),
            service=parsing.required_str(data, "service"),
            appointment_date=parsing.iso_date(data.get("date")),
            time_slot=parsing.required_str(data, "timeSlot", 40),
            original_price=price,
            promo_code=parsing.optional_str(data, "promoCode", 40),
            referral_code=parsing.optional_str(data, "referralCode", 40),
            source=source,
            calendar_event_id=parsing.optional_str(data, "calendarEventId"),
            initial_payment=initial,
        )


@dataclass
class OperationResult:
    booking: Booking
    events: list = field(default_factory=list)
    notice: Optional[str] = None


@dataclass
class CancellationResult(OperationResult):
    is_late: bool = False
    calendar_event_released: bool = False
    already_cancelled: bool = False


@dataclass
class CompletionResult(OperationResult):
    referral_code: Optional[object] = None


@dataclass
class CodeRedemptionResult:
    effect: dict
    booking: Optional[Booking] = None
    events: list = field(default_factory=list)


class BookingEngine:
    def __init__(
        self,
        policy: BookingPolicy,
        store: Optional[BookingStore] = None,
        codes: Optional[CodeRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.policy = policy
        self.store = store or BookingStore(policy.booking_update_attempts)
        self.codes = codes or CodeRegistry(policy.code_generation_attempts)
        self.clock = clock

    @classmethod
    def from_app(cls) -> "BookingEngine":
        return cls(current_policy())

    # ---------- reads ----------

    def get(self, booking_id: str) -> Booking:
        return self.store.get(booking_id)

    def find_by_slot(self, appointment_date, time_slot: str) -> Optional[Booking]:
        return self.store.find_by_slot(parsing.iso_date(appointment_date), time_slot)

    def last_completed_payment_at(self, email: str, exclude_id: Optional[str] = None) -> Optional[datetime]:
        # Only completed, fully paid visits count towards loyalty
        stmt = select(func.max(Booking.paid_in_full_at)).where(
            Booking.client_email == email,
            Booking.status == BookingStatus.COMPLETED.value,
            Booking.paid_in_full_at.isnot(None),
        )
        if exclude_id:
            stmt = stmt.where(Booking.id != exclude_id)
        return db.session.execute(stmt).scalar()

    def returning_discount(self, email: str, target_date) -> dict:
        email = parsing.email(email)
        target = parsing.iso_date(target_date)
        last_paid_at = self.last_completed_payment_at(email)
        days = days_since(last_paid_at, target)
        discount = tier_discount(days, self.policy)
        return {
            "discountPercent": discount.percent,
            "source": discount.source,
            "daysSince": days,
            "lastPaidAt": last_paid_at.isoformat() if last_paid_at else None,
        }

    # ---------- create ----------

    def create(self, request: BookingRequest) -> OperationResult:
        now = self.clock()
        start = slot_start_utc(request.appointment_date, request.time_slot, self.policy.business_timezone)
        if start is None:
            raise ValidationError("Invalid time slot", field="timeSlot")
        if request.source == ONLINE and start < now:
            raise ValidationError("Cannot book a time slot in the past", field="timeSlot")

        if request.promo_code and request.referral_code:
            raise ValidationError("Use either a promo code or a referral code, not both", field="promoCode")
        code = normalize_code(request.promo_code or request.referral_code) or None
        if code and request.source == WALK_IN:
            raise ValidationError("Walk-in bookings do not take codes", field="promoCode")

        if self.store.find_by_slot(request.appointment_date, request.time_slot) is not None:
            raise SlotConflict(
                "This time slot is already booked",
                date=request.appointment_date.isoformat(),
                timeSlot=request.time_slot,
            )

        events = []
        try:
            effect = None
            if code:
                effect, code_events = self.codes.redeem(
                    code, request.email, RedemptionContext.CHECKOUT, now=now, commit=False
                )
                events.extend(code_events)

            days = None
            if effect is None and request.source == ONLINE:
                days = days_since(self.last_completed_payment_at(request.email), request.appointment_date)
            discount = compute_discount(
                DiscountContext(days_since_last_completed_appointment=days, promo_code=code, redeemable_code=effect),
                self.policy,
            )

            booking = Booking(
                id=_new_booking_id(),
                client_name=request.name,
                client_email=request.email,
                client_phone=request.phone,
                service=request.service,
                source=request.source,
                appointment_date=request.appointment_date,
                time_slot=request.time_slot,
                original_price=request.original_price,
                discount=discount.amount_for(request.original_price),
                discount_percent=discount.percent,
                discount_source=discount.source,
                promo_code=code,
                deposit_paid=0,
                status=BookingStatus.CONFIRMED.value,
                calendar_event_id=request.calendar_event_id,
                created_at=now,
            )
            if effect and effect["type"] == CodeEffect.FREE_ITEM.value:
                booking.additional_services.append(ServiceLine(name=effect["item"], price=0, added_at=now))
            booking.recompute_final_price()

            if request.initial_payment:
                payment = request.initial_payment
                ref = parsing.optional_str(payment, "externalRef")
                if ref and self._ref_taken(ref):
                    raise ValidationError("externalRef already recorded", field="externalRef")
                ledger = add_payment(
                    booking,
                    parsing.amount(payment.get("amount")),
                    payment.get("method"),
                    ref,
                    now,
                )
                events.extend(ledger.events)

            self.store.create(booking)
        except Exception:
            db.session.rollback()
            raise

        events.insert(0, EngineEvent("booking_created", booking.id, {
            "booking_id": booking.id,
            "email": booking.client_email,
            "date": booking.appointment_date.isoformat(),
            "time_slot": booking.time_slot,
            "final_price": booking.final_price,
            "source": booking.source,
        }))
        publish(events)
        return OperationResult(booking=booking, events=events)

    # ---------- pricing changes ----------

    def add_service(self, booking_id: str, name: str, price) -> OperationResult:
        name = (name or "").strip() if isinstance(name, str) else ""
        if not name:
            raise ValidationError("Service name is required", field="name")
        price = parsing.amount(price, "price")
        if price < 0:
            raise ValidationError("price must not be negative", field="price")
        now = self.clock()

        def mutate(booking: Booking) -> OperationResult:
            self._ensure_open(booking, "add a service to")
            booking.additional_services.append(ServiceLine(name=name, price=price, added_at=now))
            booking.recompute_final_price()
            reopen_if_underpaid(booking)
            return OperationResult(booking, [EngineEvent("service_added", booking.id, {
                "booking_id": booking.id,
                "name": name,
                "price": price,
                "final_price": booking.final_price,
                "email": booking.client_email,
            })])

        return self._run(booking_id, mutate)

    def add_fine(self, booking_id: str, amount=None, reason: Optional[str] = None) -> OperationResult:
        amount = parsing.amount(amount, "amount", allow_none=True)
        if amount is None:
            amount = self.policy.default_fine_amount
        if amount <= 0:
            raise ValidationError("Fine amount must be positive", field="amount")
        reason = (reason or "").strip() or "Failure to follow pre-appointment guidelines"
        now = self.clock()

        def mutate(booking: Booking) -> OperationResult:
            self._ensure_open(booking, "fine")
            if booking.fine_amount is not None:
                raise AlreadyFined("Fine has already been added to this booking", bookingId=booking.id)
            booking.fine_amount = amount
            booking.fine_reason = reason[:255]
            booking.fine_added_at = now
            booking.recompute_final_price()
            reopen_if_underpaid(booking)
            return OperationResult(booking, [EngineEvent("fine_added", booking.id, {
                "booking_id": booking.id,
                "amount": amount,
                "reason": booking.fine_reason,
                "final_price": booking.final_price,
            })])

        return self._run(booking_id, mutate)

    # ---------- payments ----------

    def record_payment(self, booking_id: str, amount, method, external_ref: Optional[str] = None) -> LedgerResult:
        amount = parsing.amount(amount)
        external_ref = (external_ref or "").strip() or None
        now = self.clock()

        def mutate(booking: Booking) -> LedgerResult:
            if external_ref:
                owner = self._ref_owner(external_ref)
                if owner is not None and owner != booking.id:
                    raise ValidationError(
                        "externalRef already recorded against another booking",
                        field="externalRef",
                    )
            return add_payment(booking, amount, method, external_ref, now)

        result = self.store.update(booking_id, mutate)
        if result.duplicate:
            logger.info("duplicate payment %s for booking %s ignored", external_ref, booking_id)
        publish(result.events)
        return result

    # ---------- cancellation & refunds ----------

    def cancel(
        self,
        booking_id: str,
        by: str = "admin",
        reason: Optional[str] = None,
        disposition=None,
        refund_amount=None,
        notes: Optional[str] = None,
    ) -> CancellationResult:
        try:
            cancelled_by = CancelledBy((by or "").strip().lower())
        except ValueError:
            raise ValidationError("cancelledBy must be admin or client", field="cancelledBy")
        refund_amount = parsing.amount(refund_amount, "refundAmount", allow_none=True)
        now = self.clock()

        def mutate(booking: Booking) -> CancellationResult:
            if booking.status_enum is BookingStatus.CANCELLED:
                outcome = evaluate_cancellation(booking, now, self.policy)
                return CancellationResult(
                    booking,
                    notice="Booking was already cancelled",
                    is_late=outcome.is_late,
                    already_cancelled=True,
                )
            if booking.status_enum is BookingStatus.COMPLETED:
                raise InvalidState("Completed bookings cannot be cancelled", status=booking.status)

            outcome = evaluate_cancellation(
                booking, now, self.policy, disposition, refund_amount, cancelled_by.value
            )
            booking.transition_to(BookingStatus.CANCELLED)
            booking.cancelled_at = now
            booking.cancelled_by = cancelled_by.value
            booking.cancellation_reason = (reason or "").strip()[:255] or None
            booking.refund_status = outcome.refund_status.value
            booking.refund_amount = outcome.refund_amount
            booking.refund_notes = (notes or "").strip()[:255] or None
            if outcome.refund_status is RefundStatus.REFUNDED:
                booking.refunded_at = now

            released_date, released_slot = booking.appointment_date, booking.time_slot
            booking.slot_hold = None
            calendar_released = bool(booking.calendar_event_id)

            events = [
                EngineEvent("cancelled", booking.id, {
                    "booking_id": booking.id,
                    "email": booking.client_email,
                    "cancelled_by": cancelled_by.value,
                    "reason": booking.cancellation_reason,
                    "refund_status": booking.refund_status,
                    "refund_amount": booking.refund_amount,
                    "is_late": outcome.is_late,
                }),
                EngineEvent("slot_released", booking.id, {
                    "booking_id": booking.id,
                    "date": released_date.isoformat(),
                    "time_slot": released_slot,
                    "calendar_event_id": booking.calendar_event_id,
                }),
            ]
            return CancellationResult(
                booking,
                events,
                is_late=outcome.is_late,
                calendar_event_released=calendar_released,
            )

        return self._run(booking_id, mutate)

    def settle_refund(self, booking_id: str, external_ref: Optional[str] = None) -> OperationResult:
        now = self.clock()

        def mutate(booking: Booking) -> OperationResult:
            if booking.refund_status == RefundStatus.REFUNDED.value:
                return OperationResult(booking, notice="Refund was already settled")
            if booking.refund_status != RefundStatus.PENDING.value:
                raise InvalidState("Booking has no pending refund", refundStatus=booking.refund_status)
            booking.refund_status = RefundStatus.REFUNDED.value
            booking.refunded_at = now
            booking.refund_external_ref = (external_ref or "").strip() or None
            return OperationResult(booking, [EngineEvent("refund_settled", booking.id, {
                "booking_id": booking.id,
                "amount": booking.refund_amount,
                "external_ref": booking.refund_external_ref,
                "email": booking.client_email,
            })])

        return self._run(booking_id, mutate)

    # ---------- schedule ----------

    def reschedule(
        self,
        booking_id: str,
        new_date,
        new_slot: str,
        by: str = "admin",
        notes: Optional[str] = None,
    ) -> OperationResult:
        new_date = parsing.iso_date(new_date, "newDate")
        new_slot = (new_slot or "").strip() if isinstance(new_slot, str) else ""
        if not new_slot:
            raise ValidationError("newTimeSlot is required", field="newTimeSlot")
        now = self.clock()
        start = slot_start_utc(new_date, new_slot, self.policy.business_timezone)
        if start is None:
            raise ValidationError("Invalid time slot", field="newTimeSlot")
        if start < now:
            raise ValidationError("Cannot reschedule to a past time", field="newTimeSlot")
        by = (by or "admin").strip()[:80]

        def mutate(booking: Booking) -> OperationResult:
            if booking.status_enum is BookingStatus.CANCELLED:
                raise InvalidState("Cancelled bookings cannot be rescheduled", status=booking.status)
            if booking.status_enum is BookingStatus.COMPLETED:
                raise InvalidState("Completed bookings cannot be rescheduled", status=booking.status)
            if booking.appointment_date == new_date and booking.time_slot == new_slot:
                raise ValidationError("The new slot matches the current booking time", field="newTimeSlot")

            other = self.store.find_by_slot(new_date, new_slot)
            if other is not None and other.id != booking.id:
                raise SlotConflict("This time slot is already booked", date=new_date.isoformat(), timeSlot=new_slot)

            entry = RescheduleEntry(
                from_date=booking.appointment_date,
                from_slot=booking.time_slot,
                to_date=new_date,
                to_slot=new_slot,
                rescheduled_at=now,
                rescheduled_by=by,
                notes=(notes or "").strip()[:255] or None,
            )
            booking.reschedule_history.append(entry)
            booking.appointment_date = new_date
            booking.time_slot = new_slot
            booking.rescheduled_at = now
            if booking.slot_hold is None:
                booking.slot_hold = SlotHold(appointment_date=new_date, time_slot=new_slot)
            else:
                booking.slot_hold.appointment_date = new_date
                booking.slot_hold.time_slot = new_slot

            return OperationResult(booking, [EngineEvent("rescheduled", booking.id, {
                "booking_id": booking.id,
                "from_date": entry.from_date.isoformat(),
                "from_slot": entry.from_slot,
                "to_date": new_date.isoformat(),
                "to_slot": new_slot,
                "by": by,
                "calendar_event_id": booking.calendar_event_id,
            })])

        def conflict(exc) -> SlotConflict:
            return SlotConflict("This time slot is already booked", date=new_date.isoformat(), timeSlot=new_slot)

        return self._run(booking_id, mutate, on_integrity_error=conflict)

    def attach_calendar_event(self, booking_id: str, calendar_event_id: Optional[str]) -> OperationResult:
        calendar_event_id = (calendar_event_id or "").strip() or None

        def mutate(booking: Booking) -> OperationResult:
            if booking.status_enum is BookingStatus.CANCELLED and calendar_event_id:
                raise InvalidState("Cancelled bookings hold no calendar reservation", status=booking.status)
            booking.calendar_event_id = calendar_event_id
            return OperationResult(booking)

        return self._run(booking_id, mutate)

    # ---------- completion ----------

    def complete(self, booking_id: str, issue_referral: bool = True) -> CompletionResult:
        now = self.clock()

        def mutate(booking: Booking) -> CompletionResult:
            if booking.status_enum is BookingStatus.COMPLETED:
                return CompletionResult(booking, notice="Booking was already completed")
            if booking.status_enum is not BookingStatus.PAID:
                raise InvalidState(
                    "Booking must be paid in full before it can be completed",
                    status=booking.status,
                )
            booking.transition_to(BookingStatus.COMPLETED)
            booking.completed_at = now
            return CompletionResult(booking, [EngineEvent("completed", booking.id, {
                "booking_id": booking.id,
                "email": booking.client_email,
                "name": booking.client_name,
                "final_price": booking.final_price,
            })])

        result = self._run(booking_id, mutate)
        if issue_referral and result.booking.status_enum is BookingStatus.COMPLETED:
            result.referral_code = self.issue_referral(result.booking)
        return result

    # ---------- codes ----------

    def validate_code(self, code: str, redeemer_identity: str, context):
        return self.codes.validate(code, redeemer_identity, context, self.clock())

    def redeem_code(self, code: str, redeemer_identity: str, context, booking_id: Optional[str] = None) -> CodeRedemptionResult:
        """
        Redeem a code; with ``booking_id`` apply its effect to that booking.

        A code only ever changes the price of a booking that is still merely
        confirmed and carries no other code. It replaces a returning-client
        tier discount rather than adding to it. The booking's client is the
        redeemer; a different identity in the request is rejected.
        """
        now = self.clock()
        if booking_id is None:
            effect, events = self.codes.redeem(code, redeemer_identity, context, now=now)
            publish(events)
            return CodeRedemptionResult(effect=effect, events=events)

        def mutate(booking: Booking) -> CodeRedemptionResult:
            if booking.status_enum is not BookingStatus.CONFIRMED:
                raise InvalidState("Codes can only be applied to unpaid, confirmed bookings", status=booking.status)
            if booking.discount_source in CODE_SOURCES:
                raise InvalidState("A code has already been applied to this booking", promoCode=booking.promo_code)
            if redeemer_identity and normalize_identity(redeemer_identity) != booking.client_email:
                raise ValidationError("Codes can only be redeemed by the booking's client", field="email")

            effect, events = self.codes.redeem(code, booking.client_email, context, now=now, commit=False)
            discount = compute_discount(DiscountContext(redeemable_code=effect), self.policy)
            booking.discount = discount.amount_for(booking.original_price)
            booking.discount_percent = discount.percent
            booking.discount_source = discount.source
            booking.promo_code = effect["code"]
            if effect["type"] == CodeEffect.FREE_ITEM.value:
                booking.additional_services.append(ServiceLine(name=effect["item"], price=0, added_at=now))
            booking.recompute_final_price()
            _, settle_events = settle_status(booking, now)
            return CodeRedemptionResult(effect=effect, booking=booking, events=events + settle_events)

        return self._run(booking_id, mutate)

    def issue_code(self, owner_identity: str, code_type, effect, value=None, item=None, label=None,
                   ttl_days: Optional[int] = None):
        ttl = timedelta(days=int(ttl_days)) if ttl_days else None
        record, created = self.codes.issue(
            owner_identity, code_type, effect, value=value, item=item, label=label, ttl=ttl, now=self.clock()
        )
        if created:
            publish([self._issued_event(record)])
        return record

    def issue_referral(self, booking: Booking):
        record, created = self.codes.issue(
            booking.client_email,
            CodeType.REFERRAL,
            CodeEffect.DISCOUNT_PERCENTAGE,
            value=self.policy.referral_discount_percent,
            label=f"{self.policy.referral_discount_percent}% referral discount",
            source_key=f"booking:{booking.id}",
            now=self.clock(),
        )
        if created:
            publish([self._issued_event(record)])
        return record

    def spin(self, identity: str, rng=None):
        if not self.policy.spin_wheel_enabled:
            raise ValidationError("Spin the wheel is currently disabled")
        record = self.codes.spin(
            identity, self.policy.spin_wheel_prizes, self.policy.prize_code_ttl_days, rng=rng, now=self.clock()
        )
        publish([self._issued_event(record)])
        return record

    # ---------- helpers ----------

    def _run(self, booking_id: str, mutate, on_integrity_error=None):
        if not booking_id:
            raise NotFound("Booking not found", bookingId=booking_id)
        result = self.store.update(booking_id, mutate, on_integrity_error=on_integrity_error)
        publish(result.events)
        return result

    @staticmethod
    def _ensure_open(booking: Booking, action: str) -> None:
        if booking.is_terminal:
            raise InvalidState(f"Cannot {action} a {booking.status} booking", status=booking.status)

    @staticmethod
    def _ref_owner(external_ref: str) -> Optional[str]:
        stmt = select(PaymentEntry.booking_id).where(PaymentEntry.external_ref == external_ref)
        return db.session.execute(stmt).scalar()

    def _ref_taken(self, external_ref: str) -> bool:
        return self._ref_owner(external_ref) is not None

    @staticmethod
    def _issued_event(record) -> EngineEvent:
        return EngineEvent("code_issued", record.code, {
            "code": record.code,
            "owner": record.owner_identity,
            "type": record.code_type,
            "effect": record.effect,
        })
