from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from engine.errors import ConcurrentModification, NotFound, SlotConflict, ValidationError
from models import db
from models.booking import Booking, BookingStatus, SlotHold
from utils.clock import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BookingStore:
    """
    Keyed booking storage over the SQLAlchemy session.

    Slot exclusivity lives in the slot_holds unique constraint and per-booking
    serialisation in the bookings.version_id compare-and-swap, so both hold
    across processes, not just threads.
    """

    def __init__(self, max_attempts: int = 10):
        self.max_attempts = max(1, max_attempts)

    def create(self, booking: Booking, commit: bool = True) -> str:
        booking.slot_hold = SlotHold(appointment_date=booking.appointment_date, time_slot=booking.time_slot)
        db.session.add(booking)
        try:
            if commit:
                db.session.commit()
            else:
                db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            if self.find_by_slot(booking.appointment_date, booking.time_slot) is None:
                # Lost on another unique column (an initial payment's externalRef)
                raise ValidationError("Duplicate reference on new booking") from exc
            logger.info("slot %s %s already taken", booking.appointment_date, booking.time_slot)
            raise SlotConflict(
                "This time slot is already booked",
                date=booking.appointment_date.isoformat(),
                timeSlot=booking.time_slot,
            ) from exc
        return booking.id

    def get(self, booking_id: str, fresh: bool = False) -> Booking:
        booking = db.session.get(Booking, booking_id, populate_existing=fresh) if booking_id else None
        if booking is None:
            raise NotFound("Booking not found", bookingId=booking_id)
        return booking

    def find_by_slot(self, appointment_date: date, time_slot: str) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .join(SlotHold, SlotHold.booking_id == Booking.id)
            .where(SlotHold.appointment_date == appointment_date, SlotHold.time_slot == time_slot)
        )
        booking = db.session.execute(stmt).scalars().first()
        if booking is not None and booking.status == BookingStatus.CANCELLED.value:
            return None
        return booking

    def find_for_client(self, email: str):
        stmt = select(Booking).where(Booking.client_email == email).order_by(Booking.created_at.desc())
        return db.session.execute(stmt).scalars().all()

    def list(self, status: Optional[str] = None, on_date: Optional[date] = None, limit: int = 200):
        stmt = select(Booking)
        if status:
            stmt = stmt.where(Booking.status == status)
        if on_date:
            stmt = stmt.where(Booking.appointment_date == on_date)
        stmt = stmt.order_by(Booking.created_at.desc()).limit(limit)
        return db.session.execute(stmt).scalars().all()

    def update(
        self,
        booking_id: str,
        mutator: Callable[[Booking], T],
        on_integrity_error: Optional[Callable[[IntegrityError], Exception]] = None,
    ) -> T:
        """
        Apply ``mutator`` to a freshly loaded booking and commit it.

        A concurrent writer bumping version_id first makes our UPDATE match no
        row (StaleDataError); we reload and re-apply, up to max_attempts. A
        unique-constraint violation is retried too unless ``on_integrity_error``
        maps it to a domain error. Any exception leaves the session rolled back.
        Every write touches the booking row, so adding child rows alone (a
        zero-priced service line) is also checked against the version.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                booking = self.get(booking_id, fresh=True)
                result = mutator(booking)
                if db.session.new or db.session.dirty or db.session.deleted:
                    # Child-only changes must still bump the version counter
                    booking.updated_at = utcnow()
                db.session.commit()
                return result
            except StaleDataError:
                db.session.rollback()
                logger.info("booking %s changed underneath us (attempt %d), retrying", booking_id, attempt)
            except IntegrityError as exc:
                db.session.rollback()
                if on_integrity_error is not None:
                    raise on_integrity_error(exc) from exc
                logger.info("booking %s hit a unique constraint (attempt %d), retrying", booking_id, attempt)
            except Exception:
                db.session.rollback()
                raise

        logger.warning("booking %s: gave up after %d attempts", booking_id, self.max_attempts)
        raise ConcurrentModification(
            "Booking is being modified concurrently, try again",
            bookingId=booking_id,
        )
