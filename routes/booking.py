from flask import Blueprint, jsonify, request

from engine.bookings import BookingEngine, BookingRequest
from engine.errors import ValidationError

booking_bp = Blueprint("booking", __name__)


def _created_body(result):
    booking = result.booking
    return {
        "bookingId": booking.id,
        "finalPrice": booking.final_price,
        "deposit": booking.deposit_paid,
        "booking": booking.to_dict(),
    }


# ---------- CLIENTS: book a slot (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/bookings")
def create_booking():
    data = request.get_json(silent=True) or {}
    booking_request = BookingRequest.from_payload(data)
    if booking_request.source != "online":
        # Walk-ins are entered from the admin console
        raise ValidationError("Only online bookings can be created here", field="source")

    result = BookingEngine.from_app().create(booking_request)
    return jsonify(_created_body(result)), 201


@booking_bp.get("/bookings/<booking_id>")
def get_booking(booking_id: str):
    booking = BookingEngine.from_app().get(booking_id)
    return jsonify(booking=booking.to_dict()), 200


# ---------- CLIENTS: slot availability ----------
@booking_bp.get("/slots/lookup")
def lookup_slot():
    date_str = request.args.get("date")
    time_slot = (request.args.get("timeSlot") or "").strip()
    if not time_slot:
        raise ValidationError("timeSlot is required", field="timeSlot")

    booking = BookingEngine.from_app().find_by_slot(date_str, time_slot)
    return jsonify(
        date=date_str,
        timeSlot=time_slot,
        available=booking is None,
        bookingId=booking.id if booking else None,
    ), 200


@booking_bp.get("/bookings/returning-discount")
def returning_discount():
    engine = BookingEngine.from_app()
    return jsonify(engine.returning_discount(request.args.get("email"), request.args.get("date"))), 200
