from flask import Blueprint, jsonify, request

from engine.bookings import BookingEngine

codes_bp = Blueprint("codes", __name__, url_prefix="/codes")


@codes_bp.post("/validate")
def validate_code():
    data = request.get_json(silent=True) or {}
    check = BookingEngine.from_app().validate_code(
        data.get("code"),
        data.get("email") or data.get("redeemerIdentity"),
        data.get("context") or "checkout",
    )
    return jsonify(check.to_dict()), 200


@codes_bp.post("/redeem")
def redeem_code():
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().redeem_code(
        data.get("code"),
        data.get("email") or data.get("redeemerIdentity"),
        data.get("context") or "checkout",
        booking_id=data.get("bookingId"),
    )
    body = {"success": True, "effect": result.effect}
    if result.booking is not None:
        body["booking"] = result.booking.to_dict()
    return jsonify(body), 200


@codes_bp.post("/spin")
def spin():
    data = request.get_json(silent=True) or {}
    record = BookingEngine.from_app().spin(data.get("email"))
    return jsonify(
        code=record.code,
        prize=record.effect_dict(),
        expiresAt=record.expires_at.isoformat() if record.expires_at else None,
    ), 201
