from flask import Blueprint, jsonify, request

from engine.bookings import BookingEngine
from engine.errors import ValidationError
from security.guards import require_gateway_token

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


def _ledger_response(result):
    body = {
        "success": True,
        "duplicate": result.duplicate,
        "justCompletedPayment": result.just_completed_payment,
        "booking": result.booking.to_dict(),
    }
    if result.notice:
        body["notice"] = result.notice
    return body


# ---------- GATEWAYS: payment notifications (mobile money, card terminals) ----------
@payments_bp.post("/gateway")
@require_gateway_token
def gateway_notification():
    """
    Body: {"bookingId", "amount", "method", "externalRef"}

    Re-delivered notifications carry the same externalRef and are answered
    with duplicate=true and no change.
    """
    data = request.get_json(silent=True) or {}
    booking_id = (data.get("bookingId") or "").strip()
    external_ref = (data.get("externalRef") or "").strip()
    if not booking_id:
        raise ValidationError("bookingId is required", field="bookingId")
    if not external_ref:
        raise ValidationError("externalRef is required for gateway payments", field="externalRef")

    result = BookingEngine.from_app().record_payment(
        booking_id,
        data.get("amount"),
        data.get("method") or "mobileMoney",
        external_ref,
    )
    return jsonify(_ledger_response(result)), 200
