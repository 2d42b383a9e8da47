from flask import Blueprint, g, jsonify, request

from engine import parsing
from engine.bookings import BookingEngine, BookingRequest
from engine.errors import ValidationError
from models.booking import BookingStatus
from routes.booking import _created_body
from routes.payments import _ledger_response
from security.guards import require_admin

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _booking_body(result, **extra):
    body = {"success": True, "booking": result.booking.to_dict()}
    if result.notice:
        body["warning"] = result.notice
    body.update(extra)
    return body


# ---------- ADMIN: bookings ----------
@admin_bp.get("/bookings")
@require_admin
def list_bookings():
    status = request.args.get("status")
    if status and status not in {s.value for s in BookingStatus}:
        raise ValidationError("Unknown status", field="status")
    on_date = request.args.get("date")
    on_date = parsing.iso_date(on_date) if on_date else None
    email = request.args.get("email")

    engine = BookingEngine.from_app()
    limit = max(1, min(request.args.get("limit", type=int) or 200, 500))
    if email:
        rows = engine.store.find_for_client(parsing.email(email))[:limit]
    else:
        rows = engine.store.list(status=status, on_date=on_date, limit=limit)
    return jsonify([b.to_dict() for b in rows]), 200


@admin_bp.post("/bookings")
@require_admin
def create_walk_in():
    data = request.get_json(silent=True) or {}
    data.setdefault("source", "walk_in")
    result = BookingEngine.from_app().create(BookingRequest.from_payload(data))
    return jsonify(_created_body(result)), 201


@admin_bp.post("/bookings/<booking_id>/services")
@require_admin
def add_service(booking_id: str):
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().add_service(booking_id, data.get("name"), data.get("price"))
    return jsonify(_booking_body(result)), 200


@admin_bp.post("/bookings/<booking_id>/fine")
@require_admin
def add_fine(booking_id: str):
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().add_fine(booking_id, data.get("amount"), data.get("reason"))
    return jsonify(_booking_body(result)), 200


@admin_bp.post("/bookings/<booking_id>/payments")
@require_admin
def record_payment(booking_id: str):
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().record_payment(
        booking_id, data.get("amount"), data.get("method"), data.get("externalRef")
    )
    return jsonify(_ledger_response(result)), 200


@admin_bp.post("/bookings/<booking_id>/cancel")
@require_admin
def cancel_booking(booking_id: str):
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().cancel(
        booking_id,
        by=data.get("cancelledBy") or "admin",
        reason=data.get("reason"),
        disposition=data.get("disposition"),
        refund_amount=data.get("refundAmount"),
        notes=data.get("notes"),
    )
    return jsonify(_booking_body(
        result,
        isLate=result.is_late,
        calendarEventReleased=result.calendar_event_released,
    )), 200


@admin_bp.post("/bookings/<booking_id>/reschedule")
@require_admin
def reschedule_booking(booking_id: str):
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().reschedule(
        booking_id,
        data.get("newDate"),
        data.get("newTimeSlot"),
        by=g.audit_actor,
        notes=data.get("notes"),
    )
    return jsonify(_booking_body(result)), 200


@admin_bp.post("/bookings/<booking_id>/complete")
@require_admin
def complete_booking(booking_id: str):
    result = BookingEngine.from_app().complete(booking_id)
    referral = result.referral_code
    return jsonify(_booking_body(result, referralCode=referral.code if referral else None)), 200


@admin_bp.post("/bookings/<booking_id>/refund/settle")
@require_admin
def settle_refund(booking_id: str):
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().settle_refund(booking_id, data.get("externalRef"))
    return jsonify(_booking_body(result)), 200


@admin_bp.post("/bookings/<booking_id>/calendar")
@require_admin
def attach_calendar_event(booking_id: str):
    data = request.get_json(silent=True) or {}
    result = BookingEngine.from_app().attach_calendar_event(booking_id, data.get("calendarEventId"))
    return jsonify(_booking_body(result)), 200


# ---------- ADMIN: codes ----------
@admin_bp.post("/codes")
@require_admin
def issue_code():
    data = request.get_json(silent=True) or {}
    record = BookingEngine.from_app().issue_code(
        data.get("ownerIdentity"),
        data.get("type"),
        data.get("effect"),
        value=parsing.amount(data.get("value"), "value", allow_none=True),
        item=data.get("item"),
        label=data.get("label"),
        ttl_days=parsing.amount(data.get("ttlDays"), "ttlDays", allow_none=True),
    )
    return jsonify(record.to_dict()), 201
