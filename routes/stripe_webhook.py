import json
import logging

import stripe
from flask import Blueprint, current_app, jsonify, request

from engine.bookings import BookingEngine
from engine.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    # Signature checked; read the verified body as plain dicts
    event = json.loads(payload)

    if event["type"] != "checkout.session.completed":
        return jsonify(received=True), 200

    session = event["data"]["object"]
    session_id = session.get("id")
    meta = session.get("metadata") or {}
    booking_id = meta.get("booking_id")
    if not booking_id or not session_id:
        logger.warning("stripe session %s carries no booking_id", session_id)
        return jsonify(received=True, ignored=True), 200

    # Stripe amounts are in the smallest currency unit; the ledger keeps whole units
    amount, cents = divmod(int(session.get("amount_total") or 0), 100)
    if cents:
        logger.warning(
            "stripe session %s for booking %s: %d sub-unit amount not recorded", session_id, booking_id, cents
        )

    try:
        result = BookingEngine.from_app().record_payment(booking_id, amount, "card", session_id)
    except (NotFound, ValidationError) as exc:
        # Acknowledge so Stripe stops retrying a notification we can never apply
        logger.warning("stripe session %s for booking %s rejected: %s", session_id, booking_id, exc.message)
        return jsonify(received=True, error=exc.message, code=exc.code), 200

    return jsonify(received=True, duplicate=result.duplicate), 200
