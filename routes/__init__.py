from flask import Blueprint, jsonify

from routes.admin import admin_bp
from routes.audit_logs import audit_bp
from routes.booking import booking_bp
from routes.codes import codes_bp
from routes.payments import payments_bp
from routes.stripe_webhook import webhook_bp

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200


ALL_BLUEPRINTS = (health_bp, booking_bp, codes_bp, payments_bp, webhook_bp, admin_bp, audit_bp)
