import hmac
from functools import wraps

from flask import current_app, g, jsonify, request


def _matches(presented, expected) -> bool:
    if not presented or not expected:
        return False
    return hmac.compare_digest(str(presented).encode(), str(expected).encode())


def require_admin(fn):
    """
    Usage: @require_admin

    The admin console authenticates with a shared key in X-Admin-Key. The
    X-Admin-User header, when present, names the operator in the audit trail.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_KEY")
        if not expected:
            return jsonify(error="Admin API key not configured"), 500
        if not _matches(request.headers.get("X-Admin-Key"), expected):
            return jsonify(error="Forbidden"), 403

        operator = (request.headers.get("X-Admin-User") or "").strip()[:80]
        g.audit_actor = f"admin:{operator}" if operator else "admin"
        return fn(*args, **kwargs)
    return wrapper


def require_gateway_token(fn):
    """Payment gateway adapters present GATEWAY_SHARED_SECRET in X-Gateway-Token."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("GATEWAY_SHARED_SECRET")
        if not expected:
            return jsonify(error="Gateway secret not configured"), 500
        if not _matches(request.headers.get("X-Gateway-Token"), expected):
            return jsonify(error="Invalid gateway token"), 401

        g.audit_actor = "gateway"
        return fn(*args, **kwargs)
    return wrapper
