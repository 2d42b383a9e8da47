import json
import logging

from flask import g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from engine.events import ALL_SIGNALS
from models import db
from models.audit_log import AuditLog

logger = logging.getLogger(__name__)

# event name -> (audit action, entity)
EVENT_ACTIONS = {
    "booking_created": ("BOOKING_CREATE", "booking"),
    "paid_in_full": ("BOOKING_PAID_IN_FULL", "booking"),
    "payment_recorded": ("PAYMENT_RECORDED", "booking"),
    "service_added": ("BOOKING_SERVICE_ADD", "booking"),
    "fine_added": ("BOOKING_FINE_ADD", "booking"),
    "cancelled": ("BOOKING_CANCEL", "booking"),
    "slot_released": ("SLOT_RELEASE", "booking"),
    "rescheduled": ("BOOKING_RESCHEDULE", "booking"),
    "completed": ("BOOKING_COMPLETE", "booking"),
    "refund_settled": ("REFUND_SETTLED", "booking"),
    "code_redeemed": ("CODE_REDEEM", "code"),
    "code_issued": ("CODE_ISSUE", "code"),
}


def log_event(action: str, actor=None, entity=None, entity_id=None, metadata=None):
    ip = user_agent = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = request.headers.get("User-Agent", "")
        if actor is None:
            actor = g.get("audit_actor")

    row = AuditLog(
        actor=actor or "system",
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
    )
    db.session.add(row)
    db.session.commit()


def _make_receiver(event_name: str):
    action, entity = EVENT_ACTIONS[event_name]

    def receiver(sender, **payload):
        # Runs after the change committed; a lost audit row must not fail the caller
        try:
            log_event(action, entity=entity, entity_id=sender, metadata=payload)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("audit write for %s on %s failed", action, sender)

    receiver.__name__ = f"audit_{event_name}"
    return receiver


_receivers = {name: _make_receiver(name) for name in EVENT_ACTIONS}


def connect_audit_trail():
    """Write every engine event to the audit log. Safe to call more than once."""
    for name, receiver in _receivers.items():
        ALL_SIGNALS[name].connect(receiver, weak=False)
    logger.debug("audit trail subscribed to %d signals", len(_receivers))
