"""
Transition events published to external collaborators.

Operations never talk to email, calendar or revenue systems. They collect
EngineEvent values on their result and the caller publishes them with
publish() once the transaction has committed. Collaborators subscribe with
e.g. ``paid_in_full.connect(handler)``; handlers receive the booking id as
the sender and the payload as keyword arguments.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from blinker import Namespace

logger = logging.getLogger(__name__)

_signals = Namespace()

paid_in_full = _signals.signal("paid_in_full")
payment_recorded = _signals.signal("payment_recorded")
service_added = _signals.signal("service_added")
fine_added = _signals.signal("fine_added")
cancelled = _signals.signal("cancelled")
slot_released = _signals.signal("slot_released")
rescheduled = _signals.signal("rescheduled")
completed = _signals.signal("completed")
refund_settled = _signals.signal("refund_settled")
code_redeemed = _signals.signal("code_redeemed")
code_issued = _signals.signal("code_issued")
booking_created = _signals.signal("booking_created")

ALL_SIGNALS = {
    s.name: s
    for s in (
        booking_created,
        paid_in_full,
        payment_recorded,
        service_added,
        fine_added,
        cancelled,
        slot_released,
        rescheduled,
        completed,
        refund_settled,
        code_redeemed,
        code_issued,
    )
}


@dataclass(frozen=True)
class EngineEvent:
    name: str
    subject_id: str
    payload: dict[str, Any] = field(default_factory=dict)


def publish(events) -> None:
    for event in events:
        signal = ALL_SIGNALS[event.name]
        logger.debug("publishing %s for %s", event.name, event.subject_id)
        signal.send(event.subject_id, **event.payload)
