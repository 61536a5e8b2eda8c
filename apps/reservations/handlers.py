"""
Event handlers for reservation and payment events.

Handlers run after commit. Customer notifications are delivered by
another service that tails these log records, so the handlers only
write one structured line per event.
"""

import logging

from shared.application.message_bus import message_bus
from shared.domain.base import DomainEvent

from .domain.events import (
    ReservationCancelled,
    ReservationCompleted,
    ReservationConfirmed,
    ReservationSettled,
)

logger = logging.getLogger(__name__)

EVENT_NAMES = {
    ReservationConfirmed: "reservation.confirmed",
    ReservationSettled: "reservation.settled",
    ReservationCancelled: "reservation.cancelled",
    ReservationCompleted: "reservation.completed",
}


def log_domain_event(event: DomainEvent):
    payload = {
        key: str(value) if value is not None else None
        for key, value in vars(event).items()
        if key not in ("event_id", "occurred_at", "aggregate_id")
    }
    name = EVENT_NAMES.get(type(event), type(event).__name__)
    logger.info(f"{name} {payload}", extra={"domain_event": event.to_dict()})


def register_handlers():
    from apps.finances.events import PaymentFailed, PaymentReceived, PaymentRefunded

    EVENT_NAMES.update({
        PaymentReceived: "payment.received",
        PaymentFailed: "payment.failed",
        PaymentRefunded: "payment.refunded",
    })
    for event_type in EVENT_NAMES:
        message_bus.register_event_handler(event_type, log_domain_event)
