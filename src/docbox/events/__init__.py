"""Domain events for the external notifier."""

from docbox.events.publisher import EventPublisher, NullPublisher, get_publisher, reset_publisher
from docbox.events.types import (
    DomainEvent,
    EventType,
    PaymentEvent,
    StatusEvent,
    box_status_changed,
    duplicate_suspected,
    extraction_failed,
    fields_conflicted,
    payment_overpaid,
    payment_recorded,
    payment_reversed,
    reimbursement_changed,
    wht_created,
    wht_status_changed,
)

__all__ = [
    "DomainEvent",
    "EventType",
    "PaymentEvent",
    "StatusEvent",
    "EventPublisher",
    "NullPublisher",
    "get_publisher",
    "reset_publisher",
    "box_status_changed",
    "duplicate_suspected",
    "extraction_failed",
    "fields_conflicted",
    "payment_overpaid",
    "payment_recorded",
    "payment_reversed",
    "reimbursement_changed",
    "wht_created",
    "wht_status_changed",
]
