"""Named domain events handed to the external notifier.

The core never delivers notifications. It builds these events and hands
them to an EventPublisher, whose hooks belong to the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventType(str, Enum):
    """Types of events emitted by the core."""

    # Box lifecycle
    BOX_SUBMITTED = "box.submitted"
    BOX_NEED_DOCS = "box.need_docs"
    BOX_RESUBMITTED = "box.resubmitted"
    BOX_COMPLETED = "box.completed"
    BOX_REJECTED = "box.rejected"
    BOX_VOIDED = "box.voided"
    BOX_DUPLICATE_SUSPECTED = "box.duplicate_suspected"

    # Payments
    PAYMENT_RECORDED = "payment.recorded"
    PAYMENT_REVERSED = "payment.reversed"
    PAYMENT_OVERPAID = "payment.overpaid"
    REIMBURSEMENT_CHANGED = "reimbursement.changed"

    # WHT certificates
    WHT_CREATED = "wht.created"
    WHT_ISSUED = "wht.issued"
    WHT_SENT = "wht.sent"
    WHT_CONFIRMED = "wht.confirmed"
    WHT_RECEIVED = "wht.received"
    WHT_CANCELLED = "wht.cancelled"

    # Extraction review
    FIELDS_CONFLICTED = "fields.conflicted"
    EXTRACTION_FAILED = "extraction.failed"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


@dataclass
class DomainEvent:
    """Base event structure for all core events."""

    event_type: EventType
    box_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: UUID = field(default_factory=uuid4)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a JSON-friendly dictionary."""
        return {
            "id": str(self.event_id),
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "box_id": self.box_id,
            "data": _jsonable(self.data),
        }


@dataclass
class StatusEvent(DomainEvent):
    """A box or WHT record moved between states."""

    subject: str = "box"  # box or wht
    subject_id: str = ""
    from_status: str = ""
    to_status: str = ""

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["transition"] = {
            "subject": self.subject,
            "subject_id": self.subject_id,
            "from": self.from_status,
            "to": self.to_status,
        }
        return base


@dataclass
class PaymentEvent(DomainEvent):
    """A payment mutation and the resulting box payment state."""

    payment_id: str | None = None
    amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    payment_status: str = ""

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["payment"] = {
            "id": self.payment_id,
            "amount": str(self.amount),
            "paid_amount": str(self.paid_amount),
            "status": self.payment_status,
        }
        return base


# Factory functions for creating events

_BOX_EVENTS = {
    "submit": EventType.BOX_SUBMITTED,
    "need_info": EventType.BOX_NEED_DOCS,
    "auto_need_docs": EventType.BOX_NEED_DOCS,
    "resubmit": EventType.BOX_RESUBMITTED,
    "auto_resubmit": EventType.BOX_RESUBMITTED,
    "approve": EventType.BOX_COMPLETED,
    "reject": EventType.BOX_REJECTED,
    "delete": EventType.BOX_VOIDED,
}

_WHT_EVENTS = {
    "ISSUED": EventType.WHT_ISSUED,
    "SENT": EventType.WHT_SENT,
    "CONFIRMED": EventType.WHT_CONFIRMED,
    "RECEIVED": EventType.WHT_RECEIVED,
    "CANCELLED": EventType.WHT_CANCELLED,
}


def box_status_changed(
    box_id: str,
    action: str,
    from_status: str,
    to_status: str,
    warnings: list[str] | None = None,
) -> StatusEvent:
    """Create the event for a box lifecycle transition."""
    return StatusEvent(
        event_type=_BOX_EVENTS[action],
        box_id=box_id,
        subject="box",
        subject_id=box_id,
        from_status=from_status,
        to_status=to_status,
        data={"action": action, "warnings": warnings or []},
    )


def wht_status_changed(
    box_id: str,
    tracking_id: str,
    from_status: str,
    to_status: str,
    tracking_type: str,
) -> StatusEvent:
    """Create the event for a WHT certificate transition."""
    return StatusEvent(
        event_type=_WHT_EVENTS[to_status],
        box_id=box_id,
        subject="wht",
        subject_id=tracking_id,
        from_status=from_status,
        to_status=to_status,
        data={"tracking_type": tracking_type},
    )


def wht_created(box_id: str, tracking_id: str, tracking_type: str, wht_amount: Decimal) -> DomainEvent:
    """Create a WHT record created event."""
    return DomainEvent(
        event_type=EventType.WHT_CREATED,
        box_id=box_id,
        data={"tracking_id": tracking_id, "tracking_type": tracking_type, "wht_amount": wht_amount},
    )


def payment_recorded(
    box_id: str,
    payment_id: str,
    amount: Decimal,
    paid_amount: Decimal,
    payment_status: str,
) -> PaymentEvent:
    """Create a payment recorded event."""
    return PaymentEvent(
        event_type=EventType.PAYMENT_RECORDED,
        box_id=box_id,
        payment_id=payment_id,
        amount=amount,
        paid_amount=paid_amount,
        payment_status=payment_status,
    )


def payment_reversed(
    box_id: str,
    payment_id: str,
    amount: Decimal,
    paid_amount: Decimal,
    payment_status: str,
) -> PaymentEvent:
    """Create a payment reversed event."""
    return PaymentEvent(
        event_type=EventType.PAYMENT_REVERSED,
        box_id=box_id,
        payment_id=payment_id,
        amount=amount,
        paid_amount=paid_amount,
        payment_status=payment_status,
    )


def payment_overpaid(box_id: str, paid_amount: Decimal, overpaid_amount: Decimal) -> PaymentEvent:
    """Create an overpayment warning event."""
    return PaymentEvent(
        event_type=EventType.PAYMENT_OVERPAID,
        box_id=box_id,
        paid_amount=paid_amount,
        payment_status="OVERPAID",
        data={"overpaid_amount": overpaid_amount},
    )


def reimbursement_changed(box_id: str, from_status: str, to_status: str) -> StatusEvent:
    """Create a reimbursement status change event."""
    return StatusEvent(
        event_type=EventType.REIMBURSEMENT_CHANGED,
        box_id=box_id,
        subject="reimbursement",
        subject_id=box_id,
        from_status=from_status,
        to_status=to_status,
    )


def duplicate_suspected(box_id: str, reason: str, matches: list[str]) -> DomainEvent:
    """Create a possible duplicate event."""
    return DomainEvent(
        event_type=EventType.BOX_DUPLICATE_SUSPECTED,
        box_id=box_id,
        data={"reason": reason, "matches": matches},
    )


def fields_conflicted(box_id: str | None, fields: list[str]) -> DomainEvent:
    """Create an event listing aggregated fields with conflicting values."""
    return DomainEvent(
        event_type=EventType.FIELDS_CONFLICTED,
        box_id=box_id,
        data={"fields": fields},
    )


def extraction_failed(box_id: str | None, file_id: str, error: str) -> DomainEvent:
    """Create an event for a file the extractor could not read."""
    return DomainEvent(
        event_type=EventType.EXTRACTION_FAILED,
        box_id=box_id,
        data={"file_id": file_id, "error": error},
    )
