"""Withholding-tax certificate tracking.

Each certificate obligation is its own small state machine, independent of
the box lifecycle:

    OUTGOING: PENDING -> ISSUED -> SENT -> CONFIRMED
    INCOMING: PENDING -> RECEIVED

CANCELLED is reachable from every non-terminal state. Every move stamps a
timestamp, and stamps never go backwards.
"""

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

import structlog

from docbox.errors import InvalidTransition
from docbox.events.publisher import EventPublisher, NullPublisher
from docbox.events.types import wht_created, wht_status_changed
from docbox.models import (
    Box,
    BoxType,
    WhtDocStatus,
    WhtSentMethod,
    WhtStatus,
    WhtTracking,
    WhtTrackingType,
    to_decimal,
)

logger = structlog.get_logger(__name__)

# Common Thai withholding rates by service category (percent)
WHT_RATES: dict[str, Decimal] = {
    "advertising": Decimal("1"),
    "transport": Decimal("2"),
    "services": Decimal("3"),
    "rental": Decimal("5"),
}

NEXT_STATES: dict[WhtTrackingType, dict[WhtStatus, frozenset[WhtStatus]]] = {
    WhtTrackingType.OUTGOING: {
        WhtStatus.PENDING: frozenset({WhtStatus.ISSUED, WhtStatus.CANCELLED}),
        WhtStatus.ISSUED: frozenset({WhtStatus.SENT, WhtStatus.CANCELLED}),
        WhtStatus.SENT: frozenset({WhtStatus.CONFIRMED, WhtStatus.CANCELLED}),
        WhtStatus.CONFIRMED: frozenset(),
        WhtStatus.CANCELLED: frozenset(),
    },
    WhtTrackingType.INCOMING: {
        WhtStatus.PENDING: frozenset({WhtStatus.RECEIVED, WhtStatus.CANCELLED}),
        WhtStatus.RECEIVED: frozenset(),
        WhtStatus.CANCELLED: frozenset(),
    },
}

_STAMP_FIELDS: dict[WhtStatus, str] = {
    WhtStatus.ISSUED: "issued_date",
    WhtStatus.SENT: "sent_date",
    WhtStatus.CONFIRMED: "confirmed_date",
    WhtStatus.RECEIVED: "received_date",
    WhtStatus.CANCELLED: "cancelled_date",
}

_SATISFIED: dict[WhtTrackingType, frozenset[WhtStatus]] = {
    WhtTrackingType.OUTGOING: frozenset({WhtStatus.ISSUED, WhtStatus.SENT, WhtStatus.CONFIRMED}),
    WhtTrackingType.INCOMING: frozenset({WhtStatus.RECEIVED}),
}


def resolve_wht_rate(rate: Decimal | float | str | None) -> Decimal | None:
    """Percentage for a numeric rate or a category name such as ``services``."""
    if isinstance(rate, str) and rate.strip().lower() in WHT_RATES:
        return WHT_RATES[rate.strip().lower()]
    return to_decimal(rate)


def compute_wht_amount(
    total_amount: Decimal | float | str,
    rate: Decimal | float | str,
    vat_amount: Decimal | float | str | None = None,
) -> Decimal:
    """WHT is charged on the pre-VAT base, rounded to satang half-up."""
    total = to_decimal(total_amount) or Decimal("0")
    vat = to_decimal(vat_amount) or Decimal("0")
    pct = resolve_wht_rate(rate) or Decimal("0")
    amount = (total - vat) * pct / Decimal("100")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def tracking_type_for(box_type: BoxType) -> WhtTrackingType:
    """We issue certificates for expenses and collect them for income."""
    if box_type == BoxType.EXPENSE:
        return WhtTrackingType.OUTGOING
    return WhtTrackingType.INCOMING


def is_terminal(record: WhtTracking) -> bool:
    return not NEXT_STATES[record.tracking_type][record.status]


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _latest_stamp(record: WhtTracking) -> datetime | None:
    stamps = [getattr(record, name) for name in _STAMP_FIELDS.values()]
    stamps = [as_utc(s) for s in stamps if s is not None]
    return max(stamps) if stamps else None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WhtTracker:
    """Creates WHT tracking records and moves them through their states."""

    def __init__(
        self,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._publisher = publisher or NullPublisher()
        self._clock = clock or _utcnow
        self._logger = logger.bind(component="wht_tracker")

    def create(
        self,
        box_id: str,
        tracking_type: WhtTrackingType,
        wht_rate: Decimal | float | str,
        wht_amount: Decimal | float | str,
        contact_id: str | None = None,
        counterparty_name: str | None = None,
        notes: str | None = None,
    ) -> WhtTracking:
        """Create a PENDING record for one certificate obligation."""
        record = WhtTracking(
            box_id=box_id,
            tracking_type=tracking_type,
            wht_rate=resolve_wht_rate(wht_rate) or Decimal("0"),
            wht_amount=to_decimal(wht_amount) or Decimal("0"),
            contact_id=contact_id,
            counterparty_name=counterparty_name,
            notes=notes,
        )
        self._logger.info(
            "wht_created",
            box_id=box_id,
            tracking_id=record.tracking_id,
            tracking_type=tracking_type.value,
            wht_amount=str(record.wht_amount),
        )
        self._publisher.publish(
            wht_created(box_id, record.tracking_id, tracking_type.value, record.wht_amount)
        )
        return record

    def create_for_box(self, box: Box) -> WhtTracking | None:
        """Create the record implied by a box's WHT configuration.

        Returns None (and logs a configuration gap) when the box has WHT
        disabled or no rate chosen yet.
        """
        if not box.has_wht or not box.wht_rate:
            self._logger.warning(
                "configuration_gap",
                reason="wht_not_configured",
                box_id=box.box_id,
                has_wht=box.has_wht,
            )
            return None

        amount = box.wht_amount or compute_wht_amount(
            box.total_amount, box.wht_rate, box.vat_amount
        )
        return self.create(
            box.box_id,
            tracking_type_for(box.box_type),
            box.wht_rate,
            amount,
            contact_id=box.contact_id,
            counterparty_name=box.contact_name,
        )

    def next_states(self, record: WhtTracking) -> list[WhtStatus]:
        """States the UI may offer next, in flow order."""
        allowed = NEXT_STATES[record.tracking_type][record.status]
        return [status for status in WhtStatus if status in allowed]

    def advance(
        self,
        record: WhtTracking,
        target: WhtStatus | str,
        at: datetime | None = None,
        sent_method: WhtSentMethod | None = None,
    ) -> WhtTracking:
        """Move a record to its next state and stamp the transition.

        Args:
            record: Record to update in place.
            target: Requested state. Must be one of ``next_states(record)``.
            at: Transition time, defaults to the tracker clock.
            sent_method: Delivery channel, recorded on SENT.

        Returns:
            The updated record.

        Raises:
            InvalidTransition: Out-of-order target, terminal current state,
                or a timestamp earlier than one already stamped.
        """
        target = WhtStatus(target)
        current = record.status
        transitions = NEXT_STATES[record.tracking_type]

        if target not in transitions:
            raise self._reject(record, target, f"{record.tracking_type.value} certificates never reach it")
        if is_terminal(record):
            raise self._reject(record, target, "status is terminal")
        if target not in transitions[current]:
            allowed = ", ".join(s.value for s in self.next_states(record))
            raise self._reject(record, target, f"allowed next states: {allowed}")

        when = as_utc(at or self._clock())
        latest = _latest_stamp(record)
        if latest is not None and when < latest:
            raise self._reject(record, target, "timestamp precedes an earlier transition")

        setattr(record, _STAMP_FIELDS[target], when)
        if target == WhtStatus.SENT and sent_method is not None:
            record.sent_method = sent_method
        record.status = target

        self._logger.info(
            "wht_status_changed",
            box_id=record.box_id,
            tracking_id=record.tracking_id,
            from_status=current.value,
            to_status=target.value,
        )
        self._publisher.publish(
            wht_status_changed(
                record.box_id,
                record.tracking_id,
                current.value,
                target.value,
                record.tracking_type.value,
            )
        )
        return record

    def cancel(self, record: WhtTracking, at: datetime | None = None) -> WhtTracking:
        return self.advance(record, WhtStatus.CANCELLED, at=at)

    def _reject(self, record: WhtTracking, target: WhtStatus, reason: str) -> InvalidTransition:
        self._logger.warning(
            "invalid_transition",
            tracking_id=record.tracking_id,
            current=record.status.value,
            attempted=target.value,
            reason=reason,
        )
        return InvalidTransition(record.status, target, reason)


def is_satisfying(record: WhtTracking) -> bool:
    """True when the record counts as the certificate being in hand."""
    return record.status in _SATISFIED[record.tracking_type]


def summarize_wht_doc_status(records: Iterable[WhtTracking]) -> WhtDocStatus:
    """Box-level certificate flag derived from tracking records.

    Cancelled records are ignored. All remaining records satisfied means
    RECEIVED; any incoming request still open means REQUEST_SENT.
    """
    active = [r for r in records if r.status != WhtStatus.CANCELLED]
    if not active:
        return WhtDocStatus.MISSING
    if all(is_satisfying(r) for r in active):
        return WhtDocStatus.RECEIVED
    if any(
        r.tracking_type == WhtTrackingType.INCOMING and r.status == WhtStatus.PENDING
        for r in active
    ):
        return WhtDocStatus.REQUEST_SENT
    return WhtDocStatus.MISSING
