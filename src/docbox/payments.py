"""Payment reconciliation against a box's total amount.

The box's ``paid_amount`` is a projection: it is always re-summed from the
payment rows and written back through a single path, never incremented in
place. Re-running the sum after a partial failure, a duplicate write or an
out-of-order write therefore self-corrects.
"""

import threading
import weakref
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import structlog

from docbox.errors import InvalidTransition, SkipReason
from docbox.events.publisher import EventPublisher, NullPublisher
from docbox.events.types import (
    payment_overpaid,
    payment_recorded,
    payment_reversed,
    reimbursement_changed,
)
from docbox.models import (
    Box,
    Payment,
    PaymentMethod,
    PaymentMode,
    PaymentStatus,
    ReimbursementStatus,
    to_decimal,
)

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")

AUTO_REFERENCE = "Auto-generated"
AUTO_NOTE = "Recorded automatically from payment proof upload"
AUTO_INSTALLMENT_NOTE = "Installment recorded automatically from payment proof upload"


def derive_payment_status(paid_amount: Decimal, total_amount: Decimal) -> PaymentStatus:
    """Map (paid, total) to exactly one payment status.

    Equality is exact; there is no rounding tolerance. A non-positive paid
    amount (possible after reversals) counts as unpaid.
    """
    if paid_amount <= ZERO:
        return PaymentStatus.UNPAID
    if paid_amount < total_amount:
        return PaymentStatus.PARTIAL
    if paid_amount == total_amount:
        return PaymentStatus.PAID
    return PaymentStatus.OVERPAID


def sum_payments(payments: Iterable[Payment]) -> Decimal:
    """Sum of non-voided payment amounts."""
    return sum((p.amount for p in payments if not p.voided), ZERO)


# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass(frozen=True)
class PaymentSource:
    """What triggered a payment."""

    document_id: str | None = None
    file_id: str | None = None
    reference: str | None = None
    notes: str | None = None
    is_auto: bool = False  # created from a payment-proof upload


@dataclass(frozen=True)
class PaymentResult:
    """Box payment state after a reconciliation call."""

    box_id: str
    paid_amount: Decimal
    payment_status: PaymentStatus
    total_amount: Decimal
    payment: Payment | None = None
    skipped: SkipReason | None = None

    @property
    def is_overpaid(self) -> bool:
        return self.payment_status == PaymentStatus.OVERPAID

    @property
    def overpaid_amount(self) -> Decimal:
        if not self.is_overpaid:
            return ZERO
        return self.paid_amount - self.total_amount

    @property
    def outstanding_amount(self) -> Decimal:
        return max(self.total_amount - self.paid_amount, ZERO)


# =============================================================================
# PERSISTENCE BOUNDARY
# =============================================================================


class PaymentStore(ABC):
    """Where boxes and payment rows live. Implemented by the persistence layer."""

    @abstractmethod
    def get_box(self, box_id: str) -> Box:
        """Return the box snapshot. Raises KeyError for unknown boxes."""

    @abstractmethod
    def list_payments(self, box_id: str) -> list[Payment]:
        """Return every payment row for the box, voided ones included."""

    @abstractmethod
    def add_payment(self, payment: Payment) -> None:
        """Persist a new payment row."""

    @abstractmethod
    def save_payment_state(
        self, box_id: str, paid_amount: Decimal, payment_status: PaymentStatus
    ) -> None:
        """Write the derived paid amount and status back to the box."""


class InMemoryPaymentStore(PaymentStore):
    """Dict-backed store for previews, the CLI and tests."""

    def __init__(self, boxes: Iterable[Box] = (), payments: Iterable[Payment] = ()):
        self._boxes: dict[str, Box] = {box.box_id: box for box in boxes}
        self._payments: dict[str, list[Payment]] = {}
        for payment in payments:
            self._payments.setdefault(payment.box_id, []).append(payment)

    def add_box(self, box: Box) -> None:
        self._boxes[box.box_id] = box

    def get_box(self, box_id: str) -> Box:
        return self._boxes[box_id]

    def list_payments(self, box_id: str) -> list[Payment]:
        return list(self._payments.get(box_id, []))

    def add_payment(self, payment: Payment) -> None:
        self._payments.setdefault(payment.box_id, []).append(payment)

    def save_payment_state(
        self, box_id: str, paid_amount: Decimal, payment_status: PaymentStatus
    ) -> None:
        box = self._boxes[box_id]
        box.paid_amount = paid_amount
        box.payment_status = payment_status


# =============================================================================
# RECONCILER
# =============================================================================


class PaymentReconciler:
    """Aggregates payment events into a box's paid amount and status."""

    def __init__(self, store: PaymentStore, publisher: EventPublisher | None = None):
        self._store = store
        self._publisher = publisher or NullPublisher()
        # Entries vanish once no call holds the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()
        self._logger = logger.bind(component="payment_reconciler")

    def _lock_for(self, box_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(box_id)
            if lock is None:
                lock = self._locks[box_id] = threading.Lock()
            return lock

    def _apply(self, box: Box) -> PaymentResult:
        """Re-sum payments and write the projection. The only write path."""
        paid_amount = sum_payments(self._store.list_payments(box.box_id))
        status = derive_payment_status(paid_amount, box.total_amount)
        self._store.save_payment_state(box.box_id, paid_amount, status)
        return PaymentResult(
            box_id=box.box_id,
            paid_amount=paid_amount,
            payment_status=status,
            total_amount=box.total_amount,
        )

    def _unchanged(self, box: Box, reason: SkipReason) -> PaymentResult:
        return PaymentResult(
            box_id=box.box_id,
            paid_amount=box.paid_amount,
            payment_status=box.payment_status,
            total_amount=box.total_amount,
            skipped=reason,
        )

    def _resolve_amount(
        self, box: Box, amount: Decimal | None, source: PaymentSource
    ) -> Decimal:
        if amount is not None:
            return amount
        if source.is_auto and box.is_multi_payment and box.installment_amount:
            return box.installment_amount
        return box.total_amount - sum_payments(self._store.list_payments(box.box_id))

    def record_payment(
        self,
        box_id: str,
        amount: Decimal | float | str | None = None,
        method: PaymentMethod = PaymentMethod.TRANSFER,
        source: PaymentSource | None = None,
        paid_date: date | None = None,
    ) -> PaymentResult:
        """Record a payment and recompute the box's payment state.

        Args:
            box_id: Target box.
            amount: Explicit amount. When omitted, an auto payment on a
                multi-installment box uses the installment amount, and
                anything else pays the outstanding shortfall.
            method: Payment method.
            source: Triggering document/file and whether it was automatic.
            paid_date: Defaults to today.

        Returns:
            The new payment state. ``skipped`` is set when nothing was
            recorded (unknown total or non-positive amount).

        Raises:
            KeyError: Unknown box.
            ValueError: ``amount`` was given but does not parse.
        """
        source = source or PaymentSource()
        explicit = to_decimal(amount)
        if amount is not None and explicit is None:
            raise ValueError(f"payment amount {amount!r} is not a number")

        with self._lock_for(box_id):
            box = self._store.get_box(box_id)

            if box.total_amount <= ZERO:
                self._logger.info(
                    "payment_skipped",
                    box_id=box_id,
                    reason=SkipReason.UNKNOWN_TOTAL.value,
                    total_amount=str(box.total_amount),
                )
                return self._unchanged(box, SkipReason.UNKNOWN_TOTAL)

            resolved = self._resolve_amount(box, explicit, source)
            if resolved <= ZERO:
                self._logger.info(
                    "payment_skipped",
                    box_id=box_id,
                    reason=SkipReason.NON_POSITIVE_AMOUNT.value,
                    amount=str(resolved),
                )
                return self._unchanged(box, SkipReason.NON_POSITIVE_AMOUNT)

            notes = source.notes
            if notes is None and source.is_auto:
                notes = AUTO_INSTALLMENT_NOTE if box.is_multi_payment else AUTO_NOTE
            payment = Payment(
                box_id=box_id,
                amount=resolved,
                method=method,
                paid_date=paid_date or date.today(),
                document_id=source.document_id,
                file_id=source.file_id,
                reference=source.reference or (AUTO_REFERENCE if source.is_auto else None),
                notes=notes,
            )
            self._store.add_payment(payment)
            result = self._apply(box)

        result = PaymentResult(
            box_id=result.box_id,
            paid_amount=result.paid_amount,
            payment_status=result.payment_status,
            total_amount=result.total_amount,
            payment=payment,
        )
        self._logger.info(
            "payment_recorded",
            box_id=box_id,
            payment_id=payment.payment_id,
            amount=str(payment.amount),
            paid_amount=str(result.paid_amount),
            payment_status=result.payment_status.value,
            auto=source.is_auto,
        )
        self._publisher.publish(
            payment_recorded(
                box_id,
                payment.payment_id,
                payment.amount,
                result.paid_amount,
                result.payment_status.value,
            )
        )
        self._warn_if_overpaid(result)
        return result

    def record_auto_payment(
        self,
        box_id: str,
        document_id: str | None,
        file_id: str | None = None,
        amount: Decimal | float | str | None = None,
        method: PaymentMethod = PaymentMethod.TRANSFER,
    ) -> PaymentResult:
        """Record the payment implied by a payment-proof upload."""
        return self.record_payment(
            box_id,
            amount=amount,
            method=method,
            source=PaymentSource(document_id=document_id, file_id=file_id, is_auto=True),
        )

    def recalculate_box_payment_status(self, box_id: str) -> PaymentResult:
        """Re-sum existing payments without adding one.

        Safe to call any number of times; it yields the same state for the
        same payment rows.
        """
        with self._lock_for(box_id):
            box = self._store.get_box(box_id)
            result = self._apply(box)
        self._logger.debug(
            "payment_status_recalculated",
            box_id=box_id,
            paid_amount=str(result.paid_amount),
            payment_status=result.payment_status.value,
        )
        return result

    def reverse_payment(self, box_id: str, payment_id: str, notes: str | None = None) -> PaymentResult:
        """Append a compensating negative row for an earlier payment.

        Raises:
            KeyError: No such payment on the box.
            ValueError: The payment is voided, is itself a reversal, or was
                already reversed.
        """
        with self._lock_for(box_id):
            box = self._store.get_box(box_id)
            payments = self._store.list_payments(box_id)
            original = next((p for p in payments if p.payment_id == payment_id), None)
            if original is None:
                raise KeyError(f"payment {payment_id} not found on box {box_id}")
            if original.voided or original.reverses is not None:
                raise ValueError(f"payment {payment_id} cannot be reversed")
            if any(p.reverses == payment_id for p in payments):
                raise ValueError(f"payment {payment_id} was already reversed")

            reversal = Payment(
                box_id=box_id,
                amount=-original.amount,
                method=original.method,
                paid_date=date.today(),
                document_id=original.document_id,
                reference=original.reference,
                notes=notes or f"Reversal of {payment_id}",
                reverses=payment_id,
            )
            self._store.add_payment(reversal)
            result = self._apply(box)

        self._logger.info(
            "payment_reversed",
            box_id=box_id,
            payment_id=payment_id,
            paid_amount=str(result.paid_amount),
            payment_status=result.payment_status.value,
        )
        self._publisher.publish(
            payment_reversed(
                box_id,
                reversal.payment_id,
                reversal.amount,
                result.paid_amount,
                result.payment_status.value,
            )
        )
        return PaymentResult(
            box_id=result.box_id,
            paid_amount=result.paid_amount,
            payment_status=result.payment_status,
            total_amount=result.total_amount,
            payment=reversal,
        )

    def _warn_if_overpaid(self, result: PaymentResult) -> None:
        if not result.is_overpaid:
            return
        self._logger.warning(
            "payment_overpaid",
            box_id=result.box_id,
            paid_amount=str(result.paid_amount),
            overpaid_amount=str(result.overpaid_amount),
        )
        self._publisher.publish(
            payment_overpaid(result.box_id, result.paid_amount, result.overpaid_amount)
        )


# =============================================================================
# REIMBURSEMENT
# =============================================================================

REIMBURSEMENT_TRANSITIONS: dict[ReimbursementStatus, frozenset[ReimbursementStatus]] = {
    ReimbursementStatus.NONE: frozenset({ReimbursementStatus.PENDING}),
    ReimbursementStatus.PENDING: frozenset(
        {ReimbursementStatus.REIMBURSED, ReimbursementStatus.NONE}
    ),
    ReimbursementStatus.REIMBURSED: frozenset(),
}


def change_reimbursement_status(
    box: Box,
    target: ReimbursementStatus,
    publisher: EventPublisher | None = None,
) -> ReimbursementStatus:
    """Move an employee-advanced expense through reimbursement.

    Raises:
        InvalidTransition: The box was company paid, or the move is not
            allowed from the current reimbursement status.
    """
    current = box.reimbursement_status or ReimbursementStatus.NONE
    if box.payment_mode != PaymentMode.EMPLOYEE_ADVANCE:
        raise InvalidTransition(current, target, "box was not paid by employee advance")
    if target not in REIMBURSEMENT_TRANSITIONS[current]:
        raise InvalidTransition(current, target)

    box.reimbursement_status = target
    logger.info(
        "reimbursement_changed",
        box_id=box.box_id,
        from_status=current.value,
        to_status=target.value,
    )
    if publisher is not None:
        publisher.publish(reimbursement_changed(box.box_id, current.value, target.value))
    return target
