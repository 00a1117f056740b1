"""Checklist engine: per-requirement satisfaction and completion.

The checklist is always recomputed from scratch from the box's
requirements, uploaded doc types, "not applicable" overrides and persisted
flags. It is never patched incrementally, so stored flags cannot drift from
what was actually uploaded.
"""

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from docbox.models import (
    NO_CASH_RECEIPT,
    Box,
    DocType,
    PaymentStatus,
    VatDocStatus,
    WhtDocStatus,
    WhtStatus,
    WhtTracking,
    WhtTrackingType,
)
from docbox.requirements import Requirement, RequirementRules


class RequirementStatus(str, Enum):
    """Outcome of evaluating one requirement."""

    SATISFIED = "satisfied"
    MISSING = "missing"
    WAITING = "waiting"
    NOT_APPLICABLE = "not_applicable"


class DocStatus(str, Enum):
    """Box-level document completeness summary."""

    INCOMPLETE = "INCOMPLETE"
    COMPLETE = "COMPLETE"
    NA = "NA"


_DOC_RECEIVED = {VatDocStatus.RECEIVED, VatDocStatus.VERIFIED}
_WHT_DOC_RECEIVED = {WhtDocStatus.RECEIVED, WhtDocStatus.VERIFIED}
_OUTGOING_DONE = {WhtStatus.ISSUED, WhtStatus.SENT, WhtStatus.CONFIRMED}
_SETTLED = {PaymentStatus.PAID, PaymentStatus.OVERPAID}


@dataclass(frozen=True)
class ChecklistFlags:
    """Persisted flags that cannot be inferred from doc types alone."""

    is_paid: bool = False
    has_payment_proof: bool = False
    has_tax_invoice: bool = False
    has_invoice: bool = False
    wht_issued: bool = False
    wht_received: bool = False
    vat_doc_status: VatDocStatus = VatDocStatus.MISSING
    wht_doc_status: WhtDocStatus = WhtDocStatus.MISSING
    no_receipt_reason: str | None = None

    @classmethod
    def from_box(cls, box: Box) -> "ChecklistFlags":
        return cls(
            is_paid=box.is_paid or box.payment_status in _SETTLED,
            has_payment_proof=box.has_payment_proof,
            has_tax_invoice=box.has_tax_invoice,
            has_invoice=box.has_invoice,
            wht_issued=box.wht_issued,
            wht_received=box.wht_received,
            vat_doc_status=box.vat_doc_status,
            wht_doc_status=box.wht_doc_status,
            no_receipt_reason=box.no_receipt_reason,
        )


@dataclass(frozen=True)
class ChecklistItem:
    """Evaluated requirement."""

    id: str
    label: str
    required: bool
    status: RequirementStatus
    accepted_doc_types: frozenset[DocType]
    satisfied_by: tuple[str, ...] = ()

    @property
    def is_done(self) -> bool:
        return self.status in (RequirementStatus.SATISFIED, RequirementStatus.NOT_APPLICABLE)


@dataclass(frozen=True)
class Checklist:
    """Full checklist for a box."""

    items: tuple[ChecklistItem, ...] = field(default_factory=tuple)
    completion_percent: int = 100

    @property
    def is_complete(self) -> bool:
        return all(item.is_done for item in self.items if item.required)

    @property
    def missing(self) -> list[ChecklistItem]:
        """Required items that are not yet satisfied (including waiting)."""
        return [item for item in self.items if item.required and not item.is_done]

    def item(self, requirement_id: str) -> ChecklistItem | None:
        for item in self.items:
            if item.id == requirement_id:
                return item
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "completion_percent": self.completion_percent,
            "is_complete": self.is_complete,
            "items": [
                {
                    "id": item.id,
                    "label": item.label,
                    "required": item.required,
                    "status": item.status.value,
                    "satisfied_by": list(item.satisfied_by),
                }
                for item in self.items
            ],
        }


# =============================================================================
# EVALUATION
# =============================================================================


def completion_percent(items: Iterable[ChecklistItem]) -> int:
    """Percentage of required items satisfied or not applicable.

    Optional items never count against completeness. A checklist with no
    required items is 100% complete.
    """
    required = [item for item in items if item.required]
    if not required:
        return 100
    done = sum(1 for item in required if item.is_done)
    ratio = Decimal(100 * done) / Decimal(len(required))
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _flag_evidence(
    requirement: Requirement,
    flags: ChecklistFlags,
    wht_records: Collection[WhtTracking],
) -> tuple[RequirementStatus | None, tuple[str, ...]]:
    """Status contributed by persisted flags and WHT records.

    Returns (None, ()) when flags say nothing about the requirement.
    """
    rid = requirement.id
    if rid == "payment_proof":
        if flags.is_paid:
            return RequirementStatus.SATISFIED, ("flag:is_paid",)
        if flags.has_payment_proof:
            return RequirementStatus.SATISFIED, ("flag:has_payment_proof",)
    elif rid == "receipt":
        if flags.has_payment_proof:
            return RequirementStatus.SATISFIED, ("flag:has_payment_proof",)
    elif rid == "tax_invoice":
        if flags.vat_doc_status == VatDocStatus.NA:
            return RequirementStatus.NOT_APPLICABLE, ("vat_doc_status:NA",)
        if flags.vat_doc_status in _DOC_RECEIVED:
            return RequirementStatus.SATISFIED, (f"vat_doc_status:{flags.vat_doc_status.value}",)
        if flags.has_tax_invoice:
            return RequirementStatus.SATISFIED, ("flag:has_tax_invoice",)
    elif rid == "invoice":
        if flags.has_invoice:
            return RequirementStatus.SATISFIED, ("flag:has_invoice",)
    elif rid == "cash_receipt":
        if flags.no_receipt_reason == NO_CASH_RECEIPT:
            return RequirementStatus.SATISFIED, ("no_receipt_reason:NO_CASH_RECEIPT",)
    elif rid in ("wht_sent", "wht_received"):
        return _wht_evidence(rid, flags, wht_records)
    return None, ()


def _wht_evidence(
    rid: str,
    flags: ChecklistFlags,
    wht_records: Collection[WhtTracking],
) -> tuple[RequirementStatus | None, tuple[str, ...]]:
    if flags.wht_doc_status == WhtDocStatus.NA:
        return RequirementStatus.NOT_APPLICABLE, ("wht_doc_status:NA",)
    if flags.wht_doc_status in _WHT_DOC_RECEIVED:
        return RequirementStatus.SATISFIED, (f"wht_doc_status:{flags.wht_doc_status.value}",)

    if rid == "wht_sent":
        if flags.wht_issued:
            return RequirementStatus.SATISFIED, ("flag:wht_issued",)
        for record in wht_records:
            if record.tracking_type == WhtTrackingType.OUTGOING and record.status in _OUTGOING_DONE:
                return RequirementStatus.SATISFIED, (f"wht:{record.tracking_id}",)
        return None, ()

    if flags.wht_received:
        return RequirementStatus.SATISFIED, ("flag:wht_received",)
    for record in wht_records:
        if record.tracking_type == WhtTrackingType.INCOMING and record.status == WhtStatus.RECEIVED:
            return RequirementStatus.SATISFIED, (f"wht:{record.tracking_id}",)
    if flags.wht_doc_status == WhtDocStatus.REQUEST_SENT:
        return RequirementStatus.WAITING, ("wht_doc_status:REQUEST_SENT",)
    for record in wht_records:
        if record.tracking_type == WhtTrackingType.INCOMING and record.status == WhtStatus.PENDING:
            return RequirementStatus.WAITING, (f"wht:{record.tracking_id}",)
    return None, ()


def evaluate_requirement(
    requirement: Requirement,
    uploaded: Collection[DocType],
    na_doc_types: Collection[str] = (),
    flags: ChecklistFlags | None = None,
    wht_records: Collection[WhtTracking] = (),
) -> ChecklistItem:
    """Evaluate a single requirement. See evaluate_checklist."""
    flags = flags or ChecklistFlags()

    status = RequirementStatus.MISSING
    evidence: tuple[str, ...] = ()

    if requirement.id in na_doc_types:
        status = RequirementStatus.NOT_APPLICABLE
        evidence = ("override:not_applicable",)
    else:
        matched = sorted({d.value for d in uploaded if requirement.accepts(d)})
        if matched:
            status = RequirementStatus.SATISFIED
            evidence = tuple(f"doc:{value}" for value in matched)
        else:
            flag_status, flag_evidence = _flag_evidence(requirement, flags, wht_records)
            if flag_status is not None:
                status, evidence = flag_status, flag_evidence

    return ChecklistItem(
        id=requirement.id,
        label=requirement.label,
        required=requirement.required,
        status=status,
        accepted_doc_types=requirement.accepted_doc_types,
        satisfied_by=evidence,
    )


def evaluate_checklist(
    requirements: Iterable[Requirement],
    uploaded_doc_types: Iterable[DocType],
    na_doc_types: Collection[str] = (),
    flags: ChecklistFlags | None = None,
    wht_records: Collection[WhtTracking] = (),
) -> Checklist:
    """Derive the checklist for a requirement set.

    Args:
        requirements: Output of RequirementRules.
        uploaded_doc_types: Doc types present among the box's documents
            (a multiset; duplicates are harmless).
        na_doc_types: Requirement ids explicitly marked not applicable. These win over everything else.
        flags: Persisted flags such as ``is_paid`` or ``vat_doc_status``.
        wht_records: WHT tracking records for the box.

    Returns:
        Checklist with one item per requirement and the completion percentage.
    """
    uploaded = [DocType(d) for d in uploaded_doc_types]
    items = tuple(
        evaluate_requirement(requirement, uploaded, na_doc_types, flags, wht_records)
        for requirement in requirements
    )
    return Checklist(items=items, completion_percent=completion_percent(items))


class ChecklistEngine:
    """Evaluates checklists for whole boxes."""

    def __init__(self, rules: RequirementRules | None = None):
        self._rules = rules or RequirementRules()

    @property
    def rules(self) -> RequirementRules:
        return self._rules

    def evaluate(
        self,
        box: Box,
        wht_records: Collection[WhtTracking] = (),
        flags: ChecklistFlags | None = None,
    ) -> Checklist:
        """Recompute the checklist for a box from its current snapshot."""
        return evaluate_checklist(
            self._rules.for_box(box),
            box.uploaded_doc_types,
            na_doc_types=box.na_doc_types,
            flags=flags or ChecklistFlags.from_box(box),
            wht_records=wht_records,
        )


# =============================================================================
# DOC STATUS FLAGS
# =============================================================================


def derive_doc_status(checklist: Checklist, no_receipt_reason: str | None = None) -> DocStatus:
    """Summarize document completeness for list views.

    A no-receipt reason other than NO_CASH_RECEIPT means the box needs no
    documents at all.
    """
    if no_receipt_reason and no_receipt_reason != NO_CASH_RECEIPT:
        return DocStatus.NA
    return DocStatus.COMPLETE if checklist.is_complete else DocStatus.INCOMPLETE


def derive_vat_doc_status(
    current: VatDocStatus,
    uploaded_doc_types: Iterable[DocType],
    tax_invoice_types: Collection[DocType] = (DocType.TAX_INVOICE, DocType.TAX_INVOICE_ABB),
) -> VatDocStatus:
    """Move MISSING to RECEIVED when a tax invoice is uploaded.

    Only MISSING is ever upgraded. RECEIVED may have been marked by hand
    and VERIFIED and NA are reviewer decisions.
    """
    if current != VatDocStatus.MISSING:
        return current
    if any(d in tax_invoice_types for d in uploaded_doc_types):
        return VatDocStatus.RECEIVED
    return current
