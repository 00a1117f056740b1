"""Whole-record box snapshots as plain dictionaries.

Persistence hands the core a box with its documents, payments and WHT
records. This module turns such a JSON-style mapping into model objects and
evaluates it with the same functions the server path uses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from docbox.checklist import ChecklistEngine, derive_doc_status
from docbox.models import (
    Box,
    BoxStatus,
    BoxType,
    DocType,
    Document,
    DocumentFile,
    ExpenseType,
    Payment,
    PaymentMethod,
    PaymentMode,
    PaymentStatus,
    ReimbursementStatus,
    VatDocStatus,
    WhtDocStatus,
    WhtSentMethod,
    WhtStatus,
    WhtTracking,
    WhtTrackingType,
    to_decimal,
)
from docbox.payments import InMemoryPaymentStore, PaymentReconciler
from docbox.status import available_actions
from docbox.wht import as_utc, resolve_wht_rate, summarize_wht_doc_status


@dataclass
class BoxSnapshot:
    box: Box
    payments: list[Payment] = field(default_factory=list)
    wht_records: list[WhtTracking] = field(default_factory=list)


def _enum(enum_cls: Any, value: Any, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    return enum_cls(str(value).upper())


def _date(value: Any) -> date | None:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


def _datetime(value: Any) -> datetime | None:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(str(value)))


def _amount(value: Any) -> Decimal:
    return to_decimal(value) or Decimal("0")


def document_from_dict(data: dict[str, Any]) -> Document:
    doc_type = DocType.parse(data.get("doc_type"))
    if doc_type is None:
        raise ValueError(f"unknown doc_type: {data.get('doc_type')!r}")
    kwargs: dict[str, Any] = {}
    if data.get("document_id"):
        kwargs["document_id"] = str(data["document_id"])
    return Document(
        doc_type=doc_type,
        doc_number=data.get("doc_number"),
        doc_date=_date(data.get("doc_date")),
        amount=to_decimal(data.get("amount")),
        vat_amount=to_decimal(data.get("vat_amount")),
        files=[
            DocumentFile(
                file_id=str(f["file_id"]),
                name=f.get("name", ""),
                mime_type=f.get("mime_type", ""),
                checksum=f.get("checksum"),
            )
            for f in data.get("files", [])
        ],
        **kwargs,
    )


def box_from_dict(data: dict[str, Any]) -> Box:
    """Build a Box from a snake_case mapping. Raises ValueError on bad enums."""
    if "box_type" not in data:
        raise ValueError("box_type is required")
    kwargs: dict[str, Any] = {}
    if data.get("box_id"):
        kwargs["box_id"] = str(data["box_id"])
    return Box(
        box_type=_enum(BoxType, data["box_type"]),
        box_number=str(data.get("box_number", "")),
        expense_type=_enum(ExpenseType, data.get("expense_type")),
        box_date=_date(data.get("box_date")),
        has_vat=bool(data.get("has_vat", False)),
        has_wht=bool(data.get("has_wht", False)),
        wht_rate=resolve_wht_rate(data.get("wht_rate")),
        total_amount=_amount(data.get("total_amount")),
        vat_amount=_amount(data.get("vat_amount")),
        wht_amount=_amount(data.get("wht_amount")),
        paid_amount=_amount(data.get("paid_amount")),
        status=_enum(BoxStatus, data.get("status"), BoxStatus.DRAFT),
        payment_status=_enum(PaymentStatus, data.get("payment_status"), PaymentStatus.UNPAID),
        vat_doc_status=_enum(VatDocStatus, data.get("vat_doc_status"), VatDocStatus.MISSING),
        wht_doc_status=_enum(WhtDocStatus, data.get("wht_doc_status"), WhtDocStatus.MISSING),
        is_paid=bool(data.get("is_paid", False)),
        has_payment_proof=bool(data.get("has_payment_proof", False)),
        has_tax_invoice=bool(data.get("has_tax_invoice", False)),
        has_invoice=bool(data.get("has_invoice", False)),
        wht_issued=bool(data.get("wht_issued", False)),
        wht_received=bool(data.get("wht_received", False)),
        no_receipt_reason=data.get("no_receipt_reason"),
        payment_mode=_enum(PaymentMode, data.get("payment_mode"), PaymentMode.COMPANY_PAID),
        reimbursement_status=_enum(ReimbursementStatus, data.get("reimbursement_status")),
        is_multi_payment=bool(data.get("is_multi_payment", False)),
        installment_amount=to_decimal(data.get("installment_amount")),
        contact_id=data.get("contact_id"),
        contact_name=data.get("contact_name"),
        contact_tax_id=data.get("contact_tax_id"),
        description=data.get("description"),
        na_doc_types=set(data.get("na_doc_types", [])),
        documents=[document_from_dict(d) for d in data.get("documents", [])],
        **kwargs,
    )


def payment_from_dict(box_id: str, data: dict[str, Any]) -> Payment:
    kwargs: dict[str, Any] = {}
    if data.get("payment_id"):
        kwargs["payment_id"] = str(data["payment_id"])
    return Payment(
        box_id=box_id,
        amount=_amount(data.get("amount")),
        method=_enum(PaymentMethod, data.get("method"), PaymentMethod.TRANSFER),
        paid_date=_date(data.get("paid_date")),
        reference=data.get("reference"),
        notes=data.get("notes"),
        reverses=data.get("reverses"),
        voided=bool(data.get("voided", False)),
        **kwargs,
    )


def wht_from_dict(box_id: str, data: dict[str, Any]) -> WhtTracking:
    kwargs: dict[str, Any] = {}
    if data.get("tracking_id"):
        kwargs["tracking_id"] = str(data["tracking_id"])
    return WhtTracking(
        box_id=box_id,
        tracking_type=_enum(WhtTrackingType, data["tracking_type"]),
        wht_rate=resolve_wht_rate(data.get("wht_rate")) or Decimal("0"),
        wht_amount=_amount(data.get("wht_amount")),
        status=_enum(WhtStatus, data.get("status"), WhtStatus.PENDING),
        contact_id=data.get("contact_id"),
        counterparty_name=data.get("counterparty_name"),
        issued_date=_datetime(data.get("issued_date")),
        sent_date=_datetime(data.get("sent_date")),
        sent_method=_enum(WhtSentMethod, data.get("sent_method")),
        confirmed_date=_datetime(data.get("confirmed_date")),
        received_date=_datetime(data.get("received_date")),
        cancelled_date=_datetime(data.get("cancelled_date")),
        **kwargs,
    )


def load_snapshot(data: dict[str, Any]) -> BoxSnapshot:
    """Parse ``{"box": ..., "payments": [...], "wht_records": [...]}``."""
    if "box" not in data:
        raise ValueError("snapshot must contain a box")
    box = box_from_dict(data["box"])
    return BoxSnapshot(
        box=box,
        payments=[payment_from_dict(box.box_id, p) for p in data.get("payments", [])],
        wht_records=[wht_from_dict(box.box_id, w) for w in data.get("wht_records", [])],
    )


def evaluate_snapshot(snapshot: BoxSnapshot, engine: ChecklistEngine | None = None) -> dict[str, Any]:
    """Recompute checklist and payment state without persisting anything."""
    box = snapshot.box
    store = InMemoryPaymentStore([box], snapshot.payments)
    payment = PaymentReconciler(store).recalculate_box_payment_status(box.box_id)
    checklist = (engine or ChecklistEngine()).evaluate(box, snapshot.wht_records)

    return {
        "box_id": box.box_id,
        "box_number": box.box_number,
        "status": box.status.value,
        "available_actions": [a.value for a in available_actions(box.status)],
        "checklist": checklist.to_dict(),
        "doc_status": derive_doc_status(checklist, box.no_receipt_reason).value,
        "payment": {
            "total_amount": str(payment.total_amount),
            "paid_amount": str(payment.paid_amount),
            "payment_status": payment.payment_status.value,
            "overpaid_amount": str(payment.overpaid_amount),
        },
        "wht_doc_status": (
            summarize_wht_doc_status(snapshot.wht_records).value
            if snapshot.wht_records
            else box.wht_doc_status.value
        ),
    }
