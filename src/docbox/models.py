"""Record shapes and enumerations for document boxes.

Boxes, documents, payments and WHT tracking records are read and written
as whole-record snapshots by the persistence layer. The core only relies on
the fields declared here.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import uuid4


# =============================================================================
# ENUMERATIONS
# =============================================================================


class BoxType(str, Enum):
    """Direction of the transaction a box bundles."""

    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


class ExpenseType(str, Enum):
    """How an expense is evidenced."""

    STANDARD = "STANDARD"  # vendor issues a tax invoice
    NO_VAT = "NO_VAT"  # cash receipt only
    FOREIGN = "FOREIGN"  # overseas vendor invoice


class DocType(str, Enum):
    """Closed set of document categories a file can be classified as."""

    TAX_INVOICE = "TAX_INVOICE"
    TAX_INVOICE_ABB = "TAX_INVOICE_ABB"
    INVOICE = "INVOICE"
    FOREIGN_INVOICE = "FOREIGN_INVOICE"
    RECEIPT = "RECEIPT"
    CASH_RECEIPT = "CASH_RECEIPT"
    SLIP_TRANSFER = "SLIP_TRANSFER"
    SLIP_CHEQUE = "SLIP_CHEQUE"
    BANK_STATEMENT = "BANK_STATEMENT"
    CREDIT_CARD_STATEMENT = "CREDIT_CARD_STATEMENT"
    ONLINE_RECEIPT = "ONLINE_RECEIPT"
    WHT_SENT = "WHT_SENT"
    WHT_RECEIVED = "WHT_RECEIVED"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> "DocType | None":
        """Return the DocType for a raw value, or None if it is not one."""
        if isinstance(value, DocType):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class BoxStatus(str, Enum):
    """Lifecycle status of a box."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    NEED_DOCS = "NEED_DOCS"
    COMPLETED = "COMPLETED"
    # Kept for audit history
    REJECTED = "REJECTED"
    VOID = "VOID"


class PaymentStatus(str, Enum):
    """Payment status derived from paid vs. total amount."""

    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERPAID = "OVERPAID"


class PaymentMethod(str, Enum):
    """How money moved."""

    TRANSFER = "TRANSFER"
    CHEQUE = "CHEQUE"
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    OTHER = "OTHER"


class PaymentMode(str, Enum):
    """Who fronted the money for an expense."""

    COMPANY_PAID = "COMPANY_PAID"
    EMPLOYEE_ADVANCE = "EMPLOYEE_ADVANCE"


class ReimbursementStatus(str, Enum):
    """Reimbursement progress for employee-advanced expenses."""

    NONE = "NONE"
    PENDING = "PENDING"
    REIMBURSED = "REIMBURSED"


class VatDocStatus(str, Enum):
    """Tracking flag for the VAT (tax invoice) document."""

    MISSING = "MISSING"
    RECEIVED = "RECEIVED"
    VERIFIED = "VERIFIED"
    NA = "NA"


class WhtDocStatus(str, Enum):
    """Tracking flag for the WHT certificate."""

    MISSING = "MISSING"
    REQUEST_SENT = "REQUEST_SENT"
    RECEIVED = "RECEIVED"
    VERIFIED = "VERIFIED"
    NA = "NA"


class WhtTrackingType(str, Enum):
    """Direction of a WHT certificate obligation."""

    OUTGOING = "OUTGOING"  # we owe the vendor a certificate
    INCOMING = "INCOMING"  # we await a certificate from the customer


class WhtStatus(str, Enum):
    """States of a single WHT certificate."""

    PENDING = "PENDING"
    ISSUED = "ISSUED"
    SENT = "SENT"
    CONFIRMED = "CONFIRMED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class WhtSentMethod(str, Enum):
    """Delivery channel for an outgoing certificate."""

    EMAIL = "EMAIL"
    MAIL = "MAIL"
    HAND_DELIVERY = "HAND_DELIVERY"
    OTHER = "OTHER"


NO_CASH_RECEIPT = "NO_CASH_RECEIPT"


# =============================================================================
# HELPERS
# =============================================================================


def to_decimal(value: Any) -> Decimal | None:
    """Convert value to Decimal, returning None for blanks and garbage."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        value = value.replace(",", "").strip()
        if not value:
            return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


# =============================================================================
# RECORDS
# =============================================================================


@dataclass
class DocumentFile:
    """Uploaded file metadata. The bytes live in external storage."""

    file_id: str
    name: str = ""
    mime_type: str = ""
    checksum: str | None = None


@dataclass
class Document:
    """A logical document inside a box, owning one or more files."""

    doc_type: DocType
    document_id: str = field(default_factory=lambda: str(uuid4()))
    doc_number: str | None = None
    doc_date: date | None = None
    amount: Decimal | None = None
    vat_amount: Decimal | None = None
    files: list[DocumentFile] = field(default_factory=list)


@dataclass
class Payment:
    """A single payment event against a box."""

    box_id: str
    amount: Decimal
    method: PaymentMethod = PaymentMethod.TRANSFER
    paid_date: date | None = None
    payment_id: str = field(default_factory=lambda: str(uuid4()))
    document_id: str | None = None
    file_id: str | None = None
    reference: str | None = None
    notes: str | None = None
    reverses: str | None = None  # payment_id this row compensates
    voided: bool = False


@dataclass
class WhtTracking:
    """One WHT certificate obligation for a box."""

    box_id: str
    tracking_type: WhtTrackingType
    wht_rate: Decimal
    wht_amount: Decimal
    tracking_id: str = field(default_factory=lambda: str(uuid4()))
    status: WhtStatus = WhtStatus.PENDING
    contact_id: str | None = None
    counterparty_name: str | None = None
    issued_date: datetime | None = None
    sent_date: datetime | None = None
    sent_method: WhtSentMethod | None = None
    confirmed_date: datetime | None = None
    received_date: datetime | None = None
    cancelled_date: datetime | None = None
    notes: str | None = None


@dataclass
class Box:
    """The unit of work bundling one transaction's documents and obligations."""

    box_type: BoxType
    box_id: str = field(default_factory=lambda: str(uuid4()))
    box_number: str = ""
    expense_type: ExpenseType | None = None
    box_date: date | None = None
    has_vat: bool = False
    has_wht: bool = False
    wht_rate: Decimal | None = None
    total_amount: Decimal = Decimal("0")
    vat_amount: Decimal = Decimal("0")
    wht_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    status: BoxStatus = BoxStatus.DRAFT
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    vat_doc_status: VatDocStatus = VatDocStatus.MISSING
    wht_doc_status: WhtDocStatus = WhtDocStatus.MISSING
    is_paid: bool = False
    has_payment_proof: bool = False
    has_tax_invoice: bool = False
    has_invoice: bool = False
    wht_issued: bool = False
    wht_received: bool = False
    no_receipt_reason: str | None = None
    payment_mode: PaymentMode = PaymentMode.COMPANY_PAID
    reimbursement_status: ReimbursementStatus | None = None
    is_multi_payment: bool = False
    installment_amount: Decimal | None = None
    possible_duplicate: bool = False
    duplicate_reason: str | None = None
    contact_id: str | None = None
    contact_name: str | None = None
    contact_tax_id: str | None = None
    description: str | None = None
    na_doc_types: set[str] = field(default_factory=set)
    documents: list[Document] = field(default_factory=list)

    @property
    def uploaded_doc_types(self) -> list[DocType]:
        """Doc types of documents that actually hold files."""
        return [doc.doc_type for doc in self.documents if doc.files]

    def find_document(self, doc_type: DocType) -> Document | None:
        """Return the first document of the given type, if any."""
        for doc in self.documents:
            if doc.doc_type == doc_type:
                return doc
        return None
