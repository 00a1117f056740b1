"""Consistency checks that flag a box for a human to look at.

Issues never block a transition. ``error`` issues make ``is_valid`` false,
which list views use to highlight a box.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from docbox.aggregation import ExtractionResult
from docbox.config.settings import get_settings
from docbox.matching import normalize_tax_id
from docbox.models import Box, DocType, ExpenseType

_PRIMARY_DOCS = frozenset({DocType.TAX_INVOICE, DocType.INVOICE, DocType.FOREIGN_INVOICE})
_SLIPS = frozenset({DocType.SLIP_TRANSFER, DocType.SLIP_CHEQUE})
_CASH_RECEIPTS = frozenset({DocType.CASH_RECEIPT, DocType.RECEIPT, DocType.OTHER})


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    severity: Severity
    message: str
    suggestion: str | None = None
    field: str | None = None
    can_dismiss: bool = True


@dataclass(frozen=True)
class ValidationResult:
    issues: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)

    @property
    def is_valid(self) -> bool:
        return self.count(Severity.ERROR) == 0

    @property
    def has_warnings(self) -> bool:
        return self.count(Severity.WARNING) > 0

    @property
    def summary(self) -> dict[str, int]:
        return {
            "errors": self.count(Severity.ERROR),
            "warnings": self.count(Severity.WARNING),
            "info": self.count(Severity.INFO),
        }

    @property
    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]


def _fmt(amount: Decimal) -> str:
    return f"{amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):,}"


class BoxValidator:
    """Runs every rule over a box and its extraction results."""

    def __init__(
        self,
        standard_vat_rate: Decimal | None = None,
        vat_rate_tolerance: Decimal | None = None,
        amount_tolerance: Decimal | None = None,
    ):
        settings = get_settings()
        self._vat_rate = settings.standard_vat_rate if standard_vat_rate is None else standard_vat_rate
        self._vat_tolerance = (
            settings.vat_rate_tolerance if vat_rate_tolerance is None else vat_rate_tolerance
        )
        self._amount_tolerance = (
            settings.validation_amount_tolerance if amount_tolerance is None else amount_tolerance
        )

    def validate(
        self, box: Box, extractions: Iterable[ExtractionResult] = ()
    ) -> ValidationResult:
        extractions = [e for e in extractions if e.ok]
        issues: list[ValidationIssue] = []
        issues.extend(self._documents(box))
        issues.extend(self._amounts(box, extractions))
        issues.extend(self._vat(box))
        issues.extend(self._wht(box))
        issues.extend(self._contact(box, extractions))
        return ValidationResult(issues=tuple(issues))

    def _documents(self, box: Box) -> list[ValidationIssue]:
        doc_types = {doc.doc_type for doc in box.documents}
        issues = []
        if box.expense_type == ExpenseType.STANDARD and DocType.TAX_INVOICE not in doc_types:
            issues.append(
                ValidationIssue(
                    code="MISSING_TAX_INVOICE",
                    severity=Severity.ERROR,
                    message="No tax invoice yet",
                    suggestion="Upload the tax invoice to confirm the amount and claim VAT",
                    can_dismiss=False,
                )
            )
        if (
            box.expense_type == ExpenseType.NO_VAT
            and not doc_types & _CASH_RECEIPTS
            and not box.no_receipt_reason
        ):
            issues.append(
                ValidationIssue(
                    code="MISSING_RECEIPT",
                    severity=Severity.WARNING,
                    message="No cash bill or receipt yet",
                    suggestion="Upload the receipt or confirm there is none",
                    can_dismiss=False,
                )
            )
        if box.paid_amount > 0 and not doc_types & _SLIPS:
            issues.append(
                ValidationIssue(
                    code="MISSING_SLIP",
                    severity=Severity.INFO,
                    message="Paid but no transfer slip or cheque copy",
                    suggestion="Upload the transfer slip or cheque copy",
                )
            )
        return issues

    def _amounts(self, box: Box, extractions: list[ExtractionResult]) -> list[ValidationIssue]:
        has_primary = any(doc.doc_type in _PRIMARY_DOCS and doc.amount for doc in box.documents)
        has_slip = any(doc.doc_type in _SLIPS for doc in box.documents)
        if not has_primary or not has_slip:
            return []

        slip_amount = next(
            (e.amount for e in extractions if e.doc_type in _SLIPS and e.amount), None
        )
        if slip_amount is None:
            return []

        expected = box.total_amount - box.wht_amount
        if abs(slip_amount - expected) <= self._amount_tolerance:
            return []

        if box.has_wht and box.wht_amount == 0:
            return [
                ValidationIssue(
                    code="AMOUNT_WHT_MISMATCH",
                    severity=Severity.WARNING,
                    message=f"Slip amount {_fmt(slip_amount)} differs from invoice total {_fmt(box.total_amount)}",
                    suggestion="Withholding tax may have been deducted; set the WHT rate",
                )
            ]
        if not box.has_wht:
            return [
                ValidationIssue(
                    code="AMOUNT_MISMATCH",
                    severity=Severity.WARNING,
                    message=f"Slip amount {_fmt(slip_amount)} differs from total {_fmt(box.total_amount)}",
                    suggestion="Check for installments or discounts",
                )
            ]
        return []

    def _vat(self, box: Box) -> list[ValidationIssue]:
        if box.expense_type != ExpenseType.STANDARD or box.total_amount <= 0:
            return []
        if box.vat_amount > 0:
            base = box.total_amount - box.vat_amount
            if base <= 0:
                return []
            rate = box.vat_amount / base * 100
            if abs(rate - self._vat_rate) > self._vat_tolerance:
                return [
                    ValidationIssue(
                        code="VAT_RATE_UNUSUAL",
                        severity=Severity.WARNING,
                        message=f"Computed VAT rate is {_fmt(rate)}% (expected {self._vat_rate}%)",
                        suggestion="Check the pre-VAT amount and the VAT amount",
                        field="vat_amount",
                    )
                ]
            return []
        return [
            ValidationIssue(
                code="VAT_MISSING",
                severity=Severity.INFO,
                message="VAT amount not entered",
                suggestion="Enter VAT from the tax invoice",
                field="vat_amount",
                can_dismiss=False,
            )
        ]

    def _wht(self, box: Box) -> list[ValidationIssue]:
        if not box.has_wht:
            return []
        rate = box.wht_rate or Decimal("0")
        issues = []
        if rate == 0 and box.wht_amount == 0:
            issues.append(
                ValidationIssue(
                    code="WHT_RATE_MISSING",
                    severity=Severity.WARNING,
                    message="Withholding tax is on but no rate is set",
                    suggestion="Set the rate (1%, 2%, 3% or 5%)",
                    field="wht_rate",
                    can_dismiss=False,
                )
            )
        if rate > 0 and box.wht_amount > 0:
            expected = (box.total_amount - box.vat_amount) * rate / 100
            if abs(expected - box.wht_amount) > self._amount_tolerance:
                issues.append(
                    ValidationIssue(
                        code="WHT_AMOUNT_MISMATCH",
                        severity=Severity.WARNING,
                        message=f"WHT {rate}% should be {_fmt(expected)} but is {_fmt(box.wht_amount)}",
                        suggestion="Check the withholding amount",
                        field="wht_amount",
                    )
                )
        return issues

    def _contact(self, box: Box, extractions: list[ExtractionResult]) -> list[ValidationIssue]:
        issues = []
        extracted_tax_id = next((e.tax_id for e in extractions if e.tax_id), None)
        if (
            extracted_tax_id
            and box.contact_tax_id
            and normalize_tax_id(extracted_tax_id) != normalize_tax_id(box.contact_tax_id)
        ):
            issues.append(
                ValidationIssue(
                    code="TAXID_MISMATCH",
                    severity=Severity.WARNING,
                    message=(
                        f"Tax ID on the document ({extracted_tax_id}) differs from "
                        f"the selected contact ({box.contact_tax_id})"
                    ),
                    suggestion="Check the selected contact",
                )
            )
        if box.expense_type == ExpenseType.STANDARD and box.vat_amount > 0 and not box.contact_tax_id:
            issues.append(
                ValidationIssue(
                    code="CONTACT_TAXID_MISSING",
                    severity=Severity.INFO,
                    message="Contact has no tax ID, which a VAT claim needs",
                    suggestion="Add the contact's tax ID",
                )
            )
        return issues


def validate_box(box: Box, extractions: Iterable[ExtractionResult] = ()) -> ValidationResult:
    return BoxValidator().validate(box, extractions)
