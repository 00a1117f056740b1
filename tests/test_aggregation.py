"""Tests for multi-file field aggregation."""

from decimal import Decimal

import pytest

from docbox.aggregation import (
    AMOUNT,
    CONTACT_NAME,
    DOC_TYPE,
    DOCUMENT_DATE,
    DOCUMENT_NUMBER,
    TAX_ID,
    VAT_AMOUNT,
    ExtractionResult,
    FieldAggregator,
    aggregate,
)
from docbox.models import DocType


def _result(file_id, confidence=0.9, **fields):
    return ExtractionResult(file_id=file_id, file_name=f"{file_id}.jpg", confidence=confidence, **fields)


class TestNumericFields:
    """Tests for amount clustering."""

    def test_within_tolerance_no_conflict(self):
        """500.00 and 500.30 are the same amount; higher confidence wins."""
        data = aggregate(
            [
                _result("a", 0.7, amount=Decimal("500.00")),
                _result("b", 0.95, amount=Decimal("500.30")),
            ]
        )
        assert data[AMOUNT].has_conflict is False
        assert data.value(AMOUNT) == Decimal("500.30")
        assert len(data[AMOUNT].all_values) == 2

    def test_outlier_flips_conflict(self):
        """One candidate more than 0.5 away makes it a conflict."""
        results = [
            _result("a", 0.7, amount=Decimal("500.00")),
            _result("b", 0.95, amount=Decimal("500.30")),
        ]
        assert not aggregate(results)[AMOUNT].has_conflict

        results.append(_result("c", 0.5, amount=Decimal("501.00")))
        data = aggregate(results)
        assert data[AMOUNT].has_conflict
        assert data.conflicting_fields == [AMOUNT]

    def test_exact_half_is_different(self):
        data = aggregate([_result("a", amount=Decimal("100")), _result("b", amount=Decimal("100.5"))])
        assert data[AMOUNT].has_conflict

    def test_vat_must_be_positive(self):
        """Zero VAT is no candidate and does not set has_vat."""
        data = aggregate([_result("a", vat_amount=Decimal("0"))])
        assert data.value(VAT_AMOUNT) is None
        assert data.has_vat is False

        data = aggregate([_result("a", vat_amount=Decimal("70"))])
        assert data.value(VAT_AMOUNT) == Decimal("70")
        assert data.has_vat is True

    def test_tie_keeps_first_seen(self):
        data = aggregate(
            [
                _result("a", 0.8, amount=Decimal("100")),
                _result("b", 0.8, amount=Decimal("900")),
            ]
        )
        assert data.value(AMOUNT) == Decimal("100")


class TestStringFields:
    """Tests for text and exact-match fields."""

    def test_case_and_whitespace_insensitive(self):
        data = aggregate(
            [
                _result("a", 0.6, contact_name="Siam Supply"),
                _result("b", 0.9, contact_name="  siam supply "),
            ]
        )
        assert data[CONTACT_NAME].has_conflict is False
        assert data.value(CONTACT_NAME) == "  siam supply "

    def test_different_names_conflict(self):
        data = aggregate(
            [_result("a", contact_name="Siam Supply"), _result("b", contact_name="Thai Paper")]
        )
        assert data[CONTACT_NAME].has_conflict

    def test_dates_exact(self):
        data = aggregate(
            [_result("a", document_date="2025-03-01"), _result("b", document_date="2025-03-02")]
        )
        assert data[DOCUMENT_DATE].has_conflict

    def test_tax_id_exact(self):
        data = aggregate(
            [_result("a", tax_id="0105555012345"), _result("b", tax_id="0105555012345")]
        )
        assert not data[TAX_ID].has_conflict

    def test_document_numbers_never_conflict(self):
        data = aggregate(
            [
                _result("a", 0.9, document_number="INV-001"),
                _result("b", 0.5, document_number="SLIP-778"),
            ]
        )
        assert data[DOCUMENT_NUMBER].has_conflict is False
        assert data.value(DOCUMENT_NUMBER) == "INV-001"
        assert [c.value for c in data[DOCUMENT_NUMBER].all_values] == ["INV-001", "SLIP-778"]


class TestDocType:
    """Tests for doc type preference."""

    def test_tax_invoice_preferred(self):
        """A tax invoice wins over a higher-confidence slip guess."""
        data = aggregate(
            [
                _result("slip", 0.99, doc_type=DocType.SLIP_TRANSFER),
                _result("inv", 0.4, doc_type=DocType.TAX_INVOICE),
            ]
        )
        assert data.value(DOC_TYPE) == DocType.TAX_INVOICE
        assert data[DOC_TYPE].has_conflict is False

    def test_highest_confidence_otherwise(self):
        data = aggregate(
            [
                _result("a", 0.4, doc_type=DocType.RECEIPT),
                _result("b", 0.8, doc_type=DocType.SLIP_TRANSFER),
            ]
        )
        assert data.value(DOC_TYPE) == DocType.SLIP_TRANSFER


class TestFailuresAndOverrides:
    """Tests for failed files and user overrides."""

    def test_failed_file_contributes_nothing(self):
        data = aggregate(
            [
                _result("ok", amount=Decimal("250")),
                ExtractionResult(file_id="bad", file_name="bad.pdf", error="timeout"),
            ]
        )
        assert data.value(AMOUNT) == Decimal("250")
        assert [f.file_id for f in data.failures] == ["bad"]
        assert len(data[AMOUNT].sources) == 1

    def test_all_failed(self):
        data = aggregate([ExtractionResult(file_id="bad", error="unreadable")])
        assert data.value(AMOUNT) is None
        assert not data.has_conflicts

    def test_override_survives_new_files(self):
        """An override persists across re-aggregation until cleared."""
        aggregator = FieldAggregator()
        aggregator.set_override(AMOUNT, Decimal("777"))

        first = aggregator.aggregate([_result("a", amount=Decimal("500"))])
        assert first.value(AMOUNT) == Decimal("777")
        assert first[AMOUNT].is_user_edited

        second = aggregator.aggregate(
            [_result("a", amount=Decimal("500")), _result("b", amount=Decimal("900"))]
        )
        assert second.value(AMOUNT) == Decimal("777")
        assert second[AMOUNT].has_conflict

        aggregator.clear_override(AMOUNT)
        third = aggregator.aggregate([_result("a", amount=Decimal("500"))])
        assert third.value(AMOUNT) == Decimal("500")
        assert not third[AMOUNT].is_user_edited

    def test_unknown_override_field(self):
        with pytest.raises(KeyError):
            FieldAggregator().set_override("colour", "red")

    def test_custom_tolerance(self):
        aggregator = FieldAggregator(amount_tolerance=Decimal("0.01"))
        data = aggregator.aggregate(
            [_result("a", amount=Decimal("500.00")), _result("b", amount=Decimal("500.30"))]
        )
        assert data[AMOUNT].has_conflict


class TestFromPayload:
    """Tests for parsing extraction service payloads."""

    def test_camel_case_payload(self):
        result = ExtractionResult.from_payload(
            "f1",
            {
                "type": "tax_invoice",
                "amount": "1,070.00",
                "vatAmount": 70,
                "contactName": " Siam Supply ",
                "taxId": "0105555012345",
                "documentDate": "2025-03-01",
                "confidence": 0.92,
            },
        )
        assert result.ok
        assert result.doc_type == DocType.TAX_INVOICE
        assert result.amount == Decimal("1070.00")
        assert result.vat_amount == Decimal("70")
        assert result.contact_name == "Siam Supply"

    def test_garbage_values_dropped(self):
        result = ExtractionResult.from_payload(
            "f1", {"type": "POSTCARD", "amount": "n/a", "confidence": "high"}
        )
        assert result.ok
        assert result.doc_type is None
        assert result.amount is None
        assert result.confidence == 0.0

    def test_error_payload(self):
        result = ExtractionResult.from_payload("f1", {"error": "model timeout"})
        assert not result.ok
        assert result.error == "model timeout"

    def test_to_dict(self):
        data = aggregate([_result("a", amount=Decimal("5"), doc_type=DocType.RECEIPT)])
        as_dict = data.to_dict()
        assert as_dict["fields"]["amount"]["value"] == "5"
        assert as_dict["fields"]["doc_type"]["value"] == "RECEIPT"
