"""Tests for the checklist engine."""

from itertools import combinations

import pytest

from docbox.checklist import (
    ChecklistEngine,
    ChecklistFlags,
    DocStatus,
    RequirementStatus,
    completion_percent,
    derive_doc_status,
    derive_vat_doc_status,
    evaluate_checklist,
)
from docbox.models import (
    NO_CASH_RECEIPT,
    Box,
    BoxType,
    DocType,
    ExpenseType,
    PaymentStatus,
    VatDocStatus,
    WhtDocStatus,
    WhtStatus,
    WhtTracking,
    WhtTrackingType,
)
from docbox.requirements import required_documents

from conftest import make_document


def _wht(tracking_type, status):
    return WhtTracking(
        box_id="b",
        tracking_type=tracking_type,
        wht_rate=3,
        wht_amount=30,
        status=status,
    )


class TestCompletion:
    """Tests for completion percentage."""

    def test_no_requirements_is_complete(self):
        """Zero requirements means 100%."""
        checklist = evaluate_checklist([], [])
        assert checklist.completion_percent == 100
        assert checklist.is_complete

    def test_half_done(self):
        """One of two required items gives 50%."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.STANDARD, True)
        checklist = evaluate_checklist(requirements, [DocType.SLIP_TRANSFER])
        assert checklist.completion_percent == 50
        assert [item.id for item in checklist.missing] == ["tax_invoice"]

    def test_rounds_half_up(self):
        """Two of three rounds to 67, one of three to 33."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.STANDARD, True, True)
        two = evaluate_checklist(requirements, [DocType.SLIP_TRANSFER, DocType.TAX_INVOICE])
        one = evaluate_checklist(requirements, [DocType.SLIP_TRANSFER])
        assert two.completion_percent == 67
        assert one.completion_percent == 33

    def test_optional_items_do_not_count(self):
        """The optional income receipt never lowers completion."""
        requirements = required_documents(BoxType.INCOME)
        checklist = evaluate_checklist(requirements, [DocType.INVOICE])
        assert checklist.completion_percent == 100
        assert checklist.item("receipt").status == RequirementStatus.MISSING

    def test_completion_helper_empty(self):
        assert completion_percent([]) == 100

    @pytest.mark.parametrize(
        "box_type,expense_type,has_vat,has_wht",
        [
            (BoxType.EXPENSE, ExpenseType.STANDARD, True, True),
            (BoxType.EXPENSE, ExpenseType.NO_VAT, False, True),
            (BoxType.INCOME, None, True, True),
        ],
    )
    def test_monotonic_as_uploads_grow(self, box_type, expense_type, has_vat, has_wht):
        """Adding a file never reduces completion."""
        requirements = required_documents(box_type, expense_type, has_vat, has_wht)
        pool = [
            DocType.SLIP_TRANSFER,
            DocType.TAX_INVOICE,
            DocType.CASH_RECEIPT,
            DocType.INVOICE,
            DocType.WHT_SENT,
            DocType.WHT_RECEIVED,
        ]
        for size in range(len(pool)):
            for subset in combinations(pool, size):
                before = evaluate_checklist(requirements, subset).completion_percent
                for extra in pool:
                    after = evaluate_checklist(requirements, [*subset, extra]).completion_percent
                    assert after >= before


class TestRequirementStatus:
    """Tests for per-requirement evaluation."""

    def test_equivalent_doc_types(self):
        """An abbreviated tax invoice satisfies the tax invoice requirement."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.STANDARD, True)
        checklist = evaluate_checklist(requirements, [DocType.TAX_INVOICE_ABB])
        item = checklist.item("tax_invoice")
        assert item.status == RequirementStatus.SATISFIED
        assert item.satisfied_by == ("doc:TAX_INVOICE_ABB",)

    def test_not_applicable_override_wins(self):
        """An explicit not-applicable mark beats missing uploads."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.STANDARD, True)
        checklist = evaluate_checklist(
            requirements, [DocType.SLIP_TRANSFER], na_doc_types={"tax_invoice"}
        )
        assert checklist.item("tax_invoice").status == RequirementStatus.NOT_APPLICABLE
        assert checklist.is_complete

    def test_not_applicable_matches_requirement_ids_only(self):
        """Doc type values in the override set do not mark requirements."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.NO_VAT, False)
        checklist = evaluate_checklist(requirements, [], na_doc_types={"OTHER", "RECEIPT"})
        assert checklist.item("cash_receipt").status == RequirementStatus.MISSING

    def test_is_paid_satisfies_payment_proof(self):
        """A persisted paid flag stands in for the slip."""
        requirements = required_documents(BoxType.EXPENSE)
        checklist = evaluate_checklist(requirements, [], flags=ChecklistFlags(is_paid=True))
        assert checklist.item("payment_proof").status == RequirementStatus.SATISFIED

    def test_vat_doc_status_verified(self):
        """A verified VAT document flag satisfies the tax invoice."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.STANDARD, True)
        flags = ChecklistFlags(vat_doc_status=VatDocStatus.VERIFIED)
        checklist = evaluate_checklist(requirements, [], flags=flags)
        assert checklist.item("tax_invoice").status == RequirementStatus.SATISFIED

    def test_vat_doc_status_na(self):
        """VAT document NA makes the tax invoice not applicable."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.STANDARD, True)
        flags = ChecklistFlags(vat_doc_status=VatDocStatus.NA)
        checklist = evaluate_checklist(requirements, [], flags=flags)
        assert checklist.item("tax_invoice").status == RequirementStatus.NOT_APPLICABLE

    def test_no_cash_receipt_reason(self):
        """Declaring there is no cash receipt satisfies that requirement."""
        requirements = required_documents(BoxType.EXPENSE, ExpenseType.NO_VAT)
        flags = ChecklistFlags(no_receipt_reason=NO_CASH_RECEIPT)
        checklist = evaluate_checklist(requirements, [], flags=flags)
        assert checklist.item("cash_receipt").status == RequirementStatus.SATISFIED

    def test_outgoing_wht_record_satisfies(self):
        """An issued outgoing certificate satisfies wht_sent."""
        requirements = required_documents(BoxType.EXPENSE, None, has_wht=True)
        record = _wht(WhtTrackingType.OUTGOING, WhtStatus.ISSUED)
        checklist = evaluate_checklist(requirements, [], wht_records=[record])
        assert checklist.item("wht_sent").status == RequirementStatus.SATISFIED

    def test_pending_outgoing_record_is_missing(self):
        """A pending outgoing record is not yet evidence."""
        requirements = required_documents(BoxType.EXPENSE, None, has_wht=True)
        record = _wht(WhtTrackingType.OUTGOING, WhtStatus.PENDING)
        checklist = evaluate_checklist(requirements, [], wht_records=[record])
        assert checklist.item("wht_sent").status == RequirementStatus.MISSING

    def test_incoming_request_is_waiting(self):
        """A requested but not received certificate is waiting, not missing."""
        requirements = required_documents(BoxType.INCOME, None, has_wht=True)
        record = _wht(WhtTrackingType.INCOMING, WhtStatus.PENDING)
        checklist = evaluate_checklist(requirements, [DocType.INVOICE], wht_records=[record])
        item = checklist.item("wht_received")
        assert item.status == RequirementStatus.WAITING
        assert not checklist.is_complete
        assert checklist.completion_percent == 50

    def test_request_sent_flag_is_waiting(self):
        requirements = required_documents(BoxType.INCOME, None, has_wht=True)
        flags = ChecklistFlags(wht_doc_status=WhtDocStatus.REQUEST_SENT)
        checklist = evaluate_checklist(requirements, [], flags=flags)
        assert checklist.item("wht_received").status == RequirementStatus.WAITING

    def test_upload_beats_waiting(self):
        """An uploaded certificate satisfies even while a request is open."""
        requirements = required_documents(BoxType.INCOME, None, has_wht=True)
        flags = ChecklistFlags(wht_doc_status=WhtDocStatus.REQUEST_SENT)
        checklist = evaluate_checklist(requirements, [DocType.WHT_RECEIVED], flags=flags)
        assert checklist.item("wht_received").status == RequirementStatus.SATISFIED


class TestChecklistEngine:
    """Tests for whole-box evaluation."""

    def test_scenario_paid_but_missing_tax_invoice(self, standard_box):
        """A fully paid STANDARD box still lacks its tax invoice."""
        standard_box.payment_status = PaymentStatus.PAID
        checklist = ChecklistEngine().evaluate(standard_box)

        assert checklist.item("payment_proof").status == RequirementStatus.SATISFIED
        assert checklist.item("tax_invoice").status == RequirementStatus.MISSING
        assert checklist.completion_percent < 100

        standard_box.documents.append(make_document(DocType.TAX_INVOICE))
        checklist = ChecklistEngine().evaluate(standard_box)
        assert checklist.completion_percent == 100

    def test_documents_without_files_ignored(self, standard_box):
        """An empty document shell does not satisfy anything."""
        from docbox.models import Document

        standard_box.documents.append(Document(doc_type=DocType.TAX_INVOICE))
        checklist = ChecklistEngine().evaluate(standard_box)
        assert checklist.item("tax_invoice").status == RequirementStatus.MISSING

    def test_to_dict(self, standard_box):
        standard_box.documents.append(make_document(DocType.SLIP_TRANSFER))
        data = ChecklistEngine().evaluate(standard_box).to_dict()
        assert data["completion_percent"] == 50
        assert data["items"][0]["status"] == "satisfied"


class TestPersistedFlags:
    """Tests for box flags that satisfy requirements without an upload."""

    @pytest.mark.parametrize(
        "flag,box_type,has_wht,requirement_id",
        [
            ("has_payment_proof", BoxType.EXPENSE, False, "payment_proof"),
            ("has_payment_proof", BoxType.INCOME, False, "receipt"),
            ("has_tax_invoice", BoxType.EXPENSE, False, "tax_invoice"),
            ("has_invoice", BoxType.INCOME, False, "invoice"),
            ("wht_issued", BoxType.EXPENSE, True, "wht_sent"),
            ("wht_received", BoxType.INCOME, True, "wht_received"),
        ],
    )
    def test_flag_satisfies_requirement(self, flag, box_type, has_wht, requirement_id):
        box = Box(
            box_type=box_type,
            expense_type=ExpenseType.STANDARD if box_type == BoxType.EXPENSE else None,
            has_vat=True,
            has_wht=has_wht,
        )
        engine = ChecklistEngine()
        assert engine.evaluate(box).item(requirement_id).status != RequirementStatus.SATISFIED

        setattr(box, flag, True)
        item = engine.evaluate(box).item(requirement_id)

        assert item.status == RequirementStatus.SATISFIED
        assert item.satisfied_by == (f"flag:{flag}",)

    def test_from_box_copies_flags(self):
        box = Box(box_type=BoxType.INCOME, has_invoice=True, wht_received=True)
        flags = ChecklistFlags.from_box(box)
        assert flags.has_invoice and flags.wht_received
        assert not flags.has_tax_invoice


class TestDocStatusFlags:
    """Tests for derived document flags."""

    def test_doc_status(self, standard_box):
        checklist = ChecklistEngine().evaluate(standard_box)
        assert derive_doc_status(checklist) == DocStatus.INCOMPLETE
        assert derive_doc_status(checklist, "LOST_BY_VENDOR") == DocStatus.NA
        assert derive_doc_status(checklist, NO_CASH_RECEIPT) == DocStatus.INCOMPLETE

    def test_vat_doc_status_upgrades_missing(self):
        """Uploading a tax invoice marks the VAT document received."""
        status = derive_vat_doc_status(VatDocStatus.MISSING, [DocType.TAX_INVOICE])
        assert status == VatDocStatus.RECEIVED

    @pytest.mark.parametrize(
        "current", [VatDocStatus.RECEIVED, VatDocStatus.VERIFIED, VatDocStatus.NA]
    )
    def test_vat_doc_status_never_downgrades(self, current):
        """Reviewer decisions survive recomputation."""
        assert derive_vat_doc_status(current, []) == current
