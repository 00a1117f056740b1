"""Tests for box match suggestions."""

from datetime import date
from decimal import Decimal

import pytest

from docbox.aggregation import ExtractionResult, aggregate
from docbox.matching import (
    ADD_TO_EXISTING,
    CREATE_NEW,
    MatchFinder,
    MatchQuery,
    PendingBoxSnapshot,
    name_similarity,
    normalize_tax_id,
)
from docbox.models import BoxStatus, BoxType, DocType


def _snapshot(box_id, number, **kwargs):
    kwargs.setdefault("box_type", BoxType.EXPENSE)
    kwargs.setdefault("status", BoxStatus.PENDING)
    return PendingBoxSnapshot(box_id=box_id, box_number=number, **kwargs)


@pytest.fixture
def finder():
    return MatchFinder(threshold=50, amount_tolerance=Decimal("0.5"), date_window_days=7)


class TestNormalization:
    """Tests for name and tax ID helpers."""

    def test_tax_id_digits(self):
        assert normalize_tax_id("0-1055-55012-34-5") == "0105555012345"
        assert normalize_tax_id(None) == ""

    def test_name_similarity(self):
        assert name_similarity("Siam Supply Co.", "siam supply co") == 1.0
        assert name_similarity("Siam Supply", "Siam Supply Co., Ltd.") == 1.0
        assert name_similarity("Siam Supply", "Thai Paper") < 0.8
        assert name_similarity(None, "x") == 0.0


class TestScoring:
    """Tests for per-box scores."""

    def test_full_match_capped(self, finder):
        query = MatchQuery(
            box_type=BoxType.EXPENSE,
            amount=Decimal("1070"),
            doc_date=date(2025, 3, 1),
            contact_name="Siam Supply",
            tax_id="0105555012345",
            doc_type=DocType.TAX_INVOICE,
        )
        box = _snapshot(
            "b1",
            "EXP-1",
            total_amount=Decimal("1070"),
            box_date=date(2025, 3, 1),
            contact_name="Siam Supply",
            contact_tax_id="0105555012345",
            missing_doc_types=frozenset({DocType.TAX_INVOICE}),
        )
        match = finder.score(query, box)
        assert match.score == 100
        assert "Same tax ID" in match.reasons

    def test_amount_within_one_percent(self, finder):
        query = MatchQuery(box_type=BoxType.EXPENSE, amount=Decimal("1005"))
        box = _snapshot("b1", "EXP-1", total_amount=Decimal("1000"))
        assert finder.score(query, box).score == 15

    def test_date_window(self, finder):
        query = MatchQuery(box_type=BoxType.EXPENSE, doc_date=date(2025, 3, 5))
        near = _snapshot("b1", "EXP-1", box_date=date(2025, 3, 1))
        far = _snapshot("b2", "EXP-2", box_date=date(2025, 1, 1))
        assert finder.score(query, near).score == 5
        assert finder.score(query, far).score == 0

    def test_empty_query_scores_zero(self, finder):
        query = MatchQuery(box_type=BoxType.EXPENSE)
        assert finder.score(query, _snapshot("b1", "EXP-1")).score == 0


class TestFindMatches:
    """Tests for ranking and the suggested action."""

    def test_add_to_existing(self, finder):
        query = MatchQuery(
            box_type=BoxType.EXPENSE,
            amount=Decimal("1070"),
            contact_name="Siam Supply",
        )
        boxes = [
            _snapshot("b2", "EXP-2", total_amount=Decimal("1070"), contact_name="Siam Supply"),
            _snapshot("b1", "EXP-1", total_amount=Decimal("1070"), contact_name="Siam Supply"),
            _snapshot("b3", "EXP-3", total_amount=Decimal("99")),
        ]
        suggestion = finder.find_matches(query, boxes)

        assert suggestion.suggested_action == ADD_TO_EXISTING
        assert [m.box_number for m in suggestion.matches] == ["EXP-1", "EXP-2"]
        assert suggestion.best.score == 50
        assert "EXP-1" in suggestion.reason

    def test_create_new_below_threshold(self, finder):
        query = MatchQuery(box_type=BoxType.EXPENSE, amount=Decimal("1070"))
        suggestion = finder.find_matches(query, [_snapshot("b1", "EXP-1", total_amount=Decimal("1070"))])
        assert suggestion.suggested_action == CREATE_NEW
        assert suggestion.matches == ()
        assert suggestion.best is None

    def test_ignores_closed_and_other_type(self, finder):
        query = MatchQuery(box_type=BoxType.EXPENSE, tax_id="0105555012345", contact_name="Siam")
        boxes = [
            _snapshot("b1", "EXP-1", status=BoxStatus.COMPLETED, contact_tax_id="0105555012345", contact_name="Siam"),
            _snapshot("b2", "INC-1", box_type=BoxType.INCOME, contact_tax_id="0105555012345", contact_name="Siam"),
        ]
        assert finder.find_matches(query, boxes).suggested_action == CREATE_NEW

    def test_no_boxes(self, finder):
        assert finder.find_matches(MatchQuery(box_type=BoxType.INCOME), []).suggested_action == CREATE_NEW

    def test_query_from_aggregated(self):
        data = aggregate(
            [
                ExtractionResult(
                    file_id="f1",
                    confidence=0.9,
                    amount=Decimal("500"),
                    document_date="2025-03-01T10:00:00",
                    contact_name="Siam Supply",
                    doc_type=DocType.RECEIPT,
                )
            ]
        )
        query = MatchQuery.from_aggregated(BoxType.EXPENSE, data)
        assert query.amount == Decimal("500")
        assert query.doc_date == date(2025, 3, 1)
        assert query.doc_type == DocType.RECEIPT
