"""Suggest an existing open box for a freshly extracted document.

Advisory only: the finder ranks candidates and proposes add_to_existing or
create_new, and a human makes the call. Nothing here merges boxes.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Any

import structlog

from docbox.aggregation import AggregatedData
from docbox.checklist import Checklist
from docbox.config.settings import get_settings
from docbox.models import Box, BoxStatus, BoxType, DocType, to_decimal
from docbox.status import is_pending

logger = structlog.get_logger(__name__)

ADD_TO_EXISTING = "add_to_existing"
CREATE_NEW = "create_new"

NAME_SIMILARITY_THRESHOLD = 0.8
MAX_SCORE = 100


def normalize_name(name: str | None) -> str:
    if not name:
        return ""
    return " ".join(name.replace("'", "").replace(".", " ").split()).strip().lower()


def normalize_tax_id(tax_id: str | None) -> str:
    if not tax_id:
        return ""
    return "".join(ch for ch in tax_id if ch.isdigit())


def name_similarity(left: str | None, right: str | None) -> float:
    """0..1 similarity of two counterparty names. Containment counts as 1."""
    left_norm = normalize_name(left)
    right_norm = normalize_name(right)
    if not left_norm or not right_norm:
        return 0.0
    if left_norm == right_norm or left_norm in right_norm or right_norm in left_norm:
        return 1.0
    return SequenceMatcher(None, left_norm, right_norm).ratio()


def parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


@dataclass(frozen=True)
class MatchQuery:
    """Fields of the incoming document used for matching."""

    box_type: BoxType
    amount: Decimal | None = None
    doc_date: date | None = None
    contact_name: str | None = None
    tax_id: str | None = None
    doc_type: DocType | None = None

    @classmethod
    def from_aggregated(cls, box_type: BoxType, data: AggregatedData) -> "MatchQuery":
        return cls(
            box_type=box_type,
            amount=to_decimal(data.value("amount")),
            doc_date=parse_date(data.value("document_date")),
            contact_name=data.value("contact_name"),
            tax_id=data.value("tax_id"),
            doc_type=DocType.parse(data.value("doc_type")),
        )


@dataclass(frozen=True)
class PendingBoxSnapshot:
    """What the finder needs to know about an open box."""

    box_id: str
    box_number: str
    box_type: BoxType
    status: BoxStatus
    total_amount: Decimal = Decimal("0")
    box_date: date | None = None
    contact_name: str | None = None
    contact_tax_id: str | None = None
    missing_doc_types: frozenset[DocType] = frozenset()

    @classmethod
    def from_box(cls, box: Box, checklist: Checklist | None = None) -> "PendingBoxSnapshot":
        missing: set[DocType] = set()
        if checklist is not None:
            for item in checklist.missing:
                missing.update(item.accepted_doc_types)
        return cls(
            box_id=box.box_id,
            box_number=box.box_number,
            box_type=box.box_type,
            status=box.status,
            total_amount=box.total_amount,
            box_date=box.box_date,
            contact_name=box.contact_name,
            contact_tax_id=box.contact_tax_id,
            missing_doc_types=frozenset(missing),
        )


@dataclass(frozen=True)
class BoxMatch:
    box_id: str
    box_number: str
    score: int
    reasons: tuple[str, ...] = ()
    contact_name: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class MatchSuggestion:
    matches: tuple[BoxMatch, ...] = field(default_factory=tuple)
    suggested_action: str = CREATE_NEW
    reason: str = ""

    @property
    def best(self) -> BoxMatch | None:
        return self.matches[0] if self.matches else None


class MatchFinder:
    """Scores open boxes against an incoming document."""

    def __init__(
        self,
        threshold: int | None = None,
        amount_tolerance: Decimal | None = None,
        date_window_days: int | None = None,
    ):
        settings = get_settings()
        self._threshold = settings.match_threshold if threshold is None else threshold
        self._amount_tolerance = (
            settings.match_amount_tolerance if amount_tolerance is None else amount_tolerance
        )
        self._date_window = (
            settings.match_date_window_days if date_window_days is None else date_window_days
        )
        self._logger = logger.bind(component="match_finder")

    def score(self, query: MatchQuery, box: PendingBoxSnapshot) -> BoxMatch:
        """Score one candidate box. Higher is better, capped at 100."""
        score = 0
        reasons: list[str] = []

        query_tax_id = normalize_tax_id(query.tax_id)
        if query_tax_id and query_tax_id == normalize_tax_id(box.contact_tax_id):
            score += 40
            reasons.append("Same tax ID")

        if name_similarity(query.contact_name, box.contact_name) >= NAME_SIMILARITY_THRESHOLD:
            score += 25
            reasons.append("Same counterparty")

        if query.amount is not None and box.total_amount > 0:
            diff = abs(query.amount - box.total_amount)
            if diff <= self._amount_tolerance:
                score += 25
                reasons.append("Same amount")
            elif diff / box.total_amount <= Decimal("0.01"):
                score += 15
                reasons.append("Amount within 1%")

        if query.doc_date is not None and box.box_date is not None:
            days = abs((query.doc_date - box.box_date).days)
            if days == 0:
                score += 10
                reasons.append("Same date")
            elif days <= self._date_window:
                score += 5
                reasons.append(f"Within {self._date_window} days")

        if query.doc_type is not None and query.doc_type in box.missing_doc_types:
            score += 10
            reasons.append(f"Box is missing {query.doc_type.value}")

        return BoxMatch(
            box_id=box.box_id,
            box_number=box.box_number,
            score=min(score, MAX_SCORE),
            reasons=tuple(reasons),
            contact_name=box.contact_name,
            amount=box.total_amount,
        )

    def find_matches(
        self, query: MatchQuery, boxes: Iterable[PendingBoxSnapshot]
    ) -> MatchSuggestion:
        """Rank open boxes of the same type and suggest what to do.

        Closed boxes and boxes of the other type are ignored. With no
        candidate at or above the threshold the suggestion is create_new.
        """
        candidates = [
            box for box in boxes if box.box_type == query.box_type and is_pending(box.status)
        ]
        scored = [self.score(query, box) for box in candidates]
        matches = sorted(
            (m for m in scored if m.score >= self._threshold),
            key=lambda m: (-m.score, m.box_number),
        )

        if matches:
            best = matches[0]
            suggestion = MatchSuggestion(
                matches=tuple(matches),
                suggested_action=ADD_TO_EXISTING,
                reason=f"Box {best.box_number} matches ({best.score}%): {', '.join(best.reasons)}",
            )
        else:
            suggestion = MatchSuggestion(
                suggested_action=CREATE_NEW,
                reason="No open box matches this document",
            )

        self._logger.info(
            "match_suggested",
            candidates=len(candidates),
            matches=len(matches),
            action=suggestion.suggested_action,
        )
        return suggestion
