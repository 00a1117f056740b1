"""Possible-duplicate detection for boxes.

Two signals: an uploaded file whose checksum already exists in another box,
and a heuristic similarity on amount, date and counterparty. Both only set
the advisory ``possible_duplicate`` flag; nothing is merged or blocked.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal

import structlog

from docbox.config.settings import get_settings
from docbox.events.publisher import EventPublisher, NullPublisher
from docbox.events.types import duplicate_suspected
from docbox.models import Box, BoxStatus

logger = structlog.get_logger(__name__)

_EXCLUDED_FROM_HASH = frozenset({BoxStatus.VOID})
_EXCLUDED_FROM_HEURISTIC = frozenset({BoxStatus.VOID, BoxStatus.DRAFT})


@dataclass(frozen=True)
class DuplicateMatch:
    box_id: str
    box_number: str
    reason: str
    similarity: int = 100


@dataclass(frozen=True)
class DuplicateReport:
    box_id: str
    matches: tuple[DuplicateMatch, ...] = field(default_factory=tuple)

    @property
    def possible_duplicate(self) -> bool:
        return bool(self.matches)

    @property
    def reason(self) -> str | None:
        if not self.matches:
            return None
        return "; ".join(f"{m.box_number}: {m.reason}" for m in self.matches)


def index_checksums(boxes: Iterable[Box]) -> dict[str, Box]:
    """Map each file checksum to the first box holding it."""
    index: dict[str, Box] = {}
    for box in boxes:
        for doc in box.documents:
            for file in doc.files:
                if file.checksum:
                    index.setdefault(file.checksum, box)
    return index


class DuplicateDetector:
    """Finds boxes that look like the same transaction."""

    def __init__(
        self,
        amount_tolerance_pct: Decimal | None = None,
        threshold: int | None = None,
        publisher: EventPublisher | None = None,
    ):
        settings = get_settings()
        self._tolerance = (
            settings.duplicate_amount_tolerance_pct
            if amount_tolerance_pct is None
            else amount_tolerance_pct
        )
        self._threshold = settings.duplicate_threshold if threshold is None else threshold
        self._publisher = publisher or NullPublisher()

    def similarity(self, box: Box, other: Box) -> int:
        """Heuristic similarity score, 0 when amounts are too far apart."""
        if box.total_amount <= 0:
            return 0
        diff = abs(other.total_amount - box.total_amount) / box.total_amount
        if diff > self._tolerance:
            return 0

        score = 0
        if diff == 0:
            score += 50
        elif diff < Decimal("0.001"):
            score += 40
        elif diff < Decimal("0.01"):
            score += 30

        if box.box_date is not None and box.box_date == other.box_date:
            score += 30
        if box.contact_id and box.contact_id == other.contact_id:
            score += 20
        return score

    def find_duplicates(
        self,
        box: Box,
        candidates: Iterable[Box],
        checksums: Mapping[str, Box] | None = None,
    ) -> DuplicateReport:
        """Compare a box against other boxes.

        Args:
            box: Box being checked.
            candidates: Other boxes from the same organization.
            checksums: Optional prebuilt checksum index; built from
                ``candidates`` when omitted.

        Returns:
            Matches ordered heuristic-first by similarity, then file hits.
        """
        candidates = [c for c in candidates if c.box_id != box.box_id]
        matches: list[DuplicateMatch] = []

        heuristic = []
        for other in candidates:
            if other.status in _EXCLUDED_FROM_HEURISTIC:
                continue
            score = self.similarity(box, other)
            if score >= self._threshold:
                heuristic.append((score, other))
        heuristic.sort(key=lambda pair: -pair[0])
        for score, other in heuristic:
            parts = "amount+date+contact" if box.contact_id else "amount+date"
            matches.append(
                DuplicateMatch(other.box_id, other.box_number, f"{parts} match ({score}%)", score)
            )

        if checksums is None:
            checksums = index_checksums(candidates)
        seen = {m.box_id for m in matches}
        for doc in box.documents:
            for file in doc.files:
                owner = checksums.get(file.checksum) if file.checksum else None
                if owner is None or owner.box_id == box.box_id or owner.box_id in seen:
                    continue
                if owner.status in _EXCLUDED_FROM_HASH:
                    continue
                seen.add(owner.box_id)
                matches.append(DuplicateMatch(owner.box_id, owner.box_number, "identical file"))

        return DuplicateReport(box_id=box.box_id, matches=tuple(matches))

    def scan(self, box: Box, candidates: Iterable[Box]) -> DuplicateReport:
        """Run find_duplicates and write the advisory flag onto the box."""
        report = self.find_duplicates(box, candidates)
        box.possible_duplicate = report.possible_duplicate
        box.duplicate_reason = report.reason
        if report.possible_duplicate:
            logger.info("duplicate_suspected", box_id=box.box_id, reason=report.reason)
            self._publisher.publish(
                duplicate_suspected(box.box_id, report.reason or "", [m.box_id for m in report.matches])
            )
        return report
