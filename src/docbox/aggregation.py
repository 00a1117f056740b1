"""Merge per-file extraction results into one reviewable record.

Each file in an upload batch is read by the external extraction service,
which returns its own guess at amount, VAT, counterparty and so on. The
aggregator picks a primary value per field, keeps every candidate with its
provenance, and flags fields whose candidates genuinely disagree.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from docbox.config.settings import get_settings
from docbox.models import DocType, to_decimal

logger = structlog.get_logger(__name__)

AMOUNT = "amount"
VAT_AMOUNT = "vat_amount"
DESCRIPTION = "description"
CONTACT_NAME = "contact_name"
DOCUMENT_DATE = "document_date"
DOCUMENT_NUMBER = "document_number"
TAX_ID = "tax_id"
DOC_TYPE = "doc_type"

TRACKED_FIELDS = (
    AMOUNT,
    VAT_AMOUNT,
    DESCRIPTION,
    CONTACT_NAME,
    DOCUMENT_DATE,
    DOCUMENT_NUMBER,
    TAX_ID,
    DOC_TYPE,
)

# Distinct documents legitimately differ on these.
_NEVER_CONFLICT = frozenset({DOCUMENT_NUMBER, DOC_TYPE})

# Extraction service payload keys
_PAYLOAD_KEYS = {
    AMOUNT: "amount",
    VAT_AMOUNT: "vatAmount",
    DESCRIPTION: "description",
    CONTACT_NAME: "contactName",
    DOCUMENT_DATE: "documentDate",
    DOCUMENT_NUMBER: "documentNumber",
    TAX_ID: "taxId",
    DOC_TYPE: "type",
}


# =============================================================================
# INPUT
# =============================================================================


@dataclass(frozen=True)
class ExtractionResult:
    """One file's extraction output, or the error the extractor hit."""

    file_id: str
    file_name: str = ""
    confidence: float = 0.0
    doc_type: DocType | None = None
    amount: Decimal | None = None
    vat_amount: Decimal | None = None
    description: str | None = None
    contact_name: str | None = None
    document_date: str | None = None
    document_number: str | None = None
    tax_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_payload(
        cls, file_id: str, payload: Mapping[str, Any], file_name: str = ""
    ) -> "ExtractionResult":
        """Build from the extraction service's camelCase payload.

        Unparsable numbers and unknown doc types become None rather than
        failing the file.
        """
        if payload.get("error"):
            return cls(file_id=file_id, file_name=file_name, error=str(payload["error"]))

        def text(key: str) -> str | None:
            value = payload.get(_PAYLOAD_KEYS[key])
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        try:
            confidence = float(payload.get("confidence") or 0)
        except (TypeError, ValueError):
            confidence = 0.0

        return cls(
            file_id=file_id,
            file_name=file_name,
            confidence=confidence,
            doc_type=DocType.parse(payload.get("type")),
            amount=to_decimal(payload.get("amount")),
            vat_amount=to_decimal(payload.get("vatAmount")),
            description=text(DESCRIPTION),
            contact_name=text(CONTACT_NAME),
            document_date=text(DOCUMENT_DATE),
            document_number=text(DOCUMENT_NUMBER),
            tax_id=text(TAX_ID),
        )


@dataclass(frozen=True)
class ExtractionFailure:
    """A file that contributed no candidates."""

    file_id: str
    file_name: str
    error: str


# =============================================================================
# OUTPUT
# =============================================================================


@dataclass(frozen=True)
class FieldSource:
    file_id: str
    file_name: str
    confidence: float


@dataclass(frozen=True)
class Candidate:
    value: Any
    source: FieldSource


@dataclass(frozen=True)
class AggregatedField:
    """Primary value for one field plus every candidate behind it."""

    name: str
    value: Any = None
    sources: tuple[FieldSource, ...] = ()
    all_values: tuple[Candidate, ...] = ()
    has_conflict: bool = False
    is_user_edited: bool = False


@dataclass(frozen=True)
class AggregatedData:
    """All aggregated fields for one upload batch."""

    fields: dict[str, AggregatedField] = field(default_factory=dict)
    has_vat: bool = False
    failures: tuple[ExtractionFailure, ...] = ()

    def __getitem__(self, name: str) -> AggregatedField:
        return self.fields[name]

    def value(self, name: str) -> Any:
        return self.fields[name].value

    @property
    def conflicting_fields(self) -> list[str]:
        return [name for name in TRACKED_FIELDS if self.fields[name].has_conflict]

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicting_fields)

    def to_dict(self) -> dict[str, Any]:
        def plain(value: Any) -> Any:
            if isinstance(value, Decimal):
                return str(value)
            if isinstance(value, DocType):
                return value.value
            return value

        return {
            "has_vat": self.has_vat,
            "conflicting_fields": self.conflicting_fields,
            "failures": [
                {"file_id": f.file_id, "file_name": f.file_name, "error": f.error}
                for f in self.failures
            ],
            "fields": {
                name: {
                    "value": plain(agg.value),
                    "has_conflict": agg.has_conflict,
                    "is_user_edited": agg.is_user_edited,
                    "all_values": [
                        {"value": plain(c.value), "file_id": c.source.file_id}
                        for c in agg.all_values
                    ],
                }
                for name, agg in self.fields.items()
            },
        }


# =============================================================================
# AGGREGATION
# =============================================================================


def _same_string(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


def _same_exact(a: Any, b: Any) -> bool:
    return a == b


def _count_clusters(values: Iterable[Any], same: Callable[[Any, Any], bool]) -> int:
    """Count distinct values, comparing each against first-seen representatives."""
    representatives: list[Any] = []
    for value in values:
        if not any(same(rep, value) for rep in representatives):
            representatives.append(value)
    return len(representatives)


def _primary(candidates: list[Candidate]) -> Any:
    # max() keeps the first candidate among equal confidences
    return max(candidates, key=lambda c: c.source.confidence).value


class FieldAggregator:
    """Aggregates extraction results, holding user overrides between calls.

    Overrides survive new files being added and win over every computed
    candidate until ``clear_override`` is called.
    """

    def __init__(self, amount_tolerance: Decimal | None = None):
        if amount_tolerance is None:
            amount_tolerance = get_settings().amount_tolerance
        self._tolerance = amount_tolerance
        self._overrides: dict[str, Any] = {}
        self._logger = logger.bind(component="field_aggregator")

    @property
    def overrides(self) -> dict[str, Any]:
        return dict(self._overrides)

    def set_override(self, name: str, value: Any) -> None:
        if name not in TRACKED_FIELDS:
            raise KeyError(f"unknown field: {name}")
        self._overrides[name] = value

    def clear_override(self, name: str) -> None:
        self._overrides.pop(name, None)

    def _same_amount(self, a: Decimal, b: Decimal) -> bool:
        return abs(a - b) < self._tolerance

    def _comparator(self, name: str) -> Callable[[Any, Any], bool]:
        if name in (AMOUNT, VAT_AMOUNT):
            return self._same_amount
        if name in (DESCRIPTION, CONTACT_NAME):
            return _same_string
        return _same_exact

    def aggregate(self, results: Iterable[ExtractionResult]) -> AggregatedData:
        """Merge results into one value per tracked field.

        Failed extractions contribute no candidates and are reported in
        ``failures``. Nothing here raises for missing or partial input.
        """
        candidates: dict[str, list[Candidate]] = {name: [] for name in TRACKED_FIELDS}
        failures: list[ExtractionFailure] = []
        has_vat = False

        for result in results:
            if not result.ok:
                failures.append(
                    ExtractionFailure(result.file_id, result.file_name, result.error or "")
                )
                self._logger.warning(
                    "extraction_failed",
                    file_id=result.file_id,
                    error=result.error,
                )
                continue

            source = FieldSource(result.file_id, result.file_name, result.confidence)
            for name in TRACKED_FIELDS:
                value = getattr(result, name)
                if value is None or value == "":
                    continue
                if name == VAT_AMOUNT:
                    if value <= 0:
                        continue
                    has_vat = True
                candidates[name].append(Candidate(value, source))

        fields = {name: self._aggregate_field(name, candidates[name]) for name in TRACKED_FIELDS}
        data = AggregatedData(fields=fields, has_vat=has_vat, failures=tuple(failures))
        if data.has_conflicts:
            self._logger.info("fields_conflicted", fields=data.conflicting_fields)
        return data

    def _aggregate_field(self, name: str, candidates: list[Candidate]) -> AggregatedField:
        value = None
        has_conflict = False
        if candidates:
            if name == DOC_TYPE:
                preferred = [c for c in candidates if c.value == DocType.TAX_INVOICE]
                value = preferred[0].value if preferred else _primary(candidates)
            else:
                value = _primary(candidates)
            if name not in _NEVER_CONFLICT:
                clusters = _count_clusters((c.value for c in candidates), self._comparator(name))
                has_conflict = clusters > 1

        is_user_edited = name in self._overrides
        if is_user_edited:
            value = self._overrides[name]

        return AggregatedField(
            name=name,
            value=value,
            sources=tuple(c.source for c in candidates),
            all_values=tuple(candidates),
            has_conflict=has_conflict,
            is_user_edited=is_user_edited,
        )


def aggregate(results: Iterable[ExtractionResult]) -> AggregatedData:
    """Aggregate without overrides using default settings."""
    return FieldAggregator().aggregate(results)
