"""Upload-to-decision control flow for a single box.

BoxWorkflow wires the core components together in the order a file upload
travels through them. Every component it calls is also usable on its own;
the workflow adds no rules of its own beyond ordering and event publishing.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from docbox.aggregation import AggregatedData, ExtractionResult, FieldAggregator
from docbox.checklist import Checklist, ChecklistEngine, derive_vat_doc_status
from docbox.duplicates import DuplicateDetector, DuplicateReport
from docbox.events.publisher import EventPublisher, get_publisher
from docbox.events.types import extraction_failed, fields_conflicted
from docbox.matching import MatchFinder, MatchQuery, MatchSuggestion, PendingBoxSnapshot
from docbox.models import (
    Box,
    BoxType,
    DocType,
    Document,
    DocumentFile,
    PaymentMethod,
    WhtDocStatus,
    WhtStatus,
    WhtTracking,
    WhtTrackingType,
)
from docbox.payments import PaymentReconciler, PaymentResult, PaymentStore
from docbox.status import BoxAction, StatusChange, StatusResolver, is_pending
from docbox.wht import WhtTracker, summarize_wht_doc_status

logger = structlog.get_logger(__name__)

# Upload of a certificate copy moves the matching tracking record forward.
_WHT_UPLOAD_TARGETS: dict[DocType, tuple[WhtTrackingType, WhtStatus]] = {
    DocType.WHT_SENT: (WhtTrackingType.OUTGOING, WhtStatus.ISSUED),
    DocType.WHT_RECEIVED: (WhtTrackingType.INCOMING, WhtStatus.RECEIVED),
}

# Slip uploads that create an auto payment, with the method they imply.
_SLIP_METHODS: dict[DocType, PaymentMethod] = {
    DocType.SLIP_TRANSFER: PaymentMethod.TRANSFER,
    DocType.SLIP_CHEQUE: PaymentMethod.CHEQUE,
}


@dataclass
class UploadOutcome:
    """Everything that changed while handling one upload batch."""

    box_id: str
    aggregated: AggregatedData
    checklist: Checklist
    documents: list[Document] = field(default_factory=list)
    status_change: StatusChange | None = None
    payments: list[PaymentResult] = field(default_factory=list)
    wht_updates: list[WhtTracking] = field(default_factory=list)
    duplicates: DuplicateReport | None = None

    @property
    def warnings(self) -> list[str]:
        warnings = [f"conflict:{name}" for name in self.aggregated.conflicting_fields]
        warnings.extend(f"extraction_failed:{f.file_id}" for f in self.aggregated.failures)
        warnings.extend(
            f"overpaid:{result.overpaid_amount}" for result in self.payments if result.is_overpaid
        )
        if self.duplicates is not None and self.duplicates.possible_duplicate:
            warnings.append("possible_duplicate")
        return warnings


class BoxWorkflow:
    """Runs an upload through aggregation, checklist, status, payments and WHT."""

    def __init__(
        self,
        store: PaymentStore,
        engine: ChecklistEngine | None = None,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._publisher = publisher or get_publisher()
        self._engine = engine or ChecklistEngine()
        self._resolver = StatusResolver()
        self._reconciler = PaymentReconciler(store, self._publisher)
        self._wht = WhtTracker(self._publisher, clock)
        self._matcher = MatchFinder()
        self._detector = DuplicateDetector(publisher=self._publisher)
        self._logger = logger.bind(component="box_workflow")

    @property
    def reconciler(self) -> PaymentReconciler:
        return self._reconciler

    @property
    def wht_tracker(self) -> WhtTracker:
        return self._wht

    def evaluate(self, box: Box, wht_records: Iterable[WhtTracking] = ()) -> Checklist:
        return self._engine.evaluate(box, list(wht_records))

    def handle_upload(
        self,
        box: Box,
        results: Iterable[ExtractionResult],
        files: Mapping[str, DocumentFile] | None = None,
        wht_records: list[WhtTracking] | None = None,
        aggregator: FieldAggregator | None = None,
        other_boxes: Iterable[Box] | None = None,
    ) -> UploadOutcome:
        """Apply one batch of extracted files to an existing box.

        Args:
            box: Box snapshot; updated in place.
            results: Extraction output per uploaded file.
            files: Uploaded file metadata keyed by file id (checksums etc.).
            wht_records: The box's WHT tracking records; updated in place.
            aggregator: Aggregator holding the reviewer's overrides, if any.
            other_boxes: Boxes to scan for duplicates. Skipped when None.

        Returns:
            The outcome, with warnings a reviewer should see.
        """
        results = list(results)
        files = files or {}
        wht_records = wht_records if wht_records is not None else []
        aggregator = aggregator or FieldAggregator()

        aggregated = aggregator.aggregate(results)
        for failure in aggregated.failures:
            self._publisher.publish(extraction_failed(box.box_id, failure.file_id, failure.error))
        if aggregated.has_conflicts:
            self._publisher.publish(fields_conflicted(box.box_id, aggregated.conflicting_fields))

        touched = self._attach(box, [r for r in results if r.ok], files)
        box.vat_doc_status = derive_vat_doc_status(
            box.vat_doc_status,
            box.uploaded_doc_types,
            self._engine.rules.catalog.group("tax_invoice"),
        )

        payments = self._record_payments(box, results)
        wht_updates = self._advance_wht(box, touched, wht_records)

        checklist = self._engine.evaluate(box, wht_records)
        status_change = self._resolver.auto_transition(box.status, checklist)
        if status_change is not None:
            self._commit(box, status_change)

        duplicates = None
        if other_boxes is not None:
            duplicates = self._detector.scan(box, other_boxes)

        outcome = UploadOutcome(
            box_id=box.box_id,
            aggregated=aggregated,
            checklist=checklist,
            documents=touched,
            status_change=status_change,
            payments=payments,
            wht_updates=wht_updates,
            duplicates=duplicates,
        )
        self._logger.info(
            "upload_handled",
            box_id=box.box_id,
            files=len(results),
            completion_percent=checklist.completion_percent,
            status=box.status.value,
            warnings=outcome.warnings,
        )
        return outcome

    def _attach(
        self,
        box: Box,
        results: list[ExtractionResult],
        files: Mapping[str, DocumentFile],
    ) -> list[Document]:
        touched: list[Document] = []
        for result in results:
            doc_type = result.doc_type or DocType.OTHER
            document = box.find_document(doc_type)
            if document is None:
                document = Document(
                    doc_type=doc_type,
                    doc_number=result.document_number,
                    amount=result.amount,
                    vat_amount=result.vat_amount,
                )
                box.documents.append(document)
            document.files.append(
                files.get(result.file_id)
                or DocumentFile(file_id=result.file_id, name=result.file_name)
            )
            if document not in touched:
                touched.append(document)
        return touched

    def _record_payments(self, box: Box, results: list[ExtractionResult]) -> list[PaymentResult]:
        payments = []
        for result in results:
            method = _SLIP_METHODS.get(result.doc_type) if result.ok else None
            if method is None:
                continue
            document = box.find_document(result.doc_type)
            # Non-positive OCR amounts count as missing.
            amount = result.amount if result.amount is not None and result.amount > 0 else None
            payments.append(
                self._reconciler.record_auto_payment(
                    box.box_id,
                    document_id=document.document_id if document else None,
                    file_id=result.file_id,
                    amount=amount,
                    method=method,
                )
            )
        return payments

    def _advance_wht(
        self,
        box: Box,
        documents: list[Document],
        wht_records: list[WhtTracking],
    ) -> list[WhtTracking]:
        updated = []
        for document in documents:
            target = _WHT_UPLOAD_TARGETS.get(document.doc_type)
            if target is None:
                continue
            tracking_type, status = target
            for record in wht_records:
                if record.tracking_type == tracking_type and record.status == WhtStatus.PENDING:
                    updated.append(self._wht.advance(record, status))
                    break

        if wht_records and box.wht_doc_status in (WhtDocStatus.MISSING, WhtDocStatus.REQUEST_SENT):
            summary = summarize_wht_doc_status(wht_records)
            if summary == WhtDocStatus.RECEIVED:
                box.wht_doc_status = summary
        return updated

    def _commit(self, box: Box, change: StatusChange) -> None:
        box.status = change.to_status
        self._publisher.publish(change.to_event(box.box_id))

    def apply_action(
        self,
        box: Box,
        action: BoxAction | str,
        wht_records: Iterable[WhtTracking] = (),
    ) -> StatusChange:
        """Apply an explicit human action and publish the transition.

        Raises:
            InvalidTransition: The action is not allowed from the box status.
        """
        checklist = self._engine.evaluate(box, list(wht_records))
        has_payments = any(not p.voided for p in self._store.list_payments(box.box_id))
        change = self._resolver.apply(box.status, action, checklist, has_payments)
        self._commit(box, change)
        self._logger.info(
            "box_status_changed",
            box_id=box.box_id,
            from_status=change.from_status.value,
            to_status=change.to_status.value,
            warnings=list(change.warnings),
        )
        return change

    def review(self, box: Box, wht_records: Iterable[WhtTracking] = ()) -> StatusChange | None:
        """Reviewer opened the box: drop it to NEED_DOCS if incomplete."""
        checklist = self._engine.evaluate(box, list(wht_records))
        change = self._resolver.auto_transition(box.status, checklist, at_review=True)
        if change is not None:
            self._commit(box, change)
        return change

    def suggest_matches(
        self,
        box_type: BoxType,
        results: Iterable[ExtractionResult],
        open_boxes: Iterable[Box],
        aggregator: FieldAggregator | None = None,
    ) -> MatchSuggestion:
        """Suggest where a new upload batch belongs, before any box is created."""
        aggregated = (aggregator or FieldAggregator()).aggregate(results)
        query = MatchQuery.from_aggregated(box_type, aggregated)
        snapshots = [
            PendingBoxSnapshot.from_box(box, self._engine.evaluate(box))
            for box in open_boxes
            if is_pending(box.status)
        ]
        return self._matcher.find_matches(query, snapshots)
