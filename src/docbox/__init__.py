"""DocBox - document completeness and payment reconciliation core."""

__version__ = "0.1.0"

from docbox.aggregation import (
    AggregatedData,
    AggregatedField,
    ExtractionFailure,
    ExtractionResult,
    FieldAggregator,
)
from docbox.checklist import (
    Checklist,
    ChecklistEngine,
    ChecklistFlags,
    ChecklistItem,
    RequirementStatus,
    evaluate_checklist,
)
from docbox.config import configure_logging, get_settings
from docbox.duplicates import DuplicateDetector, DuplicateReport
from docbox.errors import DocBoxError, InvalidTransition, SkipReason
from docbox.events import EventPublisher, EventType, get_publisher
from docbox.matching import MatchFinder, MatchQuery, MatchSuggestion, PendingBoxSnapshot
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
    PaymentStatus,
    WhtStatus,
    WhtTracking,
    WhtTrackingType,
)
from docbox.payments import (
    InMemoryPaymentStore,
    PaymentReconciler,
    PaymentResult,
    PaymentStore,
    derive_payment_status,
)
from docbox.requirements import Requirement, RequirementRules, required_documents
from docbox.status import BoxAction, StatusChange, StatusResolver
from docbox.validation import BoxValidator, ValidationResult
from docbox.wht import WhtTracker, compute_wht_amount, summarize_wht_doc_status
from docbox.workflow import BoxWorkflow, UploadOutcome

__all__ = [
    # Version
    "__version__",
    # Records
    "Box",
    "BoxStatus",
    "BoxType",
    "DocType",
    "Document",
    "DocumentFile",
    "ExpenseType",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "WhtStatus",
    "WhtTracking",
    "WhtTrackingType",
    # Requirements & checklist
    "Requirement",
    "RequirementRules",
    "required_documents",
    "Checklist",
    "ChecklistEngine",
    "ChecklistFlags",
    "ChecklistItem",
    "RequirementStatus",
    "evaluate_checklist",
    # Lifecycle
    "BoxAction",
    "StatusChange",
    "StatusResolver",
    # Payments
    "PaymentStore",
    "InMemoryPaymentStore",
    "PaymentReconciler",
    "PaymentResult",
    "derive_payment_status",
    # WHT
    "WhtTracker",
    "compute_wht_amount",
    "summarize_wht_doc_status",
    # Extraction review
    "ExtractionResult",
    "ExtractionFailure",
    "AggregatedData",
    "AggregatedField",
    "FieldAggregator",
    "MatchFinder",
    "MatchQuery",
    "MatchSuggestion",
    "PendingBoxSnapshot",
    "DuplicateDetector",
    "DuplicateReport",
    "BoxValidator",
    "ValidationResult",
    # Workflow
    "BoxWorkflow",
    "UploadOutcome",
    # Errors
    "DocBoxError",
    "InvalidTransition",
    "SkipReason",
    # Events
    "EventPublisher",
    "EventType",
    "get_publisher",
    # Config
    "get_settings",
    "configure_logging",
]
