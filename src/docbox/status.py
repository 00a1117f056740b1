"""Box lifecycle state machine.

DRAFT -> PENDING -> COMPLETED
            |  ^
            v  |
          NEED_DOCS

DRAFT can be deleted (VOID); PENDING and NEED_DOCS can be rejected by a
reviewer (REJECTED). COMPLETED, REJECTED and VOID admit no further
transitions. The only automatic move is the completeness-driven toggle
between PENDING and NEED_DOCS; everything else needs a human action.

Approval never requires a complete checklist. A reviewer may approve with
known gaps (e.g. a WHT certificate tracked separately); the gaps are
returned as warnings.
"""

from dataclasses import dataclass, field
from enum import Enum

import structlog

from docbox.checklist import Checklist
from docbox.errors import InvalidTransition
from docbox.events.types import StatusEvent, box_status_changed
from docbox.models import BoxStatus

logger = structlog.get_logger(__name__)


class BoxAction(str, Enum):
    """Explicit actions on a box."""

    SUBMIT = "submit"
    NEED_INFO = "need_info"
    APPROVE = "approve"
    RESUBMIT = "resubmit"
    REJECT = "reject"
    DELETE = "delete"


TERMINAL_STATUSES = frozenset({BoxStatus.COMPLETED, BoxStatus.REJECTED, BoxStatus.VOID})

# (from status, action) -> to status
TRANSITIONS: dict[tuple[BoxStatus, BoxAction], BoxStatus] = {
    (BoxStatus.DRAFT, BoxAction.SUBMIT): BoxStatus.PENDING,
    (BoxStatus.DRAFT, BoxAction.DELETE): BoxStatus.VOID,
    (BoxStatus.PENDING, BoxAction.NEED_INFO): BoxStatus.NEED_DOCS,
    (BoxStatus.PENDING, BoxAction.APPROVE): BoxStatus.COMPLETED,
    (BoxStatus.PENDING, BoxAction.REJECT): BoxStatus.REJECTED,
    (BoxStatus.NEED_DOCS, BoxAction.RESUBMIT): BoxStatus.PENDING,
    (BoxStatus.NEED_DOCS, BoxAction.REJECT): BoxStatus.REJECTED,
}


@dataclass(frozen=True)
class StatusChange:
    """Result of a lifecycle transition."""

    from_status: BoxStatus
    to_status: BoxStatus
    action: str
    automatic: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_event(self, box_id: str) -> StatusEvent:
        return box_status_changed(
            box_id,
            self.action,
            self.from_status.value,
            self.to_status.value,
            warnings=list(self.warnings),
        )


def available_actions(status: BoxStatus) -> list[BoxAction]:
    """Actions a UI may offer for the current status."""
    return [action for (current, action) in TRANSITIONS if current == status]


def _invalid(status: BoxStatus, action: BoxAction, reason: str) -> InvalidTransition:
    logger.warning("invalid_transition", current=status.value, action=action.value, reason=reason)
    return InvalidTransition(status, action.value, reason)


def is_pending(status: BoxStatus) -> bool:
    """True for boxes still open to new documents."""
    return status not in TERMINAL_STATUSES


class StatusResolver:
    """Applies actions and automatic toggles to box status."""

    def apply(
        self,
        status: BoxStatus,
        action: BoxAction | str,
        checklist: Checklist | None = None,
        has_payments: bool = False,
    ) -> StatusChange:
        """Apply an explicit action.

        Args:
            status: Current box status.
            action: Requested action.
            checklist: Current checklist, used to surface gaps on approval.
            has_payments: Whether payments reference the box (blocks delete).

        Returns:
            The resulting change.

        Raises:
            InvalidTransition: The action is not allowed from this status.
        """
        action = BoxAction(action)
        if status in TERMINAL_STATUSES:
            raise _invalid(status, action, "status is terminal")

        target = TRANSITIONS.get((status, action))
        if target is None:
            allowed = ", ".join(a.value for a in available_actions(status)) or "none"
            raise _invalid(status, action, f"allowed actions: {allowed}")

        if action == BoxAction.DELETE and has_payments:
            raise _invalid(status, action, "box is referenced by payments")

        warnings: tuple[str, ...] = ()
        if action == BoxAction.APPROVE and checklist is not None and not checklist.is_complete:
            warnings = tuple(f"incomplete:{item.id}" for item in checklist.missing)
            logger.info(
                "approved_with_gaps",
                completion_percent=checklist.completion_percent,
                missing=[item.id for item in checklist.missing],
            )

        return StatusChange(
            from_status=status,
            to_status=target,
            action=action.value,
            warnings=warnings,
        )

    def auto_transition(
        self,
        status: BoxStatus,
        checklist: Checklist,
        at_review: bool = False,
    ) -> StatusChange | None:
        """Completeness-driven toggle between PENDING and NEED_DOCS.

        NEED_DOCS returns to PENDING as soon as the checklist is complete.
        PENDING drops to NEED_DOCS only when a review finds it incomplete.

        Returns:
            The change to apply, or None when the status stays put.
        """
        if status == BoxStatus.NEED_DOCS and checklist.is_complete:
            return StatusChange(
                from_status=status,
                to_status=BoxStatus.PENDING,
                action="auto_resubmit",
                automatic=True,
            )
        if status == BoxStatus.PENDING and at_review and not checklist.is_complete:
            return StatusChange(
                from_status=status,
                to_status=BoxStatus.NEED_DOCS,
                action="auto_need_docs",
                automatic=True,
                warnings=tuple(f"incomplete:{item.id}" for item in checklist.missing),
            )
        return None
