"""Exceptions and outcome markers for the document box core."""

from enum import Enum
from typing import Any


class DocBoxError(Exception):
    """Base exception for document box errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidTransition(DocBoxError):
    """A state change was attempted out of the allowed order."""

    def __init__(self, current: Any, attempted: Any, reason: str = ""):
        current_name = getattr(current, "value", current)
        attempted_name = getattr(attempted, "value", attempted)
        message = f"cannot move from {current_name} to {attempted_name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"current": current_name, "attempted": attempted_name, "reason": reason},
        )
        self.current = current
        self.attempted = attempted
        self.reason = reason


class SkipReason(str, Enum):
    """Why a payment operation was a no-op."""

    UNKNOWN_TOTAL = "unknown_total"
    NON_POSITIVE_AMOUNT = "non_positive_amount"
