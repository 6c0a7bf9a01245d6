"""Bulk payroll batch state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from funding_payroll.models import BulkPayrollBatch


class BatchStatus(str, Enum):
    """Bulk payroll batch status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class BatchStateMachine:
    """State machine for bulk payroll batch status transitions.

    Allowed transitions:
    - pending → processing
    - pending → cancelled
    - pending → failed
    - processing → completed
    - processing → completed_with_errors
    - processing → failed
    - processing → cancelled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        BatchStatus.PENDING: [
            BatchStatus.PROCESSING,
            BatchStatus.CANCELLED,
            BatchStatus.FAILED,
        ],
        BatchStatus.PROCESSING: [
            BatchStatus.COMPLETED,
            BatchStatus.COMPLETED_WITH_ERRORS,
            BatchStatus.FAILED,
            BatchStatus.CANCELLED,
        ],
        BatchStatus.COMPLETED: [],
        BatchStatus.COMPLETED_WITH_ERRORS: [],
        BatchStatus.FAILED: [],
        BatchStatus.CANCELLED: [],
    }

    TERMINAL = {
        BatchStatus.COMPLETED,
        BatchStatus.COMPLETED_WITH_ERRORS,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = "batch is already finished" if cls.is_terminal(from_status) else None
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def can_resume(cls, status: str) -> bool:
        """A processing batch picked up again by a retried job continues from its cursor."""
        return status == BatchStatus.PROCESSING

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def completion_status(cls, failed_count: int) -> BatchStatus:
        """Final status of a batch that ran to the end."""
        if failed_count == 0:
            return BatchStatus.COMPLETED
        return BatchStatus.COMPLETED_WITH_ERRORS

    @classmethod
    def apply(cls, batch: BulkPayrollBatch, to_status: str) -> None:
        """Validate and apply a transition to a loaded batch."""
        cls.validate_transition(batch.status, to_status)
        batch.status = BatchStatus(to_status).value
