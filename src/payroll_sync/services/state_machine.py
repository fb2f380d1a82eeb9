"""Payroll submission review state machine."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from payroll_sync.errors import PayrollSyncError

if TYPE_CHECKING:
    from payroll_sync.models import PayrollSubmission


class SubmissionStatus(str, Enum):
    """Payroll submission status values."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class InvalidTransitionError(PayrollSyncError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SubmissionStateMachine:
    """State machine for payroll submission status transitions.

    Allowed transitions:
    - draft → pending (submit for review)
    - pending → approved
    - pending → rejected
    - rejected → draft (reopen for edits)
    - rejected → pending (resubmit)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SubmissionStatus.DRAFT: [SubmissionStatus.PENDING],
        SubmissionStatus.PENDING: [SubmissionStatus.APPROVED, SubmissionStatus.REJECTED],
        SubmissionStatus.APPROVED: [],  # Terminal state
        SubmissionStatus.REJECTED: [SubmissionStatus.DRAFT, SubmissionStatus.PENDING],
    }

    # Statuses whose entries may be replaced
    ENTRIES_MUTABLE = {
        SubmissionStatus.DRAFT,
        SubmissionStatus.REJECTED,
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
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_modify_entries(cls, status: str) -> bool:
        return status in cls.ENTRIES_MUTABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_submission_for_transition(
        cls, submission: PayrollSubmission, to_status: str
    ) -> list[str]:
        """Validate a submission for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = submission.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        if to_status == SubmissionStatus.PENDING:
            if submission.employee_count < 1:
                errors.append("Submission has no employees")
        elif to_status == SubmissionStatus.REJECTED:
            if not (submission.rejection_note or "").strip():
                errors.append("A rejection note is required")

        return errors
