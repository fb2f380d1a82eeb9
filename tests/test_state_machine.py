"""Tests for payroll submission state machine."""

from types import SimpleNamespace

import pytest

from payroll_sync.errors import PayrollSyncError
from payroll_sync.services.state_machine import (
    InvalidTransitionError,
    SubmissionStateMachine,
    SubmissionStatus,
)


def submission(status: str, employee_count: int = 1, rejection_note: str | None = None):
    return SimpleNamespace(
        status=status, employee_count=employee_count, rejection_note=rejection_note
    )


class TestSubmissionStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # draft → pending
        assert SubmissionStateMachine.can_transition("draft", "pending") is True

        # pending → approved / rejected
        assert SubmissionStateMachine.can_transition("pending", "approved") is True
        assert SubmissionStateMachine.can_transition("pending", "rejected") is True

        # rejected → draft (reopen) / pending (resubmit)
        assert SubmissionStateMachine.can_transition("rejected", "draft") is True
        assert SubmissionStateMachine.can_transition("rejected", "pending") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip review
        assert SubmissionStateMachine.can_transition("draft", "approved") is False
        assert SubmissionStateMachine.can_transition("pending", "draft") is False

        # Approved is terminal
        assert SubmissionStateMachine.can_transition("approved", "rejected") is False
        assert SubmissionStateMachine.can_transition("approved", "draft") is False

        # Unknown status
        assert SubmissionStateMachine.can_transition("archived", "draft") is False

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            SubmissionStateMachine.validate_transition("approved", "pending")

        assert exc_info.value.from_status == "approved"
        assert exc_info.value.to_status == "pending"
        assert exc_info.value.code == "INVALID_TRANSITION"
        assert isinstance(exc_info.value, PayrollSyncError)

    def test_entries_mutable(self):
        assert SubmissionStateMachine.can_modify_entries("draft") is True
        assert SubmissionStateMachine.can_modify_entries("rejected") is True
        assert SubmissionStateMachine.can_modify_entries("pending") is False
        assert SubmissionStateMachine.can_modify_entries("approved") is False

    def test_get_next_statuses(self):
        assert SubmissionStateMachine.get_next_statuses("pending") == [
            SubmissionStatus.APPROVED,
            SubmissionStatus.REJECTED,
        ]
        assert SubmissionStateMachine.get_next_statuses("approved") == []


class TestSubmissionValidation:
    """Test per-transition checks on a submission."""

    def test_pending_needs_employees(self):
        errors = SubmissionStateMachine.validate_submission_for_transition(
            submission("draft", employee_count=0), SubmissionStatus.PENDING
        )
        assert errors == ["Submission has no employees"]

    def test_rejection_needs_note(self):
        errors = SubmissionStateMachine.validate_submission_for_transition(
            submission("pending", rejection_note="   "), SubmissionStatus.REJECTED
        )
        assert errors == ["A rejection note is required"]

        assert (
            SubmissionStateMachine.validate_submission_for_transition(
                submission("pending", rejection_note="Missing Friday"), SubmissionStatus.REJECTED
            )
            == []
        )

    def test_invalid_transition_reported(self):
        errors = SubmissionStateMachine.validate_submission_for_transition(
            submission("approved"), SubmissionStatus.PENDING
        )
        assert len(errors) == 1
        assert "Cannot transition" in errors[0]
