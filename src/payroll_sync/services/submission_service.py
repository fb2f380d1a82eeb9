"""Payroll submission computation, persistence and review."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_sync.calculators.compensation import CompensationCalculator
from payroll_sync.calculators.period import (
    DEFAULT_REFERENCE_DATE,
    PayPeriod,
    derive_pay_period,
)
from payroll_sync.calculators.types import CompensationTerms, LineCandidate, LineInput
from payroll_sync.errors import (
    LocationNotFound,
    PersistenceError,
    SubmissionNotFound,
    ValidationError,
)
from payroll_sync.metrics import sync_metrics
from payroll_sync.models import Employee, Location, PayrollEntry, PayrollSubmission
from payroll_sync.services.state_machine import (
    InvalidTransitionError,
    SubmissionStateMachine,
    SubmissionStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedSubmission:
    """Validated lines and totals, ready to persist."""

    location: Location
    period: PayPeriod
    lines: list[LineCandidate]
    total_amount: Decimal

    @property
    def employee_count(self) -> int:
        return len(self.lines)


class SubmissionService:
    """Computes payroll lines and persists submissions.

    Final submissions are written in two phases: the header is inserted and
    committed, then the entries. If the entries fail, the header is deleted
    in a compensating transaction so no header is left without entries.
    """

    def __init__(
        self,
        session: AsyncSession,
        reference_date: date = DEFAULT_REFERENCE_DATE,
    ):
        self.session = session
        self.reference_date = reference_date

    async def prepare(
        self,
        location_id: UUID,
        pay_date: date,
        line_inputs: Sequence[LineInput],
        payroll_group: str | None = None,
        allow_empty: bool = False,
    ) -> PreparedSubmission:
        """Validate inputs and compute every qualifying line.

        Raises:
            LocationNotFound: If the location does not exist
            ValidationError: On a group mismatch, unknown or foreign
                employees, or when no line has a positive quantity
        """
        location = await self.session.get(Location, location_id)
        if location is None:
            raise LocationNotFound(location_id)

        period = derive_pay_period(pay_date, self.reference_date)
        if payroll_group is not None and payroll_group != period.payroll_group.value:
            raise ValidationError(
                f"payrollGroup {payroll_group} does not match pay date {pay_date} "
                f"(group {period.payroll_group.value})"
            )

        employees = await self._load_employees(location, line_inputs)
        lines: list[LineCandidate] = []
        for line in line_inputs:
            employee = employees[line.employee_id]
            terms = CompensationTerms.from_employee(employee)
            if not CompensationCalculator.has_qualifying_value(terms, line):
                continue
            if employee.payroll_group != period.payroll_group.value:
                raise ValidationError(
                    f"Employee {employee.full_name} is in payroll group {employee.payroll_group}, "
                    f"pay date {pay_date} pays group {period.payroll_group.value}"
                )
            candidate = CompensationCalculator.build_line(terms, line)
            if line.client_amount is not None and Decimal(line.client_amount) != candidate.amount:
                logger.info(
                    "Client amount %s for employee %s differs from computed %s; using computed",
                    line.client_amount,
                    line.employee_id,
                    candidate.amount,
                )
            lines.append(candidate)

        if not lines and not allow_empty:
            raise ValidationError("No employee has positive hours, units or count")

        return PreparedSubmission(
            location=location,
            period=period,
            lines=lines,
            total_amount=CompensationCalculator.total(lines),
        )

    async def compute_and_submit(
        self,
        location_id: UUID,
        pay_date: date,
        submitted_by: str,
        line_inputs: Sequence[LineInput],
        payroll_group: str | None = None,
    ) -> UUID:
        """Compute amounts and persist a pending submission.

        Returns:
            The new submission id

        Raises:
            PersistenceError: If a write fails; no orphan header remains
        """
        if not submitted_by or not submitted_by.strip():
            raise ValidationError("submittedBy is required")
        prepared = await self.prepare(location_id, pay_date, line_inputs, payroll_group)

        # Phase one: header
        submission = self._build_header(prepared, submitted_by, SubmissionStatus.PENDING)
        try:
            self.session.add(submission)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to create submission header: {e}") from e

        submission_id = submission.submission_id

        # Phase two: entries
        try:
            await self._insert_entries(submission, prepared.lines)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            removed = await self._delete_header(submission_id)
            sync_metrics.submission_rollbacks.inc()
            raise PersistenceError(
                f"Failed to create entries for submission {submission_id}; "
                + ("header removed" if removed else "header cleanup failed")
            ) from e

        logger.info(
            "Submission %s: %d employee(s), total %s, pay date %s group %s",
            submission_id,
            prepared.employee_count,
            prepared.total_amount,
            prepared.period.pay_date,
            prepared.period.payroll_group.value,
        )
        return submission_id

    async def save_draft(
        self,
        location_id: UUID,
        pay_date: date,
        submitted_by: str,
        line_inputs: Sequence[LineInput],
        payroll_group: str | None = None,
        submission_id: UUID | None = None,
    ) -> UUID:
        """Create a draft, or replace the entries of an editable one.

        Without ``submission_id`` an existing draft or rejected submission
        for the same location and pay date is reused. Drafts may be empty.
        """
        if not submitted_by or not submitted_by.strip():
            raise ValidationError("submittedBy is required")
        prepared = await self.prepare(
            location_id, pay_date, line_inputs, payroll_group, allow_empty=True
        )

        if submission_id is not None:
            submission = await self._get(submission_id)
            if submission.location_id != location_id:
                raise ValidationError("Draft belongs to a different location")
        else:
            submission = await self._find_editable(location_id, prepared.period.pay_date)

        try:
            if submission is None:
                submission = self._build_header(prepared, submitted_by, SubmissionStatus.DRAFT)
                self.session.add(submission)
                await self.session.flush()
            else:
                if not SubmissionStateMachine.can_modify_entries(submission.status):
                    raise InvalidTransitionError(
                        submission.status, SubmissionStatus.DRAFT.value, "entries are locked"
                    )
                if submission.status != SubmissionStatus.DRAFT.value:
                    SubmissionStateMachine.validate_transition(
                        submission.status, SubmissionStatus.DRAFT.value
                    )
                await self.session.execute(
                    delete(PayrollEntry).where(
                        PayrollEntry.submission_id == submission.submission_id
                    )
                )
                self._apply_prepared(submission, prepared, submitted_by)
                submission.status = SubmissionStatus.DRAFT.value
            await self._insert_entries(submission, prepared.lines)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to save draft: {e}") from e

        logger.info(
            "Saved draft %s with %d line(s)", submission.submission_id, prepared.employee_count
        )
        return submission.submission_id

    async def submit_draft(self, submission_id: UUID) -> PayrollSubmission:
        """Move a draft (or rejected submission) to pending review."""
        return await self._transition(submission_id, SubmissionStatus.PENDING)

    async def approve(self, submission_id: UUID, reviewer: str) -> PayrollSubmission:
        """Approve a pending submission."""
        if not reviewer or not reviewer.strip():
            raise ValidationError("reviewer is required")
        return await self._transition(submission_id, SubmissionStatus.APPROVED, reviewer=reviewer)

    async def reject(self, submission_id: UUID, reviewer: str, note: str) -> PayrollSubmission:
        """Reject a pending submission with a note for the submitter."""
        if not reviewer or not reviewer.strip():
            raise ValidationError("reviewer is required")
        if not note or not note.strip():
            raise ValidationError("A rejection note is required")
        return await self._transition(
            submission_id, SubmissionStatus.REJECTED, reviewer=reviewer, note=note.strip()
        )

    async def get_submission(self, submission_id: UUID) -> PayrollSubmission:
        """Load a submission with its entries.

        Raises:
            SubmissionNotFound: If no such submission exists
        """
        result = await self.session.execute(
            select(PayrollSubmission)
            .options(selectinload(PayrollSubmission.entries))
            .where(PayrollSubmission.submission_id == submission_id)
            .execution_options(populate_existing=True)
        )
        submission = result.scalar_one_or_none()
        if submission is None:
            raise SubmissionNotFound(submission_id)
        return submission

    # ------------------------------------------------------------------

    async def _transition(
        self,
        submission_id: UUID,
        to_status: SubmissionStatus,
        reviewer: str | None = None,
        note: str | None = None,
    ) -> PayrollSubmission:
        submission = await self._get(submission_id)
        from_status = submission.status
        SubmissionStateMachine.validate_transition(from_status, to_status.value)

        if to_status == SubmissionStatus.REJECTED:
            submission.rejection_note = note
        errors = SubmissionStateMachine.validate_submission_for_transition(
            submission, to_status.value
        )
        if errors:
            await self.session.rollback()
            raise ValidationError("; ".join(errors))

        now = datetime.now(timezone.utc)
        submission.status = to_status.value
        submission.updated_at = now
        if to_status in (SubmissionStatus.APPROVED, SubmissionStatus.REJECTED):
            submission.reviewed_by = reviewer
            submission.reviewed_at = now
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to update submission {submission_id}: {e}") from e

        logger.info("Submission %s: %s -> %s", submission_id, from_status, to_status.value)
        return submission

    async def _get(self, submission_id: UUID) -> PayrollSubmission:
        submission = await self.session.get(PayrollSubmission, submission_id)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        return submission

    async def _find_editable(self, location_id: UUID, pay_date: date) -> PayrollSubmission | None:
        result = await self.session.execute(
            select(PayrollSubmission)
            .where(
                PayrollSubmission.location_id == location_id,
                PayrollSubmission.pay_date == pay_date,
                PayrollSubmission.status.in_(
                    [SubmissionStatus.DRAFT.value, SubmissionStatus.REJECTED.value]
                ),
            )
            .order_by(PayrollSubmission.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _load_employees(
        self, location: Location, line_inputs: Sequence[LineInput]
    ) -> dict[UUID, Employee]:
        ids = [line.employee_id for line in line_inputs]
        if len(set(ids)) != len(ids):
            raise ValidationError("Each employee may appear only once per submission")
        if not ids:
            return {}

        result = await self.session.execute(
            select(Employee).where(Employee.employee_id.in_(ids))
        )
        employees = {e.employee_id: e for e in result.scalars().all()}

        unknown = [str(i) for i in ids if i not in employees]
        if unknown:
            raise ValidationError(f"Unknown employee(s): {', '.join(unknown)}")
        foreign = [
            str(e.employee_id) for e in employees.values() if e.location_id != location.location_id
        ]
        if foreign:
            raise ValidationError(
                f"Employee(s) not assigned to location {location.name}: {', '.join(foreign)}"
            )
        return employees

    def _build_header(
        self, prepared: PreparedSubmission, submitted_by: str, status: SubmissionStatus
    ) -> PayrollSubmission:
        submission = PayrollSubmission(
            submission_id=uuid4(),
            organization_id=prepared.location.organization_id,
            location_id=prepared.location.location_id,
            status=status.value,
        )
        self._apply_prepared(submission, prepared, submitted_by)
        return submission

    @staticmethod
    def _apply_prepared(
        submission: PayrollSubmission, prepared: PreparedSubmission, submitted_by: str
    ) -> None:
        period = prepared.period
        submission.pay_date = period.pay_date
        submission.payroll_group = period.payroll_group.value
        submission.period_start = period.period_start
        submission.period_end = period.period_end
        submission.total_amount = prepared.total_amount
        submission.employee_count = prepared.employee_count
        submission.submitted_by = submitted_by.strip()
        submission.updated_at = datetime.now(timezone.utc)

    async def _insert_entries(
        self, submission: PayrollSubmission, lines: Sequence[LineCandidate]
    ) -> None:
        self.session.add_all(
            [
                PayrollEntry(
                    submission_id=submission.submission_id,
                    organization_id=submission.organization_id,
                    **line.entry_values(),
                )
                for line in lines
            ]
        )
        await self.session.flush()

    async def _delete_header(self, submission_id: UUID) -> bool:
        """Compensating delete for a header whose entries failed."""
        try:
            await self.session.execute(
                delete(PayrollSubmission).where(PayrollSubmission.submission_id == submission_id)
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Compensating delete of submission %s failed", submission_id)
            return False
        logger.warning("Removed submission header %s after entry failure", submission_id)
        return True


def submission_number(submission_id: UUID) -> str:
    """Short human-facing reference for a submission."""
    return str(submission_id)[:8]
