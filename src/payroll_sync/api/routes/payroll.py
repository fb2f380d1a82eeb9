"""Payroll submission API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query

from payroll_sync.api.dependencies import DbSession, SettingsDep
from payroll_sync.api.schemas import (
    ApprovalRequest,
    EmployeeLine,
    ErrorResponse,
    PeriodResponse,
    RejectionRequest,
    SaveDraftRequest,
    SaveDraftResponse,
    SubmissionDetailResponse,
    SubmissionResponse,
    SubmitPayrollRequest,
    SubmitPayrollResponse,
)
from payroll_sync.calculators.period import (
    derive_pay_period,
    is_pay_weekday,
    next_pay_date,
    parse_pay_date,
)
from payroll_sync.calculators.types import LineInput
from payroll_sync.errors import ValidationError
from payroll_sync.services.submission_service import SubmissionService, submission_number

router = APIRouter(prefix="/payroll", tags=["payroll"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _to_line_inputs(employees: list[EmployeeLine]) -> list[LineInput]:
    return [
        LineInput(
            employee_id=line.employee_id,
            hours=line.hours,
            units=line.units,
            count=line.count,
            adjustment=line.adjustment,
            notes=line.notes,
            client_amount=line.amount,
        )
        for line in employees
    ]


def _require_fields(payload: SubmitPayrollRequest) -> tuple[UUID, date]:
    missing = [
        name
        for name, value in (
            ("locationId", payload.location_id),
            ("payDate", payload.pay_date),
            ("submittedBy", payload.submitted_by),
            ("employees", payload.employees),
        )
        if not value
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload.location_id, parse_pay_date(payload.pay_date)  # type: ignore[arg-type]


# ============================================================================
# Submission
# ============================================================================


@router.post("/submit", response_model=SubmitPayrollResponse, responses=ERROR_RESPONSES)
async def submit_payroll(
    payload: SubmitPayrollRequest,
    db: DbSession,
    settings: SettingsDep,
) -> SubmitPayrollResponse:
    """Compute and persist a pending payroll submission."""
    location_id, pay_date = _require_fields(payload)
    service = SubmissionService(db, reference_date=settings.pay_reference_date)
    submission_id = await service.compute_and_submit(
        location_id=location_id,
        pay_date=pay_date,
        submitted_by=payload.submitted_by or "",
        line_inputs=_to_line_inputs(payload.employees or []),
        payroll_group=payload.payroll_group,
    )
    return SubmitPayrollResponse(
        submission_id=submission_id,
        submission_number=submission_number(submission_id),
    )


@router.post("/drafts", response_model=SaveDraftResponse, responses=ERROR_RESPONSES)
async def save_draft(
    payload: SaveDraftRequest,
    db: DbSession,
    settings: SettingsDep,
) -> SaveDraftResponse:
    """Create or replace a draft submission. Empty employee lists are allowed."""
    if not payload.location_id or not payload.pay_date or not payload.submitted_by:
        raise ValidationError("Missing required fields: locationId, payDate, submittedBy")
    service = SubmissionService(db, reference_date=settings.pay_reference_date)
    submission_id = await service.save_draft(
        location_id=payload.location_id,
        pay_date=parse_pay_date(payload.pay_date),
        submitted_by=payload.submitted_by,
        line_inputs=_to_line_inputs(payload.employees or []),
        payroll_group=payload.payroll_group,
        submission_id=payload.submission_id,
    )
    return SaveDraftResponse(submission_id=submission_id, status="draft")


# ============================================================================
# Review workflow
# ============================================================================


@router.get(
    "/submissions/{submission_id}",
    response_model=SubmissionDetailResponse,
    responses=ERROR_RESPONSES,
)
async def get_submission(
    submission_id: Annotated[UUID, Path()],
    db: DbSession,
) -> SubmissionDetailResponse:
    """Get a submission with its entries."""
    submission = await SubmissionService(db).get_submission(submission_id)
    return SubmissionDetailResponse.model_validate(submission)


@router.post(
    "/submissions/{submission_id}/submit",
    response_model=SubmissionResponse,
    responses=ERROR_RESPONSES,
)
async def submit_draft(
    submission_id: Annotated[UUID, Path()],
    db: DbSession,
) -> SubmissionResponse:
    """Send a draft for review."""
    submission = await SubmissionService(db).submit_draft(submission_id)
    return SubmissionResponse.model_validate(submission)


@router.post(
    "/submissions/{submission_id}/approve",
    response_model=SubmissionResponse,
    responses=ERROR_RESPONSES,
)
async def approve_submission(
    submission_id: Annotated[UUID, Path()],
    payload: ApprovalRequest,
    db: DbSession,
) -> SubmissionResponse:
    """Approve a pending submission."""
    submission = await SubmissionService(db).approve(submission_id, payload.reviewer)
    return SubmissionResponse.model_validate(submission)


@router.post(
    "/submissions/{submission_id}/reject",
    response_model=SubmissionResponse,
    responses=ERROR_RESPONSES,
)
async def reject_submission(
    submission_id: Annotated[UUID, Path()],
    payload: RejectionRequest,
    db: DbSession,
) -> SubmissionResponse:
    """Reject a pending submission with a note."""
    submission = await SubmissionService(db).reject(
        submission_id, payload.reviewer, payload.note
    )
    return SubmissionResponse.model_validate(submission)


# ============================================================================
# Period preview
# ============================================================================


@router.get("/period", response_model=PeriodResponse, responses={400: {"model": ErrorResponse}})
async def preview_period(
    settings: SettingsDep,
    pay_date: Annotated[str, Query(alias="payDate")],
) -> PeriodResponse:
    """Derive the pay period and payroll group for a pay date."""
    parsed = parse_pay_date(pay_date)
    period = derive_pay_period(parsed, settings.pay_reference_date)
    return PeriodResponse(
        pay_date=period.pay_date,
        period_start=period.period_start,
        period_end=period.period_end,
        payroll_group=period.payroll_group.value,
        is_pay_weekday=is_pay_weekday(parsed),
        next_pay_date=next_pay_date(parsed),
    )
