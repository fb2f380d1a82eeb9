"""Pydantic schemas for API request/response models.

Wire names are camelCase; Python attributes stay snake_case.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(CamelModel):
    """Error response schema."""

    success: bool = False
    error: str
    code: str


# ============================================================================
# Webhook schemas
# ============================================================================


class WebhookNotification(CamelModel):
    """Connecteam form notification. Presence is checked by the service."""

    event: str | None = None
    data: dict[str, Any] | None = None


class WebhookAck(CamelModel):
    success: bool = True
    event: str
    action: str


class WebhookStatus(CamelModel):
    status: str
    endpoint: str


# ============================================================================
# Payroll schemas
# ============================================================================


class EmployeeLine(CamelModel):
    """One employee's quantities. ``amount`` is advisory only."""

    employee_id: UUID
    hours: Decimal | None = None
    units: Decimal | None = None
    count: Decimal | None = None
    adjustment: Decimal | None = None
    amount: Decimal | None = None
    notes: str | None = None


class SubmitPayrollRequest(CamelModel):
    """Schema for submitting payroll. Required fields are checked in the route."""

    location_id: UUID | None = None
    pay_date: str | None = None
    payroll_group: Literal["A", "B"] | None = None
    submitted_by: str | None = None
    employees: list[EmployeeLine] | None = None


class SaveDraftRequest(SubmitPayrollRequest):
    submission_id: UUID | None = None


class SubmitPayrollResponse(CamelModel):
    success: bool = True
    submission_id: UUID
    submission_number: str


class SaveDraftResponse(CamelModel):
    success: bool = True
    submission_id: UUID
    status: str


class ApprovalRequest(CamelModel):
    reviewer: str


class RejectionRequest(CamelModel):
    reviewer: str
    note: str


class PayrollEntryResponse(CamelModel):
    entry_id: UUID
    employee_id: UUID
    hours: Decimal | None = None
    units: Decimal | None = None
    fixed_count: Decimal | None = None
    adjustment: Decimal | None = None
    amount: Decimal
    notes: str | None = None


class SubmissionResponse(CamelModel):
    """Schema for payroll submission response."""

    submission_id: UUID
    location_id: UUID
    pay_date: date
    payroll_group: str
    period_start: date
    period_end: date
    total_amount: Decimal
    employee_count: int
    submitted_by: str
    status: str
    rejection_note: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None


class SubmissionDetailResponse(SubmissionResponse):
    entries: list[PayrollEntryResponse] = []


class PeriodResponse(CamelModel):
    pay_date: date
    period_start: date
    period_end: date
    payroll_group: str
    is_pay_weekday: bool
    next_pay_date: date


# ============================================================================
# Aggregation and sync schemas
# ============================================================================


class AggregationRequest(CamelModel):
    period_start: date
    period_end: date
    employee_emails: list[str]
    location_name: str
    source: Literal["cache", "direct"] = "cache"


class PeriodWindow(CamelModel):
    start: date
    end: date


class HoursResponse(CamelModel):
    success: bool = True
    hours: dict[str, float]
    period: PeriodWindow
    unmatched: int
    truncated: bool = False


class ProductionResponse(CamelModel):
    success: bool = True
    units: dict[str, int]
    period: PeriodWindow
    unmatched: int
    truncated: bool = False


class PollRequest(CamelModel):
    location_name: str
    start_date: date
    end_date: date
    kind: Literal["forms", "time"] = "forms"


class PollResponse(CamelModel):
    location_label: str
    kind: str
    start_date: date
    end_date: date
    pages_fetched: int
    events_upserted: int
    unresolved_identities: int
    cancelled: bool
    truncated: bool
    success: bool
    errors: list[dict[str, Any]] = []
