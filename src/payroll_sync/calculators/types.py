"""Type definitions for the compensation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from payroll_sync.errors import ValidationError
from payroll_sync.models.organization import CompensationType

if TYPE_CHECKING:
    from payroll_sync.models.organization import Employee


@dataclass(frozen=True)
class CompensationTerms:
    """An employee's compensation model and its single rate."""

    compensation_type: CompensationType
    hourly_rate: Decimal | None = None
    piece_rate: Decimal | None = None
    fixed_pay: Decimal | None = None

    def __post_init__(self) -> None:
        """Exactly the rate matching the compensation type must be set."""
        rates = {
            CompensationType.HOURLY: self.hourly_rate,
            CompensationType.PRODUCTION: self.piece_rate,
            CompensationType.FIXED: self.fixed_pay,
        }
        if rates[self.compensation_type] is None:
            raise ValidationError(
                f"{self.compensation_type.value} compensation requires its rate"
            )
        extra = [t.value for t, r in rates.items() if t != self.compensation_type and r is not None]
        if extra:
            raise ValidationError(
                f"{self.compensation_type.value} compensation cannot carry rates for {extra}"
            )

    @property
    def rate(self) -> Decimal:
        if self.compensation_type == CompensationType.HOURLY:
            return self.hourly_rate  # type: ignore[return-value]
        if self.compensation_type == CompensationType.PRODUCTION:
            return self.piece_rate  # type: ignore[return-value]
        return self.fixed_pay  # type: ignore[return-value]

    @classmethod
    def from_employee(cls, employee: Employee) -> CompensationTerms:
        return cls(
            compensation_type=CompensationType(employee.compensation_type),
            hourly_rate=employee.hourly_rate,
            piece_rate=employee.piece_rate,
            fixed_pay=employee.fixed_pay,
        )


@dataclass(frozen=True)
class LineInput:
    """Raw per-employee input for a submission.

    Only the quantity matching the employee's compensation type is used.
    """

    employee_id: UUID
    hours: Decimal | None = None
    units: Decimal | None = None
    count: Decimal | None = None
    adjustment: Decimal | None = None
    notes: str | None = None
    client_amount: Decimal | None = None  # Advisory; server recomputes


@dataclass(frozen=True)
class LineCandidate:
    """A computed payroll entry before persistence."""

    employee_id: UUID
    compensation_type: CompensationType
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    adjustment: Decimal | None = None
    notes: str | None = None

    def entry_values(self) -> dict[str, Any]:
        """Column values for a payroll_entry row."""
        return {
            "employee_id": self.employee_id,
            "hours": self.quantity if self.compensation_type == CompensationType.HOURLY else None,
            "units": self.quantity if self.compensation_type == CompensationType.PRODUCTION else None,
            "fixed_count": self.quantity if self.compensation_type == CompensationType.FIXED else None,
            "adjustment": self.adjustment if self.compensation_type == CompensationType.FIXED else None,
            "amount": self.amount,
            "notes": self.notes,
        }
