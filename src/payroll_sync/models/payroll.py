"""Payroll submission and entry models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_sync.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from payroll_sync.models.organization import Employee, Location


class PayrollSubmission(Base, TimestampMixin):
    """Payroll submission header for one location and pay date."""

    __tablename__ = "payroll_submission"

    submission_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("location.location_id", ondelete="RESTRICT"),
        nullable=False,
    )
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    payroll_group: Mapped[str] = mapped_column(String(1), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_by: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    rejection_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'approved', 'rejected')",
            name="payroll_submission_status_check",
        ),
        CheckConstraint("payroll_group IN ('A', 'B')", name="payroll_submission_group_check"),
        CheckConstraint("period_end >= period_start", name="payroll_submission_dates_check"),
        CheckConstraint("employee_count >= 0", name="payroll_submission_count_check"),
    )

    # Relationships
    location: Mapped[Location] = relationship(back_populates="submissions")
    entries: Mapped[list[PayrollEntry]] = relationship(
        back_populates="submission",
        cascade="all, delete-orphan",
    )


class PayrollEntry(Base, TimestampMixin):
    """Per-employee line of a payroll submission."""

    __tablename__ = "payroll_entry"

    entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    submission_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_submission.submission_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    hours: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    units: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    fixed_count: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    adjustment: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")

    __table_args__ = (
        CheckConstraint(
            "(hours IS NOT NULL AND units IS NULL AND fixed_count IS NULL)"
            " OR (units IS NOT NULL AND hours IS NULL AND fixed_count IS NULL)"
            " OR (fixed_count IS NOT NULL AND hours IS NULL AND units IS NULL)",
            name="payroll_entry_single_quantity_check",
        ),
        CheckConstraint(
            "adjustment IS NULL OR fixed_count IS NOT NULL",
            name="payroll_entry_adjustment_fixed_only",
        ),
    )

    # Relationships
    submission: Mapped[PayrollSubmission] = relationship(back_populates="entries")
    employee: Mapped[Employee] = relationship()
