"""Location and employee models.

Owned by the organization; the payroll core only reads them.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_sync.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from payroll_sync.models.payroll import PayrollSubmission


class CompensationType(str, Enum):
    """How worked time or output converts to money."""

    HOURLY = "hourly"
    PRODUCTION = "production"
    FIXED = "fixed"


class Location(Base, TimestampMixin):
    """Physical work location belonging to an organization."""

    __tablename__ = "location"

    location_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)

    # Relationships
    employees: Mapped[list[Employee]] = relationship(back_populates="location")
    submissions: Mapped[list[PayrollSubmission]] = relationship(back_populates="location")


class Employee(Base, TimestampMixin):
    """Employee with exactly one compensation model."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("location.location_id", ondelete="RESTRICT"),
        nullable=False,
    )
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    payroll_group: Mapped[str] = mapped_column(String(1), nullable=False)
    compensation_type: Mapped[str] = mapped_column(String, nullable=False)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    piece_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    fixed_pay: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        UniqueConstraint("organization_id", "email", name="employee_org_email_unique"),
        CheckConstraint("payroll_group IN ('A', 'B')", name="employee_payroll_group_check"),
        CheckConstraint(
            "status IN ('active', 'inactive')",
            name="employee_status_check",
        ),
        CheckConstraint(
            "(compensation_type = 'hourly' AND hourly_rate IS NOT NULL"
            " AND piece_rate IS NULL AND fixed_pay IS NULL)"
            " OR (compensation_type = 'production' AND piece_rate IS NOT NULL"
            " AND hourly_rate IS NULL AND fixed_pay IS NULL)"
            " OR (compensation_type = 'fixed' AND fixed_pay IS NOT NULL"
            " AND hourly_rate IS NULL AND piece_rate IS NULL)",
            name="employee_compensation_terms_check",
        ),
    )

    # Relationships
    location: Mapped[Location] = relationship(back_populates="employees")

    @property
    def compensation(self) -> CompensationType:
        return CompensationType(self.compensation_type)
