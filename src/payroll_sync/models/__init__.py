"""ORM models."""

from payroll_sync.models.base import Base, TimestampMixin
from payroll_sync.models.events import EventKind, EventState, ProductionEvent
from payroll_sync.models.organization import CompensationType, Employee, Location
from payroll_sync.models.payroll import PayrollEntry, PayrollSubmission

__all__ = [
    "Base",
    "TimestampMixin",
    "EventKind",
    "EventState",
    "ProductionEvent",
    "CompensationType",
    "Employee",
    "Location",
    "PayrollEntry",
    "PayrollSubmission",
]
