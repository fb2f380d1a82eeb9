"""Payroll calculators."""

from payroll_sync.calculators.compensation import CompensationCalculator
from payroll_sync.calculators.period import PayPeriod, PayrollGroup, derive_pay_period
from payroll_sync.calculators.types import CompensationTerms, LineCandidate, LineInput

__all__ = [
    "CompensationCalculator",
    "CompensationTerms",
    "LineCandidate",
    "LineInput",
    "PayPeriod",
    "PayrollGroup",
    "derive_pay_period",
]
