"""Compensation amount calculation."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from payroll_sync.calculators.types import CompensationTerms, LineCandidate, LineInput
from payroll_sync.errors import ValidationError
from payroll_sync.models.organization import CompensationType

ZERO = Decimal("0")


class CompensationCalculator:
    """Turns hours, units or counts into money.

    Rules (closed over CompensationType):
    - hourly:     hours × hourly_rate
    - production: units × piece_rate
    - fixed:      count × fixed_pay + adjustment (adjustment may be negative)

    Rounding:
    - Internal compute at full Decimal precision
    - USD to 2 decimals, half-up, once per line
    """

    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return amount.quantize(CompensationCalculator.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def qualifying_quantity(compensation_type: CompensationType, line: LineInput) -> Decimal:
        """The quantity that drives pay for this compensation type."""
        if compensation_type == CompensationType.HOURLY:
            value = line.hours
        elif compensation_type == CompensationType.PRODUCTION:
            value = line.units
        elif compensation_type == CompensationType.FIXED:
            value = line.count
        else:
            raise ValidationError(f"Unknown compensation type {compensation_type!r}")
        return Decimal(value) if value is not None else ZERO

    @staticmethod
    def has_qualifying_value(terms: CompensationTerms, line: LineInput) -> bool:
        return CompensationCalculator.qualifying_quantity(terms.compensation_type, line) > 0

    @staticmethod
    def compute_amount(terms: CompensationTerms, line: LineInput) -> Decimal:
        """Compute the rounded amount for one line."""
        quantity = CompensationCalculator.qualifying_quantity(terms.compensation_type, line)
        if quantity < 0:
            raise ValidationError(
                f"Negative quantity {quantity} for employee {line.employee_id}"
            )
        amount = quantity * terms.rate
        if terms.compensation_type == CompensationType.FIXED and line.adjustment is not None:
            amount += Decimal(line.adjustment)
        return CompensationCalculator.round_to_cents(amount)

    @staticmethod
    def build_line(terms: CompensationTerms, line: LineInput) -> LineCandidate:
        """Create a line candidate with its computed amount."""
        adjustment = None
        if terms.compensation_type == CompensationType.FIXED:
            adjustment = CompensationCalculator.round_to_cents(
                Decimal(line.adjustment) if line.adjustment is not None else ZERO
            )
        return LineCandidate(
            employee_id=line.employee_id,
            compensation_type=terms.compensation_type,
            quantity=CompensationCalculator.qualifying_quantity(terms.compensation_type, line),
            rate=terms.rate,
            amount=CompensationCalculator.compute_amount(terms, line),
            adjustment=adjustment,
            notes=line.notes,
        )

    @staticmethod
    def total(lines: list[LineCandidate]) -> Decimal:
        """Sum of line amounts."""
        total = ZERO
        for line in lines:
            total += line.amount
        return CompensationCalculator.round_to_cents(total)
