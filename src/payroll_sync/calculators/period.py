"""Pay period and payroll group derivation.

Pay dates fall on Fridays. Each pay date compensates a 14-day window that
ends 9 days before it. Consecutive Fridays alternate between payroll
groups A and B, so each group is paid every 14 days.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum

from payroll_sync.errors import ValidationError

DEFAULT_REFERENCE_DATE = date(2025, 1, 3)
PAY_WEEKDAY = 4  # Friday
PERIOD_LENGTH_DAYS = 14
PAY_DATE_LAG_DAYS = 9


class PayrollGroup(str, Enum):
    """Payroll group labels."""

    A = "A"
    B = "B"


# Canonical parity convention: an even number of whole weeks from the
# reference date is group B. Every call site goes through payroll_group_for().
GROUP_BY_PARITY = {0: PayrollGroup.B, 1: PayrollGroup.A}


@dataclass(frozen=True)
class PayPeriod:
    """The 14-day window a pay date compensates."""

    pay_date: date
    period_start: date
    period_end: date
    payroll_group: PayrollGroup

    @property
    def length_days(self) -> int:
        return (self.period_end - self.period_start).days + 1

    def contains(self, day: date) -> bool:
        """Whether ``day`` falls inside the period (inclusive)."""
        return self.period_start <= day <= self.period_end

    def window_bounds(self) -> tuple[datetime, datetime]:
        """UTC half-open bounds ``[start 00:00, end + 1 day 00:00)``."""
        return window_bounds(self.period_start, self.period_end)

    def to_dict(self) -> dict[str, str]:
        return {
            "payDate": self.pay_date.isoformat(),
            "periodStart": self.period_start.isoformat(),
            "periodEnd": self.period_end.isoformat(),
            "payrollGroup": self.payroll_group.value,
        }


def whole_weeks_between(day: date, reference_date: date) -> int:
    """Whole weeks from ``reference_date`` to ``day``, floored."""
    return (day - reference_date).days // 7


def payroll_group_for(
    pay_date: date, reference_date: date = DEFAULT_REFERENCE_DATE
) -> PayrollGroup:
    """Payroll group label for a pay date."""
    parity = ((whole_weeks_between(pay_date, reference_date) % 2) + 2) % 2
    return GROUP_BY_PARITY[parity]


def derive_pay_period(
    pay_date: date,
    reference_date: date = DEFAULT_REFERENCE_DATE,
) -> PayPeriod:
    """Derive the pay period and payroll group for a pay date.

    The pay weekday is a caller contract and is not checked here; use
    ``is_pay_weekday`` where input comes from users.

    Args:
        pay_date: The calendar pay date
        reference_date: A known pay date anchoring group parity

    Returns:
        PayPeriod with period_end = pay_date - 9 days and a 14-day span
    """
    period_end = pay_date - timedelta(days=PAY_DATE_LAG_DAYS)
    period_start = period_end - timedelta(days=PERIOD_LENGTH_DAYS - 1)
    return PayPeriod(
        pay_date=pay_date,
        period_start=period_start,
        period_end=period_end,
        payroll_group=payroll_group_for(pay_date, reference_date),
    )


def is_pay_weekday(day: date) -> bool:
    return day.weekday() == PAY_WEEKDAY


def next_pay_date(today: date) -> date:
    """The next Friday on or after ``today``."""
    return today + timedelta(days=(PAY_WEEKDAY - today.weekday()) % 7)


def parse_pay_date(raw: str | date) -> date:
    """Parse an ISO ``YYYY-MM-DD`` pay date.

    Raises:
        ValidationError: If the value is not a calendar date
    """
    if isinstance(raw, datetime):
        raise ValidationError("payDate must be a calendar date without time")
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError as e:
        raise ValidationError(f"Invalid payDate '{raw}': expected YYYY-MM-DD") from e


def window_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """UTC half-open datetime bounds covering ``start``..``end`` inclusive."""
    lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lower, upper
