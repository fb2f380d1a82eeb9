"""Per-employee production and hours totals for a pay period.

``AggregationService`` reads the local production_event cache.
``DirectAggregationService`` pages the workforce platform live. Both
return totals keyed by the caller's emails, seeded at zero.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_sync.calculators.period import window_bounds
from payroll_sync.config import LocationMap
from payroll_sync.errors import ValidationError
from payroll_sync.metrics import sync_metrics
from payroll_sync.models.events import EventKind, ProductionEvent
from payroll_sync.providers.base import SECONDS_PER_HOUR, WorkforcePlatform
from payroll_sync.services.identity_resolver import IdentityResolver
from payroll_sync.services.paging import CursorPager

logger = logging.getLogger(__name__)

HOURS_PRECISION = Decimal("0.01")
ZERO = Decimal("0")


@dataclass
class AggregationResult:
    """Totals per requested email plus events that matched no identity."""

    totals: dict[str, Decimal] = field(default_factory=dict)
    unmatched_events: int = 0
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": {email: float(value) for email, value in self.totals.items()},
            "unmatchedEvents": self.unmatched_events,
            "truncated": self.truncated,
        }


class _Accumulator:
    """Collects per-email totals against the requested email set."""

    def __init__(self, employee_emails: Iterable[str]):
        self.totals: dict[str, Decimal] = {}
        self._keys: dict[str, str] = {}
        for email in employee_emails:
            if not email or not email.strip():
                continue
            key = email.strip().lower()
            if key in self._keys:
                # Case variants collapse onto the first spelling
                continue
            self.totals[email] = ZERO
            self._keys[key] = email
        self.unmatched = 0

    def add(self, email: str | None, amount: Decimal, events: int = 1) -> None:
        if email is None:
            self.unmatched += events
            return
        requested = self._keys.get(email.strip().lower())
        if requested is not None:
            self.totals[requested] += amount

    def result(self, *, round_hours: bool = False, truncated: bool = False) -> AggregationResult:
        totals = self.totals
        if round_hours:
            totals = {email: round_hours_half_up(value) for email, value in totals.items()}
        if self.unmatched:
            sync_metrics.aggregation_unmatched.inc(self.unmatched)
            logger.warning("%d event(s) dropped from aggregation: unknown identity", self.unmatched)
        return AggregationResult(totals=totals, unmatched_events=self.unmatched, truncated=truncated)


def round_hours_half_up(hours: Decimal) -> Decimal:
    return hours.quantize(HOURS_PRECISION, rounding=ROUND_HALF_UP)


def net_hours(shift_seconds: int, break_seconds: int) -> Decimal:
    """Worked hours from shift seconds minus break seconds, never negative."""
    return max(Decimal(shift_seconds - break_seconds), ZERO) / SECONDS_PER_HOUR


def _check_period(period_start: date, period_end: date) -> None:
    if period_start > period_end:
        raise ValidationError(f"periodStart {period_start} is after periodEnd {period_end}")


class AggregationService:
    """Aggregates from live rows of the local event cache."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def production_counts(
        self,
        period_start: date,
        period_end: date,
        location_label: str,
        employee_emails: Iterable[str],
    ) -> AggregationResult:
        """Count live form submissions per email in the inclusive window."""
        _check_period(period_start, period_end)
        lower, upper = window_bounds(period_start, period_end)
        stmt = (
            select(ProductionEvent.resolved_email, func.count())
            .where(
                ProductionEvent.is_live(),
                ProductionEvent.event_kind == EventKind.FORM_SUBMISSION.value,
                func.lower(ProductionEvent.location_label) == location_label.strip().lower(),
                ProductionEvent.occurred_at >= lower,
                ProductionEvent.occurred_at < upper,
            )
            .group_by(ProductionEvent.resolved_email)
        )
        acc = _Accumulator(employee_emails)
        for email, count in (await self.session.execute(stmt)).all():
            acc.add(email, Decimal(count), events=count)
        return acc.result()

    async def hours_worked(
        self,
        period_start: date,
        period_end: date,
        location_label: str,
        employee_emails: Iterable[str],
    ) -> AggregationResult:
        """Sum shift hours minus manual breaks per email."""
        _check_period(period_start, period_end)
        lower, upper = window_bounds(period_start, period_end)
        stmt = select(
            ProductionEvent.resolved_email,
            ProductionEvent.event_kind,
            ProductionEvent.interval_start_ts,
            ProductionEvent.interval_end_ts,
        ).where(
            ProductionEvent.is_live(),
            ProductionEvent.event_kind.in_([EventKind.SHIFT.value, EventKind.BREAK.value]),
            func.lower(ProductionEvent.location_label) == location_label.strip().lower(),
            ProductionEvent.occurred_at >= lower,
            ProductionEvent.occurred_at < upper,
        )

        shift_seconds: dict[str | None, int] = {}
        break_seconds: dict[str | None, int] = {}
        unresolved_shifts = 0
        for email, kind, start_ts, end_ts in (await self.session.execute(stmt)).all():
            if start_ts is None or end_ts is None:
                continue
            bucket = shift_seconds if kind == EventKind.SHIFT.value else break_seconds
            if email is None:
                if kind == EventKind.SHIFT.value:
                    unresolved_shifts += 1
                continue
            key = email.lower()
            bucket[key] = bucket.get(key, 0) + (end_ts - start_ts)

        acc = _Accumulator(employee_emails)
        for email, seconds in shift_seconds.items():
            acc.add(email, net_hours(seconds, break_seconds.get(email, 0)))
        acc.unmatched += unresolved_shifts
        return acc.result(round_hours=True)


class DirectAggregationService:
    """Aggregates straight from the platform without touching the cache.

    Only the documented time-activity schema is understood; anything else
    surfaces as UnsupportedShape from the provider.
    """

    def __init__(
        self,
        platform: WorkforcePlatform,
        resolver: IdentityResolver,
        locations: LocationMap,
        page_size: int = 100,
        max_pages: int = 500,
    ):
        self.platform = platform
        self.resolver = resolver
        self.locations = locations
        self.page_size = page_size
        self.max_pages = max_pages

    async def production_counts(
        self,
        period_start: date,
        period_end: date,
        location_label: str,
        employee_emails: Iterable[str],
    ) -> AggregationResult:
        _check_period(period_start, period_end)
        form_id = self.locations.form_id_for(location_label)
        directory = await self.resolver.build_directory()

        async def fetch(offset: int | None):
            return await self.platform.list_form_submissions(
                form_id,
                start_date=period_start,
                end_date=period_end,
                offset=offset,
                limit=self.page_size,
            )

        pager = CursorPager(fetch, max_pages=self.max_pages, description=f"Form {form_id} listing")
        acc = _Accumulator(employee_emails)
        async for page in pager.pages():
            for record in page.items:
                if not (period_start <= record.submitted_at.date() <= period_end):
                    continue
                acc.add(directory.email_for(record.submitting_user_id), Decimal(1))
        return acc.result(truncated=directory.truncated or pager.truncated)

    async def hours_worked(
        self,
        period_start: date,
        period_end: date,
        location_label: str,
        employee_emails: Iterable[str],
    ) -> AggregationResult:
        _check_period(period_start, period_end)
        clock_id = self.locations.time_clock_id_for(location_label)
        directory = await self.resolver.build_directory()
        lower, upper = window_bounds(period_start, period_end)
        lo, hi = int(lower.timestamp()), int(upper.timestamp())

        async def fetch(offset: int | None):
            return await self.platform.list_time_activities(
                clock_id, start_date=period_start, end_date=period_end, offset=offset
            )

        pager = CursorPager(fetch, max_pages=self.max_pages, description=f"Time clock {clock_id} listing")
        shift_seconds: dict[str, int] = {}
        break_seconds: dict[str, int] = {}
        unresolved_shifts = 0
        async for page in pager.pages():
            for activities in page.users:
                # Same start-in-window rule as the cached rows
                shifts = [s for s in activities.shifts if lo <= s.start_ts < hi]
                breaks = [b for b in activities.breaks if lo <= b.start_ts < hi]
                email = directory.email_for(activities.external_user_id)
                if email is None:
                    unresolved_shifts += len(shifts)
                    continue
                shift_seconds[email] = shift_seconds.get(email, 0) + sum(
                    s.end_ts - s.start_ts for s in shifts
                )
                break_seconds[email] = break_seconds.get(email, 0) + sum(
                    b.end_ts - b.start_ts for b in breaks
                )

        acc = _Accumulator(employee_emails)
        for email, seconds in shift_seconds.items():
            acc.add(email, net_hours(seconds, break_seconds.get(email, 0)))
        acc.unmatched += unresolved_shifts
        return acc.result(round_hours=True, truncated=directory.truncated or pager.truncated)
