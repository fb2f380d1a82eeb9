"""Tests for cache-backed and direct aggregation."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from payroll_sync.errors import UnmappedLocationError, ValidationError
from payroll_sync.metrics import sync_metrics
from payroll_sync.models import EventKind
from payroll_sync.services.aggregation import (
    AggregationService,
    DirectAggregationService,
    net_hours,
)
from payroll_sync.providers.stub import StubWorkforcePlatform
from payroll_sync.services.identity_resolver import IdentityResolver
from payroll_sync.services.ingestion import (
    EventIngestionService,
    NormalizedEvent,
    PollReconciliationService,
)

pytestmark = pytest.mark.asyncio

MANHEIM_FORM = "9001"
MANHEIM_CLOCK = "7001"
START = date(2024, 12, 26)
END = date(2025, 1, 8)
EMAILS = ["Alice@Example.com", "bob@example.com", "carol@example.com"]


def at(day: int, month: int = 1, year: int = 2025, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def ts(moment: datetime) -> int:
    return int(moment.timestamp())


async def store(session, resolver, locations, *events: NormalizedEvent) -> EventIngestionService:
    ingestion = EventIngestionService(session, resolver, locations)
    for event in events:
        await ingestion.upsert_event(event)
    await session.commit()
    return ingestion


def submission(external_id: str, email: str | None, occurred_at: datetime, label="Manheim"):
    return NormalizedEvent(
        external_event_id=external_id,
        event_kind=EventKind.FORM_SUBMISSION,
        source_id=MANHEIM_FORM,
        submitting_external_user_id="101",
        occurred_at=occurred_at,
        resolved_email=email,
        location_label=label,
    )


def interval(kind: EventKind, external_id: str, email: str | None, start: datetime, seconds: int):
    return NormalizedEvent(
        external_event_id=external_id,
        event_kind=kind,
        source_id=MANHEIM_CLOCK,
        submitting_external_user_id="101",
        occurred_at=start,
        resolved_email=email,
        location_label="Manheim",
        interval_start_ts=ts(start),
        interval_end_ts=ts(start) + seconds,
    )


class TestCachedProductionCounts:
    """Test counting live submissions from the local store."""

    async def test_counts_live_events_in_window(self, session, resolver, locations):
        ingestion = await store(
            session,
            resolver,
            locations,
            submission("s1", "alice@example.com", at(26, 12, 2024, hour=0)),
            submission("s2", "alice@example.com", at(2)),
            submission("s3", "bob@example.com", at(8, hour=23)),
            submission("s4", "alice@example.com", at(9, hour=0)),  # day after period end
            submission("s5", "bob@example.com", at(25, 12, 2024, hour=23)),  # before start
            submission("s6", "alice@example.com", at(3), label="Lancaster"),
            submission("s7", "bob@example.com", at(4)),
        )
        await ingestion.soft_delete("s7")
        await session.commit()

        result = await AggregationService(session).production_counts(START, END, "Manheim", EMAILS)

        assert result.totals == {
            "Alice@Example.com": Decimal(2),
            "bob@example.com": Decimal(1),
            "carol@example.com": Decimal(0),
        }
        assert result.unmatched_events == 0

    async def test_unknown_identities_dropped_and_counted(self, session, resolver, locations):
        await store(
            session,
            resolver,
            locations,
            submission("s1", None, at(2)),
            submission("s2", None, at(3)),
            submission("s3", "alice@example.com", at(3)),
            submission("s4", "stranger@example.com", at(3)),
        )

        result = await AggregationService(session).production_counts(START, END, "manheim", EMAILS)

        assert result.totals["Alice@Example.com"] == 1
        assert "stranger@example.com" not in result.totals
        assert result.unmatched_events == 2
        assert sync_metrics.aggregation_unmatched.value == 2

    async def test_empty_request(self, session):
        result = await AggregationService(session).production_counts(START, END, "Manheim", [])
        assert result.totals == {}

    async def test_inverted_period(self, session):
        with pytest.raises(ValidationError):
            await AggregationService(session).production_counts(END, START, "Manheim", EMAILS)


class TestCachedHours:
    """Test hours from stored shifts and breaks."""

    async def test_shifts_minus_breaks(self, session, resolver, locations):
        await store(
            session,
            resolver,
            locations,
            interval(EventKind.SHIFT, "sh1", "alice@example.com", at(2, hour=8), 8 * 3600),
            interval(EventKind.SHIFT, "sh2", "alice@example.com", at(3, hour=8), 4 * 3600 + 1234),
            interval(EventKind.BREAK, "br1", "alice@example.com", at(2, hour=12), 1800),
            interval(EventKind.SHIFT, "sh3", "bob@example.com", at(3, hour=8), 20 * 60),
            interval(EventKind.SHIFT, "sh4", None, at(3, hour=8), 3600),
            interval(EventKind.SHIFT, "sh5", "alice@example.com", at(20, hour=8), 3600),
        )

        result = await AggregationService(session).hours_worked(START, END, "Manheim", EMAILS)

        # 8h + 4h20m34s - 30m = 11.8428 -> 11.84
        assert result.totals["Alice@Example.com"] == Decimal("11.84")
        assert result.totals["bob@example.com"] == Decimal("0.33")
        assert result.totals["carol@example.com"] == Decimal("0.00")
        assert result.unmatched_events == 1

    async def test_deleted_shift_excluded(self, session, resolver, locations):
        ingestion = await store(
            session,
            resolver,
            locations,
            interval(EventKind.SHIFT, "sh1", "alice@example.com", at(2, hour=8), 3600),
            interval(EventKind.SHIFT, "sh2", "alice@example.com", at(3, hour=8), 3600),
        )
        await ingestion.soft_delete("sh2")
        await session.commit()

        result = await AggregationService(session).hours_worked(START, END, "Manheim", EMAILS)

        assert result.totals["Alice@Example.com"] == Decimal("1.00")

    async def test_net_hours_never_negative(self):
        assert net_hours(600, 1200) == 0
        assert net_hours(5400, 1800) == 1


class TestDirectAggregation:
    """Test live aggregation against the platform."""

    @pytest.fixture
    def direct(self, platform, resolver, locations) -> DirectAggregationService:
        return DirectAggregationService(platform, resolver, locations, page_size=2)

    async def test_production_counts(self, platform, direct):
        platform.add_submission(MANHEIM_FORM, "a", 101, at(2))
        platform.add_submission(MANHEIM_FORM, "b", 101, at(3))
        platform.add_submission(MANHEIM_FORM, "c", 102, at(4))
        platform.add_submission(MANHEIM_FORM, "d", 555, at(5))
        platform.add_submission(MANHEIM_FORM, "e", 102, at(20))

        result = await direct.production_counts(START, END, "Manheim", EMAILS)

        assert result.totals == {
            "Alice@Example.com": Decimal(2),
            "bob@example.com": Decimal(1),
            "carol@example.com": Decimal(0),
        }
        assert result.unmatched_events == 1
        assert not result.truncated

    async def test_hours(self, platform, direct):
        start = ts(at(2, hour=8))
        platform.add_shift(MANHEIM_CLOCK, 101, start, start + 9 * 3600)
        platform.add_break(MANHEIM_CLOCK, 101, start + 4 * 3600, start + 5 * 3600)
        platform.add_shift(MANHEIM_CLOCK, 102, start, start + 2 * 3600 + 18)
        platform.add_shift(MANHEIM_CLOCK, 555, start, start + 3600)

        result = await direct.hours_worked(START, END, "Manheim", EMAILS)

        assert result.totals["Alice@Example.com"] == Decimal("8.00")
        assert result.totals["bob@example.com"] == Decimal("2.01")
        assert result.unmatched_events == 1

    async def test_unmapped_location(self, direct):
        with pytest.raises(UnmappedLocationError):
            await direct.hours_worked(START, END, "Harrisburg", EMAILS)

    async def test_truncated_directory_flagged(self, platform, locations):
        for i in range(10):
            platform.add_user(200 + i, f"extra{i}@example.com")
        resolver = IdentityResolver(platform, page_size=2, max_pages=1)
        direct = DirectAggregationService(platform, resolver, locations)

        result = await direct.production_counts(START, END, "Manheim", EMAILS)

        assert result.truncated


class LooseTimeClockPlatform(StubWorkforcePlatform):
    """Platform whose time-activity date filter reaches a day past the end date."""

    async def list_time_activities(self, time_clock_id, *, start_date, end_date, offset):
        return await super().list_time_activities(
            time_clock_id, start_date=start_date, end_date=end_date + timedelta(days=1), offset=offset
        )


class TestCacheAndDirectAgree:
    """Test that both sources give the same totals for one period."""

    async def test_hours_ignore_activity_outside_period(self, session, locations):
        platform = LooseTimeClockPlatform()
        platform.add_user(101, "Alice@Example.com")
        inside = ts(at(6, hour=8))
        after_end = ts(at(9, hour=8))
        platform.add_shift(MANHEIM_CLOCK, 101, inside, inside + 8 * 3600)
        platform.add_break(MANHEIM_CLOCK, 101, inside + 4 * 3600, inside + 5 * 3600)
        platform.add_shift(MANHEIM_CLOCK, 101, after_end, after_end + 8 * 3600)
        platform.add_shift(MANHEIM_CLOCK, 555, after_end, after_end + 3600)

        poller = PollReconciliationService(
            session, platform, IdentityResolver(platform), locations
        )
        polled = await poller.poll_time_activities("Manheim", START, END)
        assert polled.success

        cached = await AggregationService(session).hours_worked(START, END, "Manheim", EMAILS)
        direct = await DirectAggregationService(
            platform, IdentityResolver(platform), locations
        ).hours_worked(START, END, "Manheim", EMAILS)

        assert direct.totals["Alice@Example.com"] == Decimal("7.00")
        assert direct.totals == cached.totals
        assert direct.unmatched_events == cached.unmatched_events == 0


class TestRequestedEmails:
    """Test how requested emails key the totals."""

    async def test_case_variants_collapse(self, session, resolver, locations):
        await store(
            session,
            resolver,
            locations,
            submission("s1", "alice@example.com", at(2)),
            submission("s2", "alice@example.com", at(3)),
        )

        result = await AggregationService(session).production_counts(
            START, END, "Manheim", ["Alice@Example.com", "alice@example.com", "ALICE@example.com"]
        )

        assert result.totals == {"Alice@Example.com": Decimal(2)}
