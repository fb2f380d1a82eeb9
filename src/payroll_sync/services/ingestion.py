"""Event ingestion: webhook push and paginated poll reconciliation.

Both paths converge on ``EventIngestionService.upsert_event``, an
``INSERT ... ON CONFLICT (external_event_id) DO UPDATE``. The unique key is
the only coordination between concurrent deliveries and poll cycles.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_sync.config import LocationMap
from payroll_sync.database import dialect_insert
from payroll_sync.errors import IdentityUnresolved, UpstreamUnavailable, ValidationError
from payroll_sync.metrics import sync_metrics
from payroll_sync.models.events import EventKind, EventState, ProductionEvent
from payroll_sync.providers.base import (
    FormSubmissionRecord,
    ShiftInterval,
    UserTimeActivities,
    WorkforcePlatform,
)
from payroll_sync.services.identity_resolver import IdentityDirectory, IdentityResolver
from payroll_sync.services.paging import CursorPager

logger = logging.getLogger(__name__)

UPSERT_EVENTS = frozenset({"form.submitted", "form.updated"})
DELETE_EVENTS = frozenset({"form.deleted"})


@dataclass(frozen=True)
class NormalizedEvent:
    """Platform event reduced to the columns of a production_event row."""

    external_event_id: str
    event_kind: EventKind
    source_id: str
    submitting_external_user_id: str
    occurred_at: datetime
    resolved_email: str | None = None
    location_label: str | None = None
    entry_num: int | None = None
    interval_start_ts: int | None = None
    interval_end_ts: int | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "external_event_id": self.external_event_id,
            "event_kind": self.event_kind.value,
            "source_id": self.source_id,
            "submitting_external_user_id": self.submitting_external_user_id,
            "resolved_email": self.resolved_email,
            "location_label": self.location_label,
            "occurred_at": self.occurred_at.astimezone(timezone.utc),
            "entry_num": self.entry_num,
            "interval_start_ts": self.interval_start_ts,
            "interval_end_ts": self.interval_end_ts,
        }


@dataclass(frozen=True)
class NotificationOutcome:
    """What a webhook delivery did to the local store."""

    event_type: str
    action: str  # upserted | deleted | not_found | ignored
    external_event_id: str | None = None

    @property
    def applied(self) -> bool:
        return self.action in ("upserted", "deleted")


class EventIngestionService:
    """Applies platform events to the local production_event table.

    The caller owns the transaction; this service only flushes statements.
    """

    def __init__(
        self,
        session: AsyncSession,
        resolver: IdentityResolver,
        locations: LocationMap,
    ):
        self.session = session
        self.resolver = resolver
        self.locations = locations

    async def handle_notification(self, event_type: str, data: Any) -> NotificationOutcome:
        """Apply one webhook notification.

        Args:
            event_type: ``form.submitted``, ``form.updated`` or ``form.deleted``
            data: The notification's ``data`` object

        Raises:
            ValidationError: If the payload is missing required fields
        """
        if not event_type:
            raise ValidationError("Missing event type")
        if not isinstance(data, dict):
            raise ValidationError("Missing event data")

        if event_type in UPSERT_EVENTS:
            normalized = await self.normalize_submission(data)
            await self.upsert_event(normalized)
            logger.info(
                "Applied %s for submission %s", event_type, normalized.external_event_id
            )
            return NotificationOutcome(event_type, "upserted", normalized.external_event_id)

        if event_type in DELETE_EVENTS:
            external_id = data.get("formSubmissionId")
            if external_id in (None, ""):
                raise ValidationError("form.deleted payload missing formSubmissionId")
            removed = await self.soft_delete(str(external_id))
            return NotificationOutcome(
                event_type, "deleted" if removed else "not_found", str(external_id)
            )

        logger.info("Ignoring unhandled webhook event type %s", event_type)
        return NotificationOutcome(event_type, "ignored")

    async def normalize_submission(
        self,
        data: dict[str, Any] | FormSubmissionRecord,
        directory: IdentityDirectory | None = None,
    ) -> NormalizedEvent:
        """Build a NormalizedEvent from a submission payload or record.

        Identity failures are not fatal: the event keeps a null email and
        the gap is logged and counted.
        """
        record = data if isinstance(data, FormSubmissionRecord) else FormSubmissionRecord.from_payload(data)
        email = await self.resolve_email(record.submitting_user_id, directory, record.submission_id)
        return NormalizedEvent(
            external_event_id=record.submission_id,
            event_kind=EventKind.FORM_SUBMISSION,
            source_id=record.form_id,
            submitting_external_user_id=record.submitting_user_id,
            occurred_at=record.submitted_at,
            resolved_email=email,
            location_label=self.resolve_location_label(record),
            entry_num=record.entry_num,
        )

    def normalize_time_activities(
        self,
        activities: UserTimeActivities,
        time_clock_id: str,
        location_label: str | None,
        email: str | None,
    ) -> list[NormalizedEvent]:
        """Expand one user's shifts and manual breaks into events."""
        events = []
        for kind, intervals in (
            (EventKind.SHIFT, activities.shifts),
            (EventKind.BREAK, activities.breaks),
        ):
            for interval in intervals:
                events.append(
                    NormalizedEvent(
                        external_event_id=_interval_event_id(
                            kind, time_clock_id, activities.external_user_id, interval
                        ),
                        event_kind=kind,
                        source_id=time_clock_id,
                        submitting_external_user_id=activities.external_user_id,
                        occurred_at=datetime.fromtimestamp(interval.start_ts, tz=timezone.utc),
                        resolved_email=email,
                        location_label=location_label,
                        interval_start_ts=interval.start_ts,
                        interval_end_ts=interval.end_ts,
                    )
                )
        return events

    def resolve_location_label(self, record: FormSubmissionRecord) -> str | None:
        """Location for a submission.

        Order: explicit ``locationName``, the configured form mapping, then a
        multiple-choice answer whose selected text equals a configured label.
        """
        if record.location_name:
            return self.locations.match_label(record.location_name) or record.location_name.strip()

        label = self.locations.label_for_form(record.form_id)
        if label:
            return label

        for answer in record.answers:
            if answer.get("questionType") != "multipleChoice":
                continue
            for selected in answer.get("selectedAnswers") or []:
                if not isinstance(selected, dict):
                    continue
                label = self.locations.match_label(selected.get("text"))
                if label:
                    return label
        return None

    async def upsert_event(self, normalized: NormalizedEvent) -> None:
        """Insert or update by external id, always leaving the row live.

        A later delivery that failed identity resolution keeps the email
        already on file.
        """
        now = datetime.now(timezone.utc)
        table = ProductionEvent.__table__
        values = normalized.to_row()
        stmt = dialect_insert(self.session, table).values(
            **values,
            state=EventState.LIVE.value,
            deleted_at=None,
            updated_at=now,
        )
        updates: dict[str, Any] = {key: stmt.excluded[key] for key in values}
        updates["resolved_email"] = func.coalesce(
            stmt.excluded.resolved_email, table.c.resolved_email
        )
        updates["location_label"] = func.coalesce(
            stmt.excluded.location_label, table.c.location_label
        )
        updates["state"] = EventState.LIVE.value
        updates["deleted_at"] = None
        updates["updated_at"] = now
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_event_id],
            set_=updates,
        )
        await self.session.execute(stmt)
        sync_metrics.events_upserted.inc()

    async def soft_delete(self, external_event_id: str) -> bool:
        """Mark a live event deleted. Unknown or already deleted ids are a no-op.

        Returns:
            True if a live row was flipped to deleted
        """
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(ProductionEvent)
            .where(
                ProductionEvent.external_event_id == external_event_id,
                ProductionEvent.is_live(),
            )
            .values(state=EventState.DELETED.value, deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            sync_metrics.events_soft_deleted.inc()
            logger.info("Soft-deleted production event %s", external_event_id)
            return True
        logger.info("Delete for unknown or already deleted event %s ignored", external_event_id)
        return False

    async def resolve_email(
        self,
        external_user_id: str,
        directory: IdentityDirectory | None,
        external_event_id: str,
    ) -> str | None:
        if directory is not None:
            email = directory.email_for(external_user_id)
            if email is not None or not directory.truncated:
                if email is None:
                    _record_identity_gap(external_event_id, external_user_id, "not in user directory")
                return email
        try:
            return await self.resolver.resolve_user(external_user_id)
        except IdentityUnresolved as e:
            _record_identity_gap(external_event_id, external_user_id, e.reason)
            return None


def _record_identity_gap(external_event_id: str, external_user_id: str, reason: str | None) -> None:
    sync_metrics.identities_unresolved.inc()
    logger.warning(
        "Reconciliation gap: event %s stored without email for user %s (%s)",
        external_event_id,
        external_user_id,
        reason or "unknown",
    )


def _interval_event_id(
    kind: EventKind, time_clock_id: str, external_user_id: str, interval: ShiftInterval
) -> str:
    key = interval.activity_id or f"{external_user_id}:{interval.start_ts}"
    return f"{kind.value}:{time_clock_id}:{key}"


@dataclass
class PollResult:
    """Result of one poll reconciliation cycle."""

    location_label: str
    kind: str
    start_date: date
    end_date: date
    pages_fetched: int = 0
    events_upserted: int = 0
    unresolved_identities: int = 0
    cancelled: bool = False
    truncated: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the cycle reached the end of the listing without errors."""
        return not self.errors and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            "locationLabel": self.location_label,
            "kind": self.kind,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "pagesFetched": self.pages_fetched,
            "eventsUpserted": self.events_upserted,
            "unresolvedIdentities": self.unresolved_identities,
            "cancelled": self.cancelled,
            "truncated": self.truncated,
            "success": self.success,
            "errors": self.errors,
        }


class PollReconciliationService:
    """Pull-based reconciliation for a location and date window.

    Pages are fetched sequentially and committed one at a time, so an
    upstream failure leaves earlier pages applied and is reported in the
    result rather than raised.
    """

    def __init__(
        self,
        session: AsyncSession,
        platform: WorkforcePlatform,
        resolver: IdentityResolver,
        locations: LocationMap,
        page_size: int = 100,
        max_pages: int = 500,
    ):
        self.session = session
        self.platform = platform
        self.resolver = resolver
        self.locations = locations
        self.page_size = page_size
        self.max_pages = max_pages
        self.ingestion = EventIngestionService(session, resolver, locations)

    async def poll_form_submissions(
        self,
        location_label: str,
        start: date,
        end: date,
        should_cancel: Callable[[], bool] | None = None,
    ) -> PollResult:
        """Reconcile form submissions for a location.

        Raises:
            UnmappedLocationError: If the location has no configured form
            ValidationError: If ``start`` is after ``end``
        """
        _check_window(start, end)
        form_id = self.locations.form_id_for(location_label)
        label = self.locations.get(location_label).label
        result = PollResult(location_label=label, kind="forms", start_date=start, end_date=end)

        async def fetch(offset: int | None):
            return await self.platform.list_form_submissions(
                form_id, start_date=start, end_date=end, offset=offset, limit=self.page_size
            )

        pager = CursorPager(
            fetch,
            max_pages=self.max_pages,
            should_cancel=should_cancel,
            description=f"Form {form_id} poll",
        )
        try:
            directory = await self.resolver.build_directory()
            async for page in pager.pages():
                sync_metrics.poll_pages_fetched.inc()
                for record in page.items:
                    normalized = await self.ingestion.normalize_submission(record, directory)
                    await self.ingestion.upsert_event(normalized)
                    result.events_upserted += 1
                    if normalized.resolved_email is None:
                        result.unresolved_identities += 1
                await self.session.commit()
        except UpstreamUnavailable as e:
            await self._record_failure(result, e)

        return self._finish(result, pager)

    async def poll_time_activities(
        self,
        location_label: str,
        start: date,
        end: date,
        should_cancel: Callable[[], bool] | None = None,
    ) -> PollResult:
        """Reconcile closed shifts and manual breaks for a location.

        Raises:
            UnmappedLocationError: If the location has no configured time clock
            ValidationError: If ``start`` is after ``end``
        """
        _check_window(start, end)
        clock_id = self.locations.time_clock_id_for(location_label)
        label = self.locations.get(location_label).label
        result = PollResult(location_label=label, kind="time", start_date=start, end_date=end)

        async def fetch(offset: int | None):
            return await self.platform.list_time_activities(
                clock_id, start_date=start, end_date=end, offset=offset
            )

        pager = CursorPager(
            fetch,
            max_pages=self.max_pages,
            should_cancel=should_cancel,
            description=f"Time clock {clock_id} poll",
        )
        try:
            directory = await self.resolver.build_directory()
            async for page in pager.pages():
                sync_metrics.poll_pages_fetched.inc()
                for activities in page.users:
                    email = await self.ingestion.resolve_email(
                        activities.external_user_id,
                        directory,
                        f"time clock {clock_id}",
                    )
                    if email is None:
                        result.unresolved_identities += 1
                    if activities.open_shifts:
                        logger.debug(
                            "User %s has %d open shift(s); skipped until clocked out",
                            activities.external_user_id,
                            activities.open_shifts,
                        )
                    for normalized in self.ingestion.normalize_time_activities(
                        activities, clock_id, label, email
                    ):
                        await self.ingestion.upsert_event(normalized)
                        result.events_upserted += 1
                await self.session.commit()
        except UpstreamUnavailable as e:
            await self._record_failure(result, e)

        return self._finish(result, pager)

    async def _record_failure(self, result: PollResult, error: UpstreamUnavailable) -> None:
        await self.session.rollback()
        sync_metrics.poll_failures.inc()
        result.errors.append(
            {
                "code": error.code,
                "status_code": error.status_code,
                "message": str(error),
            }
        )
        logger.error(
            "%s poll for %s aborted: %s", result.kind, result.location_label, error
        )

    def _finish(self, result: PollResult, pager: CursorPager) -> PollResult:
        result.pages_fetched = pager.pages_fetched
        result.cancelled = pager.cancelled
        result.truncated = pager.truncated
        logger.info(
            "%s poll for %s %s..%s: %d page(s), %d event(s), %d unresolved%s",
            result.kind,
            result.location_label,
            result.start_date,
            result.end_date,
            result.pages_fetched,
            result.events_upserted,
            result.unresolved_identities,
            " (cancelled)" if result.cancelled else "",
        )
        return result


def _check_window(start: date, end: date) -> None:
    if start > end:
        raise ValidationError(f"startDate {start} is after endDate {end}")
