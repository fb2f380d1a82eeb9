"""Tests for webhook ingestion and poll reconciliation."""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select

from payroll_sync.errors import UnmappedLocationError, ValidationError
from payroll_sync.metrics import sync_metrics
from payroll_sync.models import EventState, ProductionEvent
from payroll_sync.services.ingestion import (
    EventIngestionService,
    PollReconciliationService,
)

pytestmark = pytest.mark.asyncio

MANHEIM_FORM = "9001"
MANHEIM_CLOCK = "7001"
LANCASTER_FORM = "9002"
JAN_6 = 1736150400  # 2025-01-06 08:00 UTC


def submission_payload(submission_id: str = "sub-1", user_id: int = 101, **extra) -> dict:
    payload = {
        "formSubmissionId": submission_id,
        "formId": int(MANHEIM_FORM),
        "submittingUserId": user_id,
        "submissionTimestamp": JAN_6,
    }
    payload.update(extra)
    return payload


async def all_events(session) -> list[ProductionEvent]:
    result = await session.execute(
        select(ProductionEvent)
        .order_by(ProductionEvent.external_event_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.fixture
def ingestion(session, resolver, locations) -> EventIngestionService:
    return EventIngestionService(session, resolver, locations)


class TestHandleNotification:
    """Test webhook push path."""

    async def test_submitted_creates_live_event(self, session, ingestion):
        outcome = await ingestion.handle_notification("form.submitted", submission_payload(entryNum=4))
        await session.commit()

        assert outcome.action == "upserted"
        assert outcome.applied
        [event] = await all_events(session)
        assert event.external_event_id == "sub-1"
        assert event.resolved_email == "alice@example.com"
        assert event.location_label == "Manheim"
        assert event.source_id == MANHEIM_FORM
        assert event.entry_num == 4
        assert event.lifecycle == EventState.LIVE
        assert event.deleted_at is None
        assert sync_metrics.events_upserted.value == 1

    async def test_redelivery_is_idempotent(self, session, ingestion):
        for _ in range(3):
            await ingestion.handle_notification("form.submitted", submission_payload())
        await ingestion.handle_notification("form.updated", submission_payload(entryNum=9))
        await session.commit()

        events = await all_events(session)
        assert len(events) == 1
        assert events[0].entry_num == 9

    async def test_delete_then_recreate(self, session, ingestion):
        await ingestion.handle_notification("form.submitted", submission_payload())
        outcome = await ingestion.handle_notification("form.deleted", {"formSubmissionId": "sub-1"})
        await session.commit()

        assert outcome.action == "deleted"
        [event] = await all_events(session)
        assert event.state == EventState.DELETED.value
        assert event.deleted_at is not None

        await ingestion.handle_notification("form.updated", submission_payload())
        await session.commit()

        [event] = await all_events(session)
        assert event.state == EventState.LIVE.value
        assert event.deleted_at is None

    async def test_delete_unknown_is_noop(self, session, ingestion):
        outcome = await ingestion.handle_notification("form.deleted", {"formSubmissionId": "nope"})

        assert outcome.action == "not_found"
        assert not outcome.applied
        assert await all_events(session) == []
        assert sync_metrics.events_soft_deleted.value == 0

    async def test_double_delete_counts_once(self, session, ingestion):
        await ingestion.handle_notification("form.submitted", submission_payload())
        await ingestion.handle_notification("form.deleted", {"formSubmissionId": "sub-1"})
        second = await ingestion.handle_notification("form.deleted", {"formSubmissionId": "sub-1"})

        assert second.action == "not_found"
        assert sync_metrics.events_soft_deleted.value == 1

    async def test_unresolved_identity_is_stored_without_email(self, session, ingestion):
        await ingestion.handle_notification("form.submitted", submission_payload(user_id=999))
        await session.commit()

        [event] = await all_events(session)
        assert event.resolved_email is None
        assert event.submitting_external_user_id == "999"
        assert sync_metrics.identities_unresolved.value == 1

    async def test_identity_lookup_failure_is_not_fatal(self, session, platform, ingestion):
        platform.fail_on["get_user"] = 1

        outcome = await ingestion.handle_notification("form.submitted", submission_payload())

        assert outcome.action == "upserted"
        [event] = await all_events(session)
        assert event.resolved_email is None

    async def test_later_delivery_keeps_known_email(self, session, platform, ingestion, resolver):
        await ingestion.handle_notification("form.submitted", submission_payload())
        resolver._user_cache.clear()
        platform.fail_on["get_user"] = 2

        await ingestion.handle_notification("form.updated", submission_payload())
        await session.commit()

        [event] = await all_events(session)
        assert event.resolved_email == "alice@example.com"

    async def test_unknown_event_type_ignored(self, session, ingestion):
        outcome = await ingestion.handle_notification("form.archived", submission_payload())

        assert outcome.action == "ignored"
        assert await all_events(session) == []

    @pytest.mark.parametrize(
        "event_type, data",
        [
            ("", {"formSubmissionId": "x"}),
            ("form.submitted", None),
            ("form.submitted", {"formSubmissionId": "x"}),
            ("form.deleted", {}),
        ],
    )
    async def test_invalid_payloads(self, ingestion, event_type, data):
        with pytest.raises(ValidationError):
            await ingestion.handle_notification(event_type, data)


class TestLocationLabel:
    """Test location resolution order."""

    async def test_explicit_location_name_wins(self, ingestion):
        event = await ingestion.normalize_submission(
            submission_payload(formId=int(LANCASTER_FORM), locationName="manheim")
        )
        assert event.location_label == "Manheim"

    async def test_form_mapping(self, ingestion):
        event = await ingestion.normalize_submission(submission_payload(formId=int(LANCASTER_FORM)))
        assert event.location_label == "Lancaster"

    async def test_multiple_choice_answer_exact_match(self, ingestion):
        answers = [
            {"questionType": "openEnded", "value": "Manheim"},
            {"questionType": "multipleChoice", "selectedAnswers": [{"text": "Lancaster"}]},
        ]
        event = await ingestion.normalize_submission(
            submission_payload(formId=1234, answers=answers)
        )
        assert event.location_label == "Lancaster"

    async def test_no_substring_match(self, ingestion):
        answers = [{"questionType": "multipleChoice", "selectedAnswers": [{"text": "Manheim Annex"}]}]
        event = await ingestion.normalize_submission(
            submission_payload(formId=1234, answers=answers)
        )
        assert event.location_label is None


class TestPollFormSubmissions:
    """Test cursor-paged form reconciliation."""

    @pytest.fixture
    def seeded_forms(self, platform):
        for i in range(5):
            platform.add_submission(
                MANHEIM_FORM,
                f"sub-{i}",
                101 if i % 2 == 0 else 102,
                datetime(2025, 1, 2 + i, 12, tzinfo=timezone.utc),
            )
        platform.add_submission(
            MANHEIM_FORM, "sub-out", 101, datetime(2025, 2, 1, tzinfo=timezone.utc)
        )
        return platform

    def poller(self, session, platform, resolver, locations, **kwargs):
        return PollReconciliationService(session, platform, resolver, locations, **kwargs)

    async def test_pages_until_cursor_runs_out(self, session, seeded_forms, resolver, locations):
        service = self.poller(session, seeded_forms, resolver, locations, page_size=2)

        result = await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        assert result.success
        assert result.pages_fetched == 3
        assert result.events_upserted == 5
        events = await all_events(session)
        assert {e.external_event_id for e in events} == {f"sub-{i}" for i in range(5)}
        assert {e.resolved_email for e in events} == {"alice@example.com", "bob@example.com"}
        assert sync_metrics.poll_pages_fetched.value == 3

    async def test_poll_is_idempotent(self, session, seeded_forms, resolver, locations):
        service = self.poller(session, seeded_forms, resolver, locations, page_size=2)
        await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))
        await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        count = await session.scalar(select(func.count()).select_from(ProductionEvent))
        assert count == 5

    async def test_poll_revives_deleted_event(self, session, seeded_forms, resolver, locations):
        ingestion = EventIngestionService(session, resolver, locations)
        service = self.poller(session, seeded_forms, resolver, locations)
        await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))
        await ingestion.soft_delete("sub-0")
        await session.commit()

        await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        live = await session.scalar(
            select(func.count()).select_from(ProductionEvent).where(ProductionEvent.is_live())
        )
        assert live == 5

    async def test_page_cap_truncates(self, session, seeded_forms, resolver, locations):
        service = self.poller(session, seeded_forms, resolver, locations, page_size=2, max_pages=2)

        result = await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        assert result.truncated
        assert result.pages_fetched == 2
        assert result.events_upserted == 4

    async def test_cancel_before_first_page(self, session, seeded_forms, resolver, locations):
        service = self.poller(session, seeded_forms, resolver, locations, page_size=2)

        result = await service.poll_form_submissions(
            "Manheim", date(2025, 1, 1), date(2025, 1, 14), should_cancel=lambda: True
        )

        assert result.cancelled
        assert not result.success
        assert result.pages_fetched == 0
        assert await all_events(session) == []

    async def test_cancel_between_pages_keeps_applied_pages(
        self, session, seeded_forms, resolver, locations
    ):
        checks = {"n": 0}

        def should_cancel() -> bool:
            checks["n"] += 1
            return checks["n"] > 1

        service = self.poller(session, seeded_forms, resolver, locations, page_size=2)
        result = await service.poll_form_submissions(
            "Manheim", date(2025, 1, 1), date(2025, 1, 14), should_cancel=should_cancel
        )

        assert result.cancelled
        assert result.pages_fetched == 1
        assert len(await all_events(session)) == 2

    async def test_upstream_failure_keeps_committed_pages(
        self, session, seeded_forms, resolver, locations
    ):
        seeded_forms.fail_on["list_form_submissions"] = 2
        service = self.poller(session, seeded_forms, resolver, locations, page_size=2)

        result = await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        assert not result.success
        assert result.errors[0]["code"] == "UPSTREAM_UNAVAILABLE"
        assert result.errors[0]["status_code"] == 503
        assert result.pages_fetched == 1
        assert len(await all_events(session)) == 2
        assert sync_metrics.poll_failures.value == 1

    async def test_repeated_cursor_stops(self, session, seeded_forms, resolver, locations):
        async def stuck(form_id, *, start_date, end_date, offset, limit):
            page = await type(seeded_forms).list_form_submissions(
                seeded_forms, form_id, start_date=start_date, end_date=end_date, offset=0, limit=limit
            )
            return type(page)(items=page.items, next_offset=2)

        seeded_forms.list_form_submissions = stuck
        service = self.poller(session, seeded_forms, resolver, locations, page_size=2)

        result = await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        assert result.pages_fetched == 2
        assert not result.truncated
        assert len(await all_events(session)) == 2

    async def test_unresolved_users_counted(self, session, platform, resolver, locations):
        platform.add_submission(MANHEIM_FORM, "ghost", 555, datetime(2025, 1, 3, tzinfo=timezone.utc))
        service = self.poller(session, platform, resolver, locations)

        result = await service.poll_form_submissions("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        assert result.unresolved_identities == 1
        [event] = await all_events(session)
        assert event.resolved_email is None

    async def test_unmapped_location(self, session, platform, resolver, locations):
        service = self.poller(session, platform, resolver, locations)
        with pytest.raises(UnmappedLocationError):
            await service.poll_form_submissions("Harrisburg", date(2025, 1, 1), date(2025, 1, 14))

    async def test_inverted_window(self, session, platform, resolver, locations):
        service = self.poller(session, platform, resolver, locations)
        with pytest.raises(ValidationError):
            await service.poll_form_submissions("Manheim", date(2025, 1, 14), date(2025, 1, 1))


class TestPollTimeActivities:
    """Test shift and break reconciliation."""

    async def test_shifts_and_breaks_stored(self, session, platform, resolver, locations):
        platform.add_shift(MANHEIM_CLOCK, 101, JAN_6, JAN_6 + 8 * 3600, activity_id="s1")
        platform.add_break(MANHEIM_CLOCK, 101, JAN_6 + 4 * 3600, JAN_6 + 4 * 3600 + 1800, activity_id="b1")
        platform.add_shift(MANHEIM_CLOCK, 102, JAN_6, JAN_6 + 3600)
        service = PollReconciliationService(session, platform, resolver, locations)

        result = await service.poll_time_activities("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        assert result.success
        assert result.events_upserted == 3
        events = {e.external_event_id: e for e in await all_events(session)}
        assert set(events) == {
            f"shift:{MANHEIM_CLOCK}:s1",
            f"break:{MANHEIM_CLOCK}:b1",
            f"shift:{MANHEIM_CLOCK}:102:{JAN_6}",
        }
        shift = events[f"shift:{MANHEIM_CLOCK}:s1"]
        assert shift.event_kind == "shift"
        assert shift.interval_end_ts - shift.interval_start_ts == 8 * 3600
        assert shift.location_label == "Manheim"
        assert shift.resolved_email == "alice@example.com"

    async def test_time_poll_is_idempotent(self, session, platform, resolver, locations):
        platform.add_shift(MANHEIM_CLOCK, 101, JAN_6, JAN_6 + 3600)
        service = PollReconciliationService(session, platform, resolver, locations)

        await service.poll_time_activities("Manheim", date(2025, 1, 1), date(2025, 1, 14))
        await service.poll_time_activities("Manheim", date(2025, 1, 1), date(2025, 1, 14))

        assert len(await all_events(session)) == 1
