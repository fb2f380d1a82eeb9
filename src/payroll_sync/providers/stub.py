"""In-memory workforce platform for local development and testing.

Replace with a real adapter (see connecteam.py) for production.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any

from payroll_sync.errors import UpstreamUnavailable
from payroll_sync.providers.base import (
    FormSubmissionRecord,
    PlatformUser,
    ShiftInterval,
    SubmissionPage,
    TimeActivityPage,
    UserTimeActivities,
)


@dataclass
class _ClockEntry:
    user_id: str
    shifts: list[ShiftInterval] = field(default_factory=list)
    breaks: list[ShiftInterval] = field(default_factory=list)


class StubWorkforcePlatform:
    """Stub platform backed by Python lists.

    Pagination mirrors the real platform: listing calls hand back a
    ``next_offset`` cursor until the data is exhausted. ``fail_on`` makes a
    named method raise UpstreamUnavailable on its Nth call (1-based).
    """

    provider_name = "stub"

    def __init__(self, time_activity_page_size: int = 50):
        self.users: list[PlatformUser] = []
        self.submissions: dict[str, list[FormSubmissionRecord]] = {}
        self.clocks: dict[str, dict[str, _ClockEntry]] = {}
        self.time_activity_page_size = time_activity_page_size
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_on: dict[str, int] = {}

    # Seeding helpers

    def add_user(self, external_user_id: str | int, email: str | None) -> PlatformUser:
        user = PlatformUser(external_user_id=str(external_user_id), email=email)
        self.users.append(user)
        return user

    def add_submission(
        self,
        form_id: str,
        submission_id: str,
        user_id: str | int,
        submitted_at: datetime.datetime,
        **extra: Any,
    ) -> FormSubmissionRecord:
        record = FormSubmissionRecord(
            submission_id=submission_id,
            form_id=str(form_id),
            submitting_user_id=str(user_id),
            submitted_at=submitted_at,
            entry_num=extra.get("entry_num"),
            location_name=extra.get("location_name"),
            answers=tuple(extra.get("answers", ())),
        )
        self.submissions.setdefault(str(form_id), []).append(record)
        return record

    def add_shift(
        self, time_clock_id: str, user_id: str | int, start_ts: int, end_ts: int, activity_id: str | None = None
    ) -> None:
        entry = self._clock_entry(time_clock_id, str(user_id))
        entry.shifts.append(ShiftInterval(start_ts, end_ts, activity_id))

    def add_break(
        self, time_clock_id: str, user_id: str | int, start_ts: int, end_ts: int, activity_id: str | None = None
    ) -> None:
        entry = self._clock_entry(time_clock_id, str(user_id))
        entry.breaks.append(ShiftInterval(start_ts, end_ts, activity_id))

    def _clock_entry(self, time_clock_id: str, user_id: str) -> _ClockEntry:
        users = self.clocks.setdefault(str(time_clock_id), {})
        return users.setdefault(user_id, _ClockEntry(user_id=user_id))

    def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))
        count = sum(1 for name, _ in self.calls if name == method)
        if self.fail_on.get(method) == count:
            raise UpstreamUnavailable(f"stub {method} failure", status_code=503, retryable=True)

    # WorkforcePlatform

    async def list_users(self, *, page: int, limit: int) -> list[PlatformUser]:
        self._record("list_users", page=page, limit=limit)
        start = (page - 1) * limit
        return self.users[start : start + limit]

    async def get_user(self, external_user_id: str) -> PlatformUser | None:
        self._record("get_user", external_user_id=external_user_id)
        for user in self.users:
            if user.external_user_id == str(external_user_id):
                return user
        return None

    async def list_form_submissions(
        self,
        form_id: str,
        *,
        start_date: datetime.date,
        end_date: datetime.date,
        offset: int | None,
        limit: int,
    ) -> SubmissionPage:
        self._record("list_form_submissions", form_id=form_id, offset=offset, limit=limit)
        matching = [
            s
            for s in self.submissions.get(str(form_id), [])
            if start_date <= s.submitted_at.date() <= end_date
        ]
        start = offset or 0
        items = matching[start : start + limit]
        next_offset = start + limit if start + limit < len(matching) else None
        return SubmissionPage(items=items, next_offset=next_offset)

    async def list_time_activities(
        self,
        time_clock_id: str,
        *,
        start_date: datetime.date,
        end_date: datetime.date,
        offset: int | None,
    ) -> TimeActivityPage:
        self._record("list_time_activities", time_clock_id=time_clock_id, offset=offset)
        lower = datetime.datetime.combine(start_date, datetime.time.min, tzinfo=datetime.timezone.utc)
        upper = datetime.datetime.combine(
            end_date + datetime.timedelta(days=1), datetime.time.min, tzinfo=datetime.timezone.utc
        )
        lo, hi = int(lower.timestamp()), int(upper.timestamp())

        users = []
        for entry in self.clocks.get(str(time_clock_id), {}).values():
            shifts = tuple(s for s in entry.shifts if lo <= s.start_ts < hi)
            breaks = tuple(b for b in entry.breaks if lo <= b.start_ts < hi)
            if shifts or breaks:
                users.append(
                    UserTimeActivities(external_user_id=entry.user_id, shifts=shifts, breaks=breaks)
                )

        start = offset or 0
        size = self.time_activity_page_size
        page = users[start : start + size]
        next_offset = start + size if start + size < len(users) else None
        return TimeActivityPage(users=page, next_offset=next_offset)
