"""Base protocol and types for workforce platform providers.

The ingestion, identity and aggregation services depend only on the
WorkforcePlatform protocol. Each platform has its own adapter.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from payroll_sync.errors import ValidationError

SECONDS_PER_HOUR = Decimal(3600)


@dataclass(frozen=True)
class PlatformUser:
    """A user record from the platform's user directory."""

    external_user_id: str
    email: str | None

    @property
    def normalized_email(self) -> str | None:
        return self.email.strip().lower() if self.email else None


@dataclass(frozen=True)
class FormSubmissionRecord:
    """A single form submission (one production unit)."""

    submission_id: str
    form_id: str
    submitting_user_id: str
    submitted_at: datetime.datetime
    entry_num: int | None = None
    location_name: str | None = None
    answers: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> FormSubmissionRecord:
        """Parse the documented submission shape.

        Required: ``formSubmissionId``, ``formId``, ``submittingUserId``,
        ``submissionTimestamp`` (seconds since epoch). Optional:
        ``entryNum``, ``locationName``, ``answers``.

        Raises:
            ValidationError: If a required field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ValidationError("submission payload must be an object")
        missing = [
            key
            for key in ("formSubmissionId", "formId", "submittingUserId", "submissionTimestamp")
            if data.get(key) in (None, "")
        ]
        if missing:
            raise ValidationError(f"submission payload missing {', '.join(missing)}")
        try:
            submitted_at = datetime.datetime.fromtimestamp(
                int(data["submissionTimestamp"]), tz=datetime.timezone.utc
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise ValidationError(
                f"invalid submissionTimestamp {data['submissionTimestamp']!r}"
            ) from e
        answers = data.get("answers") or []
        if not isinstance(answers, list):
            raise ValidationError("answers must be a list")
        entry_num = data.get("entryNum")
        return cls(
            submission_id=str(data["formSubmissionId"]),
            form_id=str(data["formId"]),
            submitting_user_id=str(data["submittingUserId"]),
            submitted_at=submitted_at,
            entry_num=int(entry_num) if entry_num is not None else None,
            location_name=data.get("locationName") or None,
            answers=tuple(a for a in answers if isinstance(a, dict)),
        )


@dataclass(frozen=True)
class ShiftInterval:
    """A clocked interval in seconds since epoch. Transient."""

    start_ts: int
    end_ts: int
    activity_id: str | None = None

    def __post_init__(self) -> None:
        if self.end_ts < self.start_ts:
            raise ValidationError(
                f"interval ends before it starts ({self.start_ts} > {self.end_ts})"
            )

    @property
    def hours(self) -> Decimal:
        return Decimal(self.end_ts - self.start_ts) / SECONDS_PER_HOUR


@dataclass(frozen=True)
class UserTimeActivities:
    """Closed shifts and manual breaks for one user in a window."""

    external_user_id: str
    shifts: tuple[ShiftInterval, ...] = ()
    breaks: tuple[ShiftInterval, ...] = ()
    open_shifts: int = 0  # Still clocked in; excluded from totals


@dataclass(frozen=True)
class SubmissionPage:
    """One page of form submissions plus the platform's next cursor."""

    items: list[FormSubmissionRecord] = field(default_factory=list)
    next_offset: int | None = None


@dataclass(frozen=True)
class TimeActivityPage:
    """One page of time activities plus the platform's next cursor."""

    users: list[UserTimeActivities] = field(default_factory=list)
    next_offset: int | None = None


class WorkforcePlatform(Protocol):
    """Protocol for workforce platform adapters.

    All methods raise UpstreamUnavailable on non-success responses and
    UnsupportedShape when a response does not match the documented schema.
    """

    provider_name: str

    async def list_users(self, *, page: int, limit: int) -> list[PlatformUser]:
        """Fetch one page (1-based) of the user directory."""
        ...

    async def get_user(self, external_user_id: str) -> PlatformUser | None:
        """Fetch a single user, or None if the platform does not know it."""
        ...

    async def list_form_submissions(
        self,
        form_id: str,
        *,
        start_date: datetime.date,
        end_date: datetime.date,
        offset: int | None,
        limit: int,
    ) -> SubmissionPage:
        """Fetch one page of submissions for a form in a date window."""
        ...

    async def list_time_activities(
        self,
        time_clock_id: str,
        *,
        start_date: datetime.date,
        end_date: datetime.date,
        offset: int | None,
    ) -> TimeActivityPage:
        """Fetch one page of shifts and breaks for a time clock."""
        ...
