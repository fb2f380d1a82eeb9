"""Locally persisted workforce platform events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from payroll_sync.models.base import Base, TimestampMixin


class EventKind(str, Enum):
    """What a production event represents."""

    FORM_SUBMISSION = "form_submission"
    SHIFT = "shift"
    BREAK = "break"


class EventState(str, Enum):
    """Lifecycle tag. Rows are never hard-deleted."""

    LIVE = "live"
    DELETED = "deleted"


class ProductionEvent(Base, TimestampMixin):
    """One externally reported unit of work, keyed by the platform's id.

    Upserts on ``external_event_id`` are the only synchronization between
    concurrent webhook deliveries and poll cycles.
    """

    __tablename__ = "production_event"

    production_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    external_event_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    event_kind: Mapped[str] = mapped_column(
        String, nullable=False, default=EventKind.FORM_SUBMISSION.value
    )
    source_id: Mapped[str] = mapped_column(String, nullable=False)
    submitting_external_user_id: Mapped[str] = mapped_column(String, nullable=False)
    resolved_email: Mapped[str | None] = mapped_column(String, nullable=True)
    location_label: Mapped[str | None] = mapped_column(String, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    interval_start_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    interval_end_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    entry_num: Mapped[int | None] = mapped_column(Integer, nullable=True)
    state: Mapped[str] = mapped_column(String, nullable=False, default=EventState.LIVE.value)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "event_kind IN ('form_submission', 'shift', 'break')",
            name="production_event_kind_check",
        ),
        CheckConstraint(
            "(state = 'live' AND deleted_at IS NULL)"
            " OR (state = 'deleted' AND deleted_at IS NOT NULL)",
            name="production_event_state_check",
        ),
        CheckConstraint(
            "interval_end_ts IS NULL OR interval_start_ts IS NULL"
            " OR interval_end_ts >= interval_start_ts",
            name="production_event_interval_check",
        ),
        Index("ix_production_event_window", "source_id", "event_kind", "occurred_at"),
    )

    @classmethod
    def is_live(cls):
        """SQL expression selecting live rows."""
        return cls.state == EventState.LIVE.value

    @property
    def lifecycle(self) -> EventState:
        return EventState(self.state)
