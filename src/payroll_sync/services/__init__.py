"""Payroll sync services."""

from payroll_sync.services.aggregation import (
    AggregationResult,
    AggregationService,
    DirectAggregationService,
)
from payroll_sync.services.identity_resolver import (
    IdentityDirectory,
    IdentityResolution,
    IdentityResolver,
)
from payroll_sync.services.ingestion import (
    EventIngestionService,
    NormalizedEvent,
    NotificationOutcome,
    PollReconciliationService,
    PollResult,
)
from payroll_sync.services.state_machine import (
    InvalidTransitionError,
    SubmissionStateMachine,
    SubmissionStatus,
)
from payroll_sync.services.submission_service import SubmissionService

__all__ = [
    "AggregationResult",
    "AggregationService",
    "DirectAggregationService",
    "IdentityDirectory",
    "IdentityResolution",
    "IdentityResolver",
    "EventIngestionService",
    "NormalizedEvent",
    "NotificationOutcome",
    "PollReconciliationService",
    "PollResult",
    "InvalidTransitionError",
    "SubmissionStateMachine",
    "SubmissionStatus",
    "SubmissionService",
]
