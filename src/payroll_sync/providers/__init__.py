"""Workforce platform adapters."""

from payroll_sync.providers.base import (
    FormSubmissionRecord,
    PlatformUser,
    ShiftInterval,
    SubmissionPage,
    TimeActivityPage,
    UserTimeActivities,
    WorkforcePlatform,
)
from payroll_sync.providers.connecteam import ConnecteamProvider
from payroll_sync.providers.stub import StubWorkforcePlatform

__all__ = [
    "FormSubmissionRecord",
    "PlatformUser",
    "ShiftInterval",
    "SubmissionPage",
    "TimeActivityPage",
    "UserTimeActivities",
    "WorkforcePlatform",
    "ConnecteamProvider",
    "StubWorkforcePlatform",
]
