"""Error taxonomy for payroll sync operations.

Every failure is scoped to one sync cycle, one webhook delivery or one
submission attempt. The HTTP layer maps these to status codes.
"""

from __future__ import annotations


class PayrollSyncError(Exception):
    """Base class for all payroll sync errors."""

    code = "PAYROLL_SYNC_ERROR"


class ValidationError(PayrollSyncError):
    """Missing or malformed input. Reported immediately, never retried."""

    code = "VALIDATION_ERROR"


class UnmappedLocationError(ValidationError):
    """Raised when a location has no configured form or time clock."""

    code = "UNMAPPED_LOCATION"

    def __init__(self, location_label: str, known: list[str] | None = None):
        self.location_label = location_label
        self.known = known or []
        msg = f"No workforce source configured for location '{location_label}'"
        if self.known:
            msg += f" (configured: {', '.join(sorted(self.known))})"
        super().__init__(msg)


class UpstreamUnavailable(PayrollSyncError):
    """The workforce platform returned a non-2xx status or was unreachable."""

    code = "UPSTREAM_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class UnsupportedShape(UpstreamUnavailable):
    """Upstream JSON did not match the documented response schema."""

    code = "UNSUPPORTED_SHAPE"

    def __init__(self, endpoint: str, detail: str):
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"Unexpected response shape from {endpoint}: {detail}")


class IdentityUnresolved(PayrollSyncError):
    """An external user id could not be mapped to an email.

    Non-fatal: ingestion stores the event with no resolved email.
    """

    code = "IDENTITY_UNRESOLVED"

    def __init__(self, external_user_id: str, reason: str | None = None):
        self.external_user_id = external_user_id
        self.reason = reason
        msg = f"Could not resolve external user {external_user_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PersistenceError(PayrollSyncError):
    """Local store failure during a write."""

    code = "PERSISTENCE_ERROR"


class SubmissionNotFound(PayrollSyncError):
    """Raised when a payroll submission does not exist."""

    code = "SUBMISSION_NOT_FOUND"

    def __init__(self, submission_id: object):
        self.submission_id = submission_id
        super().__init__(f"Payroll submission {submission_id} not found")


class LocationNotFound(PayrollSyncError):
    """Raised when a submission names a location that does not exist."""

    code = "LOCATION_NOT_FOUND"

    def __init__(self, location_id: object):
        self.location_id = location_id
        super().__init__(f"Location {location_id} not found")
