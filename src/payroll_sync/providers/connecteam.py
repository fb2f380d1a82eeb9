"""Connecteam workforce platform adapter.

Documented response schemas (anything else raises UnsupportedShape):

    GET /users/v1/users?page=&limit=
        {"data": {"users": [{"userId": 1, "email": "a@x.com"}, ...]}}

    GET /users/v1/users/{userId}
        {"data": {"user": {"userId": 1, "email": "a@x.com"}}}

    GET /forms/v1/forms/{formId}/form-submissions?startDate=&endDate=&offset=&limit=
        {"data": {"formSubmissions": [{"formSubmissionId": "...", "formId": 1,
                  "submittingUserId": 1, "submissionTimestamp": 1736150400,
                  "entryNum": 7, "answers": [...]}]},
         "paging": {"offset": 100}}

    GET /time-clock/v1/time-clocks/{id}/time-activities?startDate=&endDate=&offset=
        {"data": {"timeActivitiesByUsers": [{"userId": 1,
                  "shifts": [{"id": "s1", "start": {"timestamp": 1736150400},
                              "end": {"timestamp": 1736179200}}],
                  "manualBreaks": [{"id": "b1", "start": {...}, "end": {...}}]}]},
         "paging": {"offset": 100}}

A missing ``paging.offset`` means there are no more pages.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any

import httpx

from payroll_sync.errors import UnsupportedShape, UpstreamUnavailable, ValidationError
from payroll_sync.metrics import sync_metrics
from payroll_sync.providers.base import (
    FormSubmissionRecord,
    PlatformUser,
    ShiftInterval,
    SubmissionPage,
    TimeActivityPage,
    UserTimeActivities,
)

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class ConnecteamProvider:
    """Connecteam REST adapter over httpx.

    Every request carries the X-API-KEY header, a bounded timeout, and is
    retried with exponential backoff on network errors, 429 and 5xx.
    4xx responses are permanent and never retried.
    """

    provider_name = "connecteam"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.connecteam.com",
        timeout_seconds: float = 30.0,
        retry_count: int = 3,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("Connecteam API key is required")
        self.retry_count = retry_count
        self.backoff_seconds = backoff_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "X-API-KEY": api_key,
                "Accept": "application/json",
            },
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> ConnecteamProvider:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # WorkforcePlatform
    # ------------------------------------------------------------------

    async def list_users(self, *, page: int, limit: int) -> list[PlatformUser]:
        endpoint = "/users/v1/users"
        body = await self._get_json(endpoint, params={"page": page, "limit": limit})
        users = _require_list(_require_dict(body, "data", endpoint), "users", endpoint)
        return [_parse_user(item, endpoint) for item in users]

    async def get_user(self, external_user_id: str) -> PlatformUser | None:
        endpoint = f"/users/v1/users/{external_user_id}"
        try:
            body = await self._get_json(endpoint)
        except UpstreamUnavailable as e:
            if e.status_code == 404:
                return None
            raise
        user = _require_dict(_require_dict(body, "data", endpoint), "user", endpoint)
        return _parse_user(user, endpoint)

    async def list_form_submissions(
        self,
        form_id: str,
        *,
        start_date: datetime.date,
        end_date: datetime.date,
        offset: int | None,
        limit: int,
    ) -> SubmissionPage:
        endpoint = f"/forms/v1/forms/{form_id}/form-submissions"
        params: dict[str, Any] = {
            "startDate": start_date.isoformat(),
            "endDate": end_date.isoformat(),
            "limit": limit,
        }
        if offset is not None:
            params["offset"] = offset
        body = await self._get_json(endpoint, params=params)
        raw_items = _require_list(_require_dict(body, "data", endpoint), "formSubmissions", endpoint)

        items = []
        for raw in raw_items:
            try:
                items.append(FormSubmissionRecord.from_payload(raw))
            except ValidationError as e:
                raise UnsupportedShape(endpoint, str(e)) from e
        return SubmissionPage(items=items, next_offset=_next_offset(body, endpoint))

    async def list_time_activities(
        self,
        time_clock_id: str,
        *,
        start_date: datetime.date,
        end_date: datetime.date,
        offset: int | None,
    ) -> TimeActivityPage:
        endpoint = f"/time-clock/v1/time-clocks/{time_clock_id}/time-activities"
        params: dict[str, Any] = {
            "startDate": start_date.isoformat(),
            "endDate": end_date.isoformat(),
        }
        if offset is not None:
            params["offset"] = offset
        body = await self._get_json(endpoint, params=params)
        by_users = _require_list(
            _require_dict(body, "data", endpoint), "timeActivitiesByUsers", endpoint
        )
        return TimeActivityPage(
            users=[_parse_user_activities(item, endpoint) for item in by_users],
            next_offset=_next_offset(body, endpoint),
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._request_with_retry("GET", endpoint, params=params)
        if not response.is_success:
            logger.error(
                "Connecteam %s failed with status %s: %s",
                endpoint,
                response.status_code,
                response.text[:300],
            )
            raise UpstreamUnavailable(
                f"Connecteam {endpoint} returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code in RETRY_STATUS_CODES,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise UnsupportedShape(endpoint, "response is not JSON") from e
        if not isinstance(body, dict):
            raise UnsupportedShape(endpoint, "top-level JSON must be an object")
        return body

    async def _request_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Execute an HTTP request with bounded retry and backoff."""
        attempts = self.retry_count + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                if attempt >= attempts:
                    raise UpstreamUnavailable(
                        f"Connecteam {url} unreachable: {e}",
                        retryable=True,
                    ) from e
                await self._backoff(attempt, url, reason=str(e))
                continue

            if response.status_code in RETRY_STATUS_CODES and attempt < attempts:
                await self._backoff(attempt, url, reason=f"status {response.status_code}")
                continue
            return response
        raise RuntimeError("Connecteam retry loop exhausted")

    async def _backoff(self, attempt: int, url: str, reason: str) -> None:
        delay = self.backoff_seconds * (2 ** (attempt - 1))
        sync_metrics.upstream_retries.inc()
        logger.warning(
            "Retrying Connecteam %s (attempt %d, %s) in %.2fs", url, attempt, reason, delay
        )
        if delay > 0:
            await asyncio.sleep(delay)


def _require_dict(body: Any, key: str, endpoint: str) -> dict[str, Any]:
    value = body.get(key) if isinstance(body, dict) else None
    if not isinstance(value, dict):
        raise UnsupportedShape(endpoint, f"expected object at '{key}'")
    return value


def _require_list(body: dict[str, Any], key: str, endpoint: str) -> list[Any]:
    value = body.get(key)
    if not isinstance(value, list):
        raise UnsupportedShape(endpoint, f"expected list at 'data.{key}'")
    return value


def _next_offset(body: dict[str, Any], endpoint: str) -> int | None:
    paging = body.get("paging")
    if paging is None:
        return None
    if not isinstance(paging, dict):
        raise UnsupportedShape(endpoint, "expected object at 'paging'")
    offset = paging.get("offset")
    if offset is None:
        return None
    try:
        return int(offset)
    except (TypeError, ValueError) as e:
        raise UnsupportedShape(endpoint, f"invalid paging.offset {offset!r}") from e


def _parse_user(item: Any, endpoint: str) -> PlatformUser:
    if not isinstance(item, dict) or item.get("userId") is None:
        raise UnsupportedShape(endpoint, "user entries need a userId")
    email = item.get("email")
    return PlatformUser(
        external_user_id=str(item["userId"]),
        email=str(email) if email else None,
    )


def _parse_timestamp(point: Any, endpoint: str) -> int | None:
    if point is None:
        return None
    if not isinstance(point, dict) or point.get("timestamp") is None:
        raise UnsupportedShape(endpoint, "interval bounds need a timestamp")
    try:
        return int(point["timestamp"])
    except (TypeError, ValueError) as e:
        raise UnsupportedShape(endpoint, f"invalid timestamp {point['timestamp']!r}") from e


def _parse_intervals(raw: Any, endpoint: str) -> tuple[list[ShiftInterval], int]:
    if raw is None:
        return [], 0
    if not isinstance(raw, list):
        raise UnsupportedShape(endpoint, "shifts and manualBreaks must be lists")
    intervals: list[ShiftInterval] = []
    open_count = 0
    for item in raw:
        if not isinstance(item, dict):
            raise UnsupportedShape(endpoint, "interval entries must be objects")
        start = _parse_timestamp(item.get("start"), endpoint)
        end = _parse_timestamp(item.get("end"), endpoint)
        if start is None:
            raise UnsupportedShape(endpoint, "interval is missing its start")
        if end is None:
            open_count += 1
            continue
        try:
            intervals.append(
                ShiftInterval(
                    start_ts=start,
                    end_ts=end,
                    activity_id=str(item["id"]) if item.get("id") is not None else None,
                )
            )
        except ValidationError as e:
            raise UnsupportedShape(endpoint, str(e)) from e
    return intervals, open_count


def _parse_user_activities(item: Any, endpoint: str) -> UserTimeActivities:
    if not isinstance(item, dict) or item.get("userId") is None:
        raise UnsupportedShape(endpoint, "timeActivitiesByUsers entries need a userId")
    shifts, open_shifts = _parse_intervals(item.get("shifts"), endpoint)
    breaks, _ = _parse_intervals(item.get("manualBreaks"), endpoint)
    return UserTimeActivities(
        external_user_id=str(item["userId"]),
        shifts=tuple(shifts),
        breaks=tuple(breaks),
        open_shifts=open_shifts,
    )
