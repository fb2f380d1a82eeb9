"""Per-employee hours and production totals."""

from fastapi import APIRouter

from payroll_sync.api.dependencies import (
    DbSession,
    LocationsDep,
    PlatformDep,
    SettingsDep,
    require_platform,
)
from payroll_sync.api.schemas import (
    AggregationRequest,
    ErrorResponse,
    HoursResponse,
    PeriodWindow,
    ProductionResponse,
)
from payroll_sync.services.aggregation import (
    AggregationResult,
    AggregationService,
    DirectAggregationService,
)
from payroll_sync.services.identity_resolver import IdentityResolver

router = APIRouter(prefix="/connecteam", tags=["aggregation"])

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}}


async def _aggregate(
    kind: str,
    payload: AggregationRequest,
    db: DbSession,
    platform: PlatformDep,
    locations: LocationsDep,
    settings: SettingsDep,
) -> AggregationResult:
    # Fail fast on an unmapped location for either source
    location = locations.get(payload.location_name)
    if payload.source == "direct":
        live = require_platform(platform)
        resolver = IdentityResolver(
            live,
            page_size=settings.user_page_size,
            max_pages=settings.user_page_cap,
        )
        service = DirectAggregationService(
            live,
            resolver,
            locations,
            page_size=settings.poll_page_size,
            max_pages=settings.poll_page_cap,
        )
    else:
        service = AggregationService(db)

    if kind == "hours":
        return await service.hours_worked(
            payload.period_start, payload.period_end, location.label, payload.employee_emails
        )
    return await service.production_counts(
        payload.period_start, payload.period_end, location.label, payload.employee_emails
    )


@router.post("/hours", response_model=HoursResponse, responses=ERROR_RESPONSES)
async def hours_worked(
    payload: AggregationRequest,
    db: DbSession,
    platform: PlatformDep,
    locations: LocationsDep,
    settings: SettingsDep,
) -> HoursResponse:
    """Hours per employee email for a period (shifts minus manual breaks)."""
    result = await _aggregate("hours", payload, db, platform, locations, settings)
    return HoursResponse(
        hours={email: float(value) for email, value in result.totals.items()},
        period=PeriodWindow(start=payload.period_start, end=payload.period_end),
        unmatched=result.unmatched_events,
        truncated=result.truncated,
    )


@router.post("/production", response_model=ProductionResponse, responses=ERROR_RESPONSES)
async def production_counts(
    payload: AggregationRequest,
    db: DbSession,
    platform: PlatformDep,
    locations: LocationsDep,
    settings: SettingsDep,
) -> ProductionResponse:
    """Form submissions per employee email for a period."""
    result = await _aggregate("production", payload, db, platform, locations, settings)
    return ProductionResponse(
        units={email: int(value) for email, value in result.totals.items()},
        period=PeriodWindow(start=payload.period_start, end=payload.period_end),
        unmatched=result.unmatched_events,
        truncated=result.truncated,
    )
