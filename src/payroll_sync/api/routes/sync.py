"""On-demand poll reconciliation."""

from fastapi import APIRouter

from payroll_sync.api.dependencies import (
    DbSession,
    LocationsDep,
    PlatformDep,
    ResolverDep,
    SettingsDep,
    require_platform,
)
from payroll_sync.api.schemas import ErrorResponse, PollRequest, PollResponse
from payroll_sync.services.ingestion import PollReconciliationService

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post(
    "/poll",
    response_model=PollResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def run_poll(
    payload: PollRequest,
    db: DbSession,
    platform: PlatformDep,
    resolver: ResolverDep,
    locations: LocationsDep,
    settings: SettingsDep,
) -> PollResponse:
    """Run one poll cycle. Upstream failures are reported in the body."""
    service = PollReconciliationService(
        db,
        require_platform(platform),
        resolver,
        locations,
        page_size=settings.poll_page_size,
        max_pages=settings.poll_page_cap,
    )
    if payload.kind == "time":
        result = await service.poll_time_activities(
            payload.location_name, payload.start_date, payload.end_date
        )
    else:
        result = await service.poll_form_submissions(
            payload.location_name, payload.start_date, payload.end_date
        )
    return PollResponse.model_validate(result)
