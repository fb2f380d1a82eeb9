"""Connecteam webhook endpoints."""

import logging

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError

from payroll_sync.api.dependencies import DbSession, LocationsDep, ResolverDep
from payroll_sync.api.schemas import (
    ErrorResponse,
    WebhookAck,
    WebhookNotification,
    WebhookStatus,
)
from payroll_sync.errors import PersistenceError, ValidationError
from payroll_sync.services.ingestion import EventIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/connecteam", tags=["webhooks"])


@router.get("/submissions", response_model=None)
async def verify_submissions_webhook(
    challenge: str | None = Query(default=None),
) -> PlainTextResponse | WebhookStatus:
    """Echo the platform's verification challenge."""
    if challenge is not None:
        return PlainTextResponse(challenge)
    return WebhookStatus(status="active", endpoint="connecteam-submissions")


@router.post(
    "/submissions",
    response_model=WebhookAck,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def receive_submission_event(
    payload: WebhookNotification,
    db: DbSession,
    resolver: ResolverDep,
    locations: LocationsDep,
) -> WebhookAck:
    """Apply a form.submitted, form.updated or form.deleted notification."""
    if not payload.event or payload.data is None:
        raise ValidationError("Invalid webhook payload: event and data are required")

    service = EventIngestionService(db, resolver, locations)
    try:
        outcome = await service.handle_notification(payload.event, payload.data)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Failed to apply {payload.event}: {e}") from e

    return WebhookAck(event=payload.event, action=outcome.action)
