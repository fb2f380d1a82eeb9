"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_sync.api.routes import (
    aggregation_router,
    health_router,
    payroll_router,
    sync_router,
    webhooks_router,
)
from payroll_sync.config import configure_logging, get_settings
from payroll_sync.database import dispose_db, init_db
from payroll_sync.errors import (
    LocationNotFound,
    PayrollSyncError,
    PersistenceError,
    SubmissionNotFound,
    UpstreamUnavailable,
    ValidationError,
)
from payroll_sync.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)

# Most specific class first
ERROR_STATUS: list[tuple[type[PayrollSyncError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (LocationNotFound, status.HTTP_404_NOT_FOUND),
    (SubmissionNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (UpstreamUnavailable, status.HTTP_502_BAD_GATEWAY),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(exc: PayrollSyncError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup: settings (including the location map) must parse or we stop here
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()
    logger.info("Configured locations: %s", ", ".join(settings.locations.labels) or "none")
    yield
    # Shutdown
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Payroll Sync API",
        description="Workforce platform sync and biweekly payroll submission",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollSyncError)
    async def payroll_sync_exception_handler(
        request: Request, exc: PayrollSyncError
    ) -> JSONResponse:
        """Map the error taxonomy to HTTP responses."""
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "error": str(exc), "code": exc.code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies are reported as 400, like missing fields."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": "Invalid request",
                "code": ValidationError.code,
                "detail": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(webhooks_router, prefix="/api")
    app.include_router(payroll_router, prefix="/api")
    app.include_router(aggregation_router, prefix="/api")
    app.include_router(sync_router, prefix="/api")

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    return [
        {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


# Default app instance for uvicorn
app = create_app()
