"""API routes."""

from payroll_sync.api.routes.aggregation import router as aggregation_router
from payroll_sync.api.routes.health import router as health_router
from payroll_sync.api.routes.payroll import router as payroll_router
from payroll_sync.api.routes.sync import router as sync_router
from payroll_sync.api.routes.webhooks import router as webhooks_router

__all__ = [
    "aggregation_router",
    "health_router",
    "payroll_router",
    "sync_router",
    "webhooks_router",
]
