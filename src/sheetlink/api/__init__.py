"""API route aggregation.

All routers registered here get mounted in main.py. The Smartsheet
callback lives outside /api because its URL is registered with
Smartsheet and must stay stable.
"""

from fastapi import APIRouter

from sheetlink.api.health import router as health_router
from sheetlink.api.jobs import router as jobs_router
from sheetlink.api.sheets import router as sheets_router
from sheetlink.api.webhooks import router as webhooks_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(jobs_router, tags=["jobs"])
api_router.include_router(sheets_router, tags=["sheets"])

__all__ = ["api_router", "webhooks_router"]
