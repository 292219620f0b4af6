"""FastAPI application factory.

Learn: create_app() returns a configured FastAPI instance. It builds the
Services container up front (so tests can reach into it without running
the lifespan) and the lifespan only starts and stops the background
parts: job workers, the cleanup schedule, open WebSockets, pools.

Run with uvicorn's factory mode:
    uvicorn sheetlink.main:create_app --factory
or via the CLI:
    sheetlink serve
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sheetlink import __version__
from sheetlink.api import api_router, webhooks_router
from sheetlink.config import Settings
from sheetlink.logging_config import configure_logging
from sheetlink.middleware.request_id import RequestIdMiddleware
from sheetlink.realtime.websocket import router as ws_router
from sheetlink.services.container import Services

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or Settings()
    configure_logging(settings)
    services = services or Services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Anything before `yield` runs at startup, after `yield` at shutdown.

        uvicorn has already stopped accepting connections and drained
        in-flight requests by the time the shutdown half runs.
        """
        logger.info(
            "sheetlink.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
            job_store=type(services.jobs.store).__name__,
        )
        await services.start()

        yield

        logger.info("sheetlink.shutdown")
        await services.stop()

    app = FastAPI(
        title="SheetLink",
        description="Realtime Smartsheet relay — webhooks, cache invalidation, WebSocket fan-out and background jobs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    app.include_router(webhooks_router, tags=["webhooks"])
    app.include_router(ws_router)

    return app
