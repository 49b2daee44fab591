"""Calendar sync API -- FastAPI application factory.

The app factory creates a FastAPI instance with:
- Lifespan handler that opens the database pool and builds the sync engine
- Health endpoint at GET /api/health
- Google Calendar connection/selection/sync routes
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from questsync.api.deps import get_services, init_services, shutdown_services
from questsync.api.middleware import register_error_handlers
from questsync.api.routers.google_calendar import router as google_calendar_router
from questsync.config import SyncServiceConfig, load_config
from questsync.core.telemetry import init_telemetry

logger = logging.getLogger(__name__)


def create_app(
    config: SyncServiceConfig | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Loaded configuration. Defaults to ``load_config()`` at startup.
    cors_origins:
        Allowed CORS origins. Defaults to ``["http://localhost:3000"]``.
    """
    if cors_origins is None:
        cors_origins = ["http://localhost:3000"]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if get_services in app.dependency_overrides:
            # Services were injected up front (tests, embedding callers).
            yield
            return

        resolved = config or load_config()
        init_telemetry("questsync")
        services = await init_services(resolved)
        app.dependency_overrides[get_services] = lambda: services
        logger.info("Sync services initialized (database=%s)", resolved.database.name)
        try:
            yield
        finally:
            app.dependency_overrides.pop(get_services, None)
            await shutdown_services(services)

    app = FastAPI(
        title="questsync API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(google_calendar_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
