"""FastAPI application for the usage bridge."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from usage_bridge.bridge import BridgeScheduler, build_context, stats_router
from usage_bridge.config import Settings, get_settings
from usage_bridge.db import close_database, init_database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the bridge on startup and stop it on shutdown."""
    settings: Settings = app.state.settings

    if settings.store_backend == "database":
        await init_database()

    context = build_context(settings)
    scheduler = BridgeScheduler(context)
    app.state.bridge_context = context
    app.state.bridge_scheduler = scheduler

    await scheduler.start()

    yield

    await scheduler.stop()
    await context.close()
    if settings.store_backend == "database":
        await close_database()


def create_app(settings: Settings | None = None, run_bridge: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings (uses default if not provided).
        run_bridge: Start the bridge with the application. Tests that
            provide their own context on ``app.state`` pass False.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=f"Usage bridge ({settings.bridge_type})",
        description="Relays Cloud Foundry usage events to the usage collector",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan if run_bridge else None,
    )
    app.state.settings = settings

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        scheduler = getattr(app.state, "bridge_scheduler", None)
        return {
            "status": "healthy",
            "bridge": settings.bridge_type,
            "state": scheduler.state.value if scheduler else None,
        }

    # Provides: GET /v1/stats
    app.include_router(stats_router)

    return app
