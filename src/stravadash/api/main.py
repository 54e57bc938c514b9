"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from stravadash.api.routes import auth as auth_routes, sync as sync_routes
from stravadash.scheduler.jobs import build_scheduler
from stravadash.strava.sync_service import SyncManager


def create_app(manager: Optional[SyncManager] = None) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        manager: pre-built SyncManager (tests); by default one is created
            from the environment settings on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sync_manager = manager or SyncManager()
        if sync_manager.scheduler is None:
            sync_manager.scheduler = build_scheduler()
        app.state.manager = sync_manager
        sync_manager.scheduler.start()
        yield
        sync_manager.scheduler.shutdown(wait=False)
        await sync_manager.aclose()

    app = FastAPI(
        title="Strava Dashboard Sync",
        description="Background Strava sync engine for dashboard widgets",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(auth_routes.router, prefix="/strava/auth", tags=["auth"])
    app.include_router(sync_routes.router, prefix="/strava/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
