"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ledgersync.api.routes import dashboard, sync as sync_routes, xero
from ledgersync.db.engine import get_engine


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Tables are created by get_engine(); honour a test override
        app.dependency_overrides.get(get_engine, get_engine)()
        yield

    app = FastAPI(
        title="ledgersync",
        description="Xero synchronization engine for the ERP",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(xero.router, prefix="/xero", tags=["xero"])
    app.include_router(dashboard.router, prefix="/sync", tags=["dashboard"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
