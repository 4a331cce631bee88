"""Plex Wrapped — FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from plexwrapped.config import settings
from plexwrapped.api import admin, health, setup, stats, sync, users

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup: create tables, probe integrations
    from plexwrapped.database import async_session, engine, init_db
    from plexwrapped.services.integration_probe import probe_all

    await init_db()
    async with async_session() as db:
        app.state.integrations = await probe_all(db)
    yield
    # Shutdown: close DB pool
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Year-in-review statistics for a Plex server, built from Tautulli history",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# CORS — allow frontend dev server + production URL
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",     # Vite dev server
        settings.app_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Mount routers ────────────────────────────────────────────────
app.include_router(health.router,   prefix="/api/v1", tags=["system"])
app.include_router(setup.router,    prefix="/api/v1", tags=["setup"])
app.include_router(sync.router,     prefix="/api/v1", tags=["sync"])
app.include_router(stats.router,    prefix="/api/v1", tags=["stats"])
app.include_router(users.router,    prefix="/api/v1", tags=["users"])
app.include_router(admin.router,    prefix="/api/v1", tags=["admin"])


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
