"""User directory endpoints (admin)."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.api.admin import history_source
from plexwrapped.api.deps import get_settings, require_admin
from plexwrapped.api.stats import build_stats_service
from plexwrapped.api.sync import STREAM_HEADERS
from plexwrapped.config import Settings
from plexwrapped.database import get_db, get_session_factory
from plexwrapped.dates import local_today, zone
from plexwrapped.models.tables import User
from plexwrapped.services.history_sync import HistorySyncService
from plexwrapped.services.integrations import load_catalog
from plexwrapped.services.progress import DONE, stream_job
from plexwrapped.services.stats_cache import StatsCacheStore
from plexwrapped.services.users import delete_user, list_users_with_counts, refresh_user, sync_users

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/admin/users")
async def list_users(db: AsyncSession = Depends(get_db)):
    """All known users with history size and last stats generation."""
    return {"users": await list_users_with_counts(db)}


@router.post("/admin/users/sync")
async def import_users(
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Pull the user list from Tautulli."""
    source = await history_source(db, settings)
    return {"synced_users": await sync_users(session_factory, source)}


@router.get("/admin/users/{user_id}/refresh")
async def refresh(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Force-resync one user's current year and regenerate their stats, streamed."""
    if await db.get(User, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    source = await history_source(db, settings)

    cache = StatsCacheStore(session_factory)
    sync = HistorySyncService(session_factory, source, on_synced=cache.invalidate, settings=settings)
    stats = build_stats_service(session_factory, await load_catalog(db), settings)
    today = local_today(zone(settings.timezone))

    async def job(sink, cancel):
        return await refresh_user(user_id, sync, stats, today, on_progress=sink, cancel=cancel)

    return StreamingResponse(
        stream_job(job, on_done=lambda document: f"{DONE} Stats generated for user {user_id}."),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


@router.delete("/admin/users/{user_id}")
async def remove_user(user_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a user together with their history and cached stats."""
    if not await delete_user(db, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return {"deleted": user_id}
