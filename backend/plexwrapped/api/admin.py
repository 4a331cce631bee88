"""Admin jobs: global sync, enrichment, bulk stats regeneration and the full purge.

The three jobs stream progress lines and stop when the client disconnects.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.api.deps import get_settings, require_admin
from plexwrapped.api.stats import build_stats_service
from plexwrapped.api.sync import STREAM_HEADERS
from plexwrapped.config import Settings
from plexwrapped.database import get_db, get_session_factory
from plexwrapped.dates import local_today, zone
from plexwrapped.errors import ConfigurationMissing
from plexwrapped.services.enrichment import MetadataEnrichmentService
from plexwrapped.services.history_sync import HistorySyncService, SyncResult
from plexwrapped.services.integrations import load_catalog, load_history_source, load_ratings
from plexwrapped.services.progress import DONE, INFO, stream_job
from plexwrapped.services.stats_cache import StatsCacheStore
from plexwrapped.services.users import purge_system

router = APIRouter(dependencies=[Depends(require_admin)])


def _stream(job, on_done=None) -> StreamingResponse:
    return StreamingResponse(
        stream_job(job, on_done=on_done),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


async def history_source(db: AsyncSession, settings: Settings):
    try:
        return await load_history_source(db, settings)
    except ConfigurationMissing as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/admin/sync")
async def global_sync(
    force: bool = False,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Sync every active user from Jan 1 of the current year through today."""
    source = await history_source(db, settings)
    today = local_today(zone(settings.timezone))
    start, end = date(today.year, 1, 1), today

    service = HistorySyncService(
        session_factory, source,
        on_synced=StatsCacheStore(session_factory).invalidate,
        settings=settings,
    )

    async def job(sink, cancel):
        await sink(f"{INFO} Starting global sync from {start.isoformat()} to {end.isoformat()}...")
        return await service.sync_global_history(start, end, on_progress=sink, cancel=cancel, force=force)

    def done(result: SyncResult) -> str:
        return (
            f"{INFO} Sync Complete. Synced {result.days_imported} days, "
            f"{result.total_events_imported} entries."
        )

    return _stream(job, on_done=done)


@router.get("/admin/enrich")
async def enrich(
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Resolve external ids and unified scores for unscored titles."""
    source = await history_source(db, settings)
    service = MetadataEnrichmentService(
        session_factory, source,
        catalog=await load_catalog(db),
        ratings=await load_ratings(db),
        settings=settings,
    )

    async def job(sink, cancel):
        return await service.enrich_metadata(on_progress=sink)

    return _stream(job)


@router.get("/admin/generate")
async def generate(
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Recompute every user's statistics document."""
    service = build_stats_service(session_factory, await load_catalog(db), settings)

    async def job(sink, cancel):
        return await service.generate_all_stats(on_progress=sink)

    return _stream(job, on_done=lambda generated: f"{DONE} Generated stats for {generated} users.")


@router.delete("/admin/data")
async def purge(db: AsyncSession = Depends(get_db)):
    """Remove all users, history, enrichment, cached stats and the Tautulli connection."""
    await purge_system(db)
    return {"purged": True}
