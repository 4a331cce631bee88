"""Wrapped statistics for one user."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.api.deps import Caller, ensure_access, get_caller, get_settings
from plexwrapped.config import Settings
from plexwrapped.database import get_db, get_session_factory
from plexwrapped.services.integrations import load_catalog
from plexwrapped.services.stats import StatsService
from plexwrapped.services.stats_cache import StatsCacheStore

router = APIRouter()


def build_stats_service(session_factory, catalog, settings: Settings) -> StatsService:
    return StatsService(session_factory, StatsCacheStore(session_factory), catalog=catalog, settings=settings)


@router.get("/stats")
async def get_stats(
    user_id: int = Query(..., alias="userId"),
    year: Optional[int] = Query(None, ge=1900, le=2100),
    from_day: Optional[date] = Query(None, alias="from"),
    to_day: Optional[date] = Query(None, alias="to"),
    refresh: bool = False,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Cached document unless ``refresh``; the calendar year by default."""
    ensure_access(caller, user_id)
    if from_day and to_day and from_day >= to_day:
        raise HTTPException(status_code=400, detail="'from' must be before 'to'")

    service = build_stats_service(session_factory, await load_catalog(db), settings)
    document = await service.get_stats(
        user_id, year=year, start=from_day, end=to_day, force_refresh=refresh,
    )
    return document.model_dump(mode="json", by_alias=True)
