"""Per-user history sync, streamed as progress lines."""

import json
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.api.deps import Caller, ensure_access, get_caller, get_settings
from plexwrapped.config import Settings
from plexwrapped.database import get_db, get_session_factory
from plexwrapped.dates import local_today, zone
from plexwrapped.errors import ConfigurationMissing
from plexwrapped.services.history_sync import HistorySyncService, SyncResult
from plexwrapped.services.integrations import load_history_source
from plexwrapped.services.progress import SYNC_COMPLETE, stream_job
from plexwrapped.services.stats_cache import StatsCacheStore

router = APIRouter()

STREAM_HEADERS = {"X-Content-Type-Options": "nosniff"}


class SyncRequest(BaseModel):
    user_id: int = Field(alias="userId")
    from_day: Optional[date] = Field(None, alias="from")
    to_day: Optional[date] = Field(None, alias="to")
    force: bool = False

    model_config = {"populate_by_name": True}


def _complete_line(result: SyncResult) -> str:
    return SYNC_COMPLETE + json.dumps(result.to_dict())


@router.post("/sync")
async def sync_user(
    body: SyncRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Sync one user's history; defaults to Jan 1 of this year through today."""
    ensure_access(caller, body.user_id)

    try:
        source = await load_history_source(db, settings)
    except ConfigurationMissing as e:
        raise HTTPException(status_code=409, detail=str(e))

    today = local_today(zone(settings.timezone))
    from_day = body.from_day or date(today.year, 1, 1)
    to_day = body.to_day or today
    if from_day > to_day:
        raise HTTPException(status_code=400, detail="'from' must not be after 'to'")

    service = HistorySyncService(
        session_factory, source,
        on_synced=StatsCacheStore(session_factory).invalidate,
        settings=settings,
    )

    async def job(sink, cancel):
        await sink(f"Starting sync for User {body.user_id}...")
        return await service.sync_user_history(
            body.user_id, from_day, to_day,
            force=body.force, on_progress=sink, cancel=cancel,
        )

    return StreamingResponse(
        stream_job(job, on_done=_complete_line),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )

