"""User directory (a mirror of the history source's user list) and admin maintenance."""

import asyncio
import logging
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.clients.base import IHistorySource
from plexwrapped.models.tables import MediaEnrichment, StatsCache, SyncLog, TautulliConfig, User, WatchHistory
from plexwrapped.schemas import StatisticsDocument
from plexwrapped.services.history_sync import HistorySyncService
from plexwrapped.services.progress import INFO, ProgressSink, emit
from plexwrapped.services.stats import StatsService

logger = logging.getLogger(__name__)


async def sync_users(session_factory: async_sessionmaker[AsyncSession], source: IHistorySource) -> int:
    """Insert or refresh every upstream user. Returns the number imported."""
    server_users = await source.list_users()
    async with session_factory() as db:
        existing = {u.id: u for u in (await db.scalars(select(User))).all()}
        for su in server_users:
            user = existing.get(su.id)
            if user is None:
                user = User(id=su.id)
                db.add(user)
            user.username = su.username
            user.email = su.email
            user.thumb_url = su.thumb_url
            user.is_active = su.is_active
        await db.commit()
    logger.info(f"Synced {len(server_users)} users from history source")
    return len(server_users)


async def list_users_with_counts(db: AsyncSession) -> list[dict]:
    """Users with their stored history size and last stats generation."""
    counts = dict((await db.execute(
        select(WatchHistory.user_id, func.count()).group_by(WatchHistory.user_id)
    )).all())
    generated = dict((await db.execute(
        select(StatsCache.user_id, func.max(StatsCache.generated_at)).group_by(StatsCache.user_id)
    )).all())

    users = (await db.scalars(select(User).order_by(User.username))).all()
    return [
        {
            "id": u.id,
            "username": u.username,
            "email": u.email,
            "thumb_url": u.thumb_url,
            "is_active": u.is_active,
            "history_count": counts.get(u.id, 0),
            "stats_generated_at": generated[u.id].isoformat() if generated.get(u.id) else None,
        }
        for u in users
    ]


async def delete_user(db: AsyncSession, user_id: int) -> bool:
    """Remove a user with their history, checkpoints and cached stats."""
    user = await db.get(User, user_id)
    if user is None:
        return False
    await db.execute(delete(WatchHistory).where(WatchHistory.user_id == user_id))
    await db.execute(delete(SyncLog).where(SyncLog.user_id == user_id))
    await db.execute(delete(StatsCache).where(StatsCache.user_id == user_id))
    await db.delete(user)
    await db.commit()
    logger.info(f"Deleted user {user_id} and their data")
    return True


async def refresh_user(
    user_id: int,
    sync: HistorySyncService,
    stats: StatsService,
    today: date,
    on_progress: Optional[ProgressSink] = None,
    cancel: Optional[asyncio.Event] = None,
) -> StatisticsDocument:
    """Force-resync a user's current year, then rebuild their stats document."""
    await emit(on_progress, f"{INFO} Starting refresh for user {user_id}...")
    await emit(on_progress, f"{INFO} Syncing history from Tautulli ({today.year})...")
    await sync.sync_user_history(
        user_id, date(today.year, 1, 1), today,
        force=True, on_progress=on_progress, cancel=cancel,
    )
    await emit(on_progress, f"{INFO} History sync complete.")
    await emit(on_progress, f"{INFO} Generating stats...")
    return await stats.get_stats(user_id, year=today.year, force_refresh=True)


async def purge_system(db: AsyncSession) -> None:
    """Delete every user, their history and derived data, and the Tautulli connection.

    Media and AI settings survive so a fresh setup can reuse them.
    """
    for table in (WatchHistory, SyncLog, MediaEnrichment, StatsCache, User, TautulliConfig):
        await db.execute(delete(table))
    await db.commit()
    logger.warning("System purged: users, history, enrichment, cache and Tautulli config removed")
