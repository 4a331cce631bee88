"""Cached statistics documents, keyed by (user, period start, period end)."""

import logging
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.errors import CacheCorrupt
from plexwrapped.models.tables import StatsCache
from plexwrapped.schemas import StatisticsDocument

logger = logging.getLogger(__name__)


def parse_document(text: str) -> StatisticsDocument:
    """Deserialize a cached document. Raises CacheCorrupt on any parse error."""
    try:
        return StatisticsDocument.model_validate_json(text)
    except (ValidationError, ValueError) as e:
        raise CacheCorrupt(str(e)) from e


class StatsCacheStore:
    """Read-through cache backing the stats engine; cleared by history syncs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, user_id: int, start: date, end: date) -> Optional[StatisticsDocument]:
        """Cached document, or None when absent or unreadable."""
        async with self.session_factory() as db:
            text = await db.scalar(
                select(StatsCache.document).where(
                    StatsCache.user_id == user_id,
                    StatsCache.period_start == start,
                    StatsCache.period_end == end,
                )
            )
        if text is None:
            return None
        try:
            return parse_document(text)
        except CacheCorrupt as e:
            logger.warning(f"Discarding unreadable stats cache for user {user_id}: {e}")
            return None

    async def save(self, user_id: int, start: date, end: date, document: StatisticsDocument) -> None:
        """Write (or overwrite) the cached document. Last writer wins."""
        payload = document.model_dump_json(by_alias=True)
        now = datetime.now(timezone.utc)
        async with self.session_factory() as db:
            row = await db.scalar(
                select(StatsCache).where(
                    StatsCache.user_id == user_id,
                    StatsCache.period_start == start,
                    StatsCache.period_end == end,
                )
            )
            if row is None:
                db.add(StatsCache(
                    user_id=user_id, period_start=start, period_end=end,
                    document=payload, generated_at=now,
                ))
            else:
                row.document = payload
                row.generated_at = now
            await db.commit()

    async def invalidate(self, user_ids: Sequence[int]) -> None:
        """Drop every cached period for the given users in one statement."""
        if not user_ids:
            return
        async with self.session_factory() as db:
            await db.execute(delete(StatsCache).where(StatsCache.user_id.in_(list(user_ids))))
            await db.commit()
        logger.info(f"Cleared stats cache for {len(user_ids)} user(s)")
