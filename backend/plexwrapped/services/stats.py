"""Statistics engine — builds, caches and serves the per-user wrapped document.

Flow for get_stats:
1. Resolve the period (calendar year by default, explicit bounds win)
2. Serve the cached document unless a refresh is forced
3. Load the period's rows once and run every aggregation pass over them
4. Rank the user against everyone else for the leaderboard
5. Decorate top cast with portraits and add the AI roast when configured
6. Write the result back to the cache
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.clients.llm import LlmClient
from plexwrapped.clients.tmdb import TmdbClient
from plexwrapped.config import Settings, settings as default_settings
from plexwrapped.dates import as_day, local_today, year_bounds, zone
from plexwrapped.errors import EnrichmentProviderFailure
from plexwrapped.models.tables import User, WatchHistory
from plexwrapped.schemas import Period, StatisticsDocument
from plexwrapped.services import stats_passes as passes
from plexwrapped.services.integrations import load_ai_config
from plexwrapped.services.leaderboard import PeerTotal, build_comparison
from plexwrapped.services.progress import ERROR, GENERATING, INFO, ProgressSink, emit
from plexwrapped.services.stats_cache import StatsCacheStore
from plexwrapped.services.summary import LlmFactory, generate_summary, should_generate

logger = logging.getLogger(__name__)


class StatsService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: StatsCacheStore,
        catalog: Optional[TmdbClient] = None,
        llm_factory: LlmFactory = LlmClient.from_config,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.catalog = catalog
        self.llm_factory = llm_factory
        self.settings = settings
        self.tz = zone(settings.timezone)

    def resolve_period(
        self,
        year: Optional[int] = None,
        start: Optional[date | datetime] = None,
        end: Optional[date | datetime] = None,
    ) -> tuple[int, date, date]:
        """(year, start, end) with ``end`` exclusive."""
        year = year or local_today(self.tz).year
        default_start, default_end = year_bounds(year)
        return (
            year,
            as_day(start) if start else default_start,
            as_day(end) if end else default_end,
        )

    async def get_stats(
        self,
        user_id: int,
        year: Optional[int] = None,
        start: Optional[date | datetime] = None,
        end: Optional[date | datetime] = None,
        force_refresh: bool = False,
    ) -> StatisticsDocument:
        year, start, end = self.resolve_period(year, start, end)

        if not force_refresh:
            cached = await self.cache.load(user_id, start, end)
            if cached is not None:
                return cached

        async with self.session_factory() as db:
            rows = (await db.scalars(
                select(WatchHistory)
                .where(
                    WatchHistory.user_id == user_id,
                    WatchHistory.watched_on >= start,
                    WatchHistory.watched_on < end,
                )
                .order_by(WatchHistory.started_at, WatchHistory.id)
            )).all()
            peers = await self._peer_totals(db, start, end)
            ai_config = await load_ai_config(db)

        document = self._compose(rows, user_id, start, end, peers)
        await self._decorate_cast(document)

        if should_generate(ai_config, document.total_seconds > 0, force_refresh):
            logger.info(f"Generating AI summary for user {user_id}")
            document.ai_summary = await generate_summary(
                ai_config, document, user_id, year, llm_factory=self.llm_factory,
            )

        await self.cache.save(user_id, start, end, document)
        return document

    def _compose(
        self,
        rows: passes.Rows,
        user_id: int,
        start: date,
        end: date,
        peers: list[PeerTotal],
    ) -> StatisticsDocument:
        split = passes.media_split(rows)
        total_seconds = split.movies + split.shows

        return StatisticsDocument(
            total_duration=passes.human_duration(total_seconds),
            total_seconds=total_seconds,
            media_type_split=split,
            total_bandwidth=passes.total_bandwidth(rows),
            oldest_movie=passes.oldest(rows, "movie"),
            oldest_show=passes.oldest(rows, "episode"),
            top_cast=passes.top_cast(rows),
            genre_wheel=passes.genre_wheel(rows),
            time_traveler=passes.time_traveler(rows),
            average_year=passes.average_year(rows, default=local_today(self.tz).year),
            tech_stats=passes.tech_stats(rows),
            commitment_issues=passes.commitment_issues(rows),
            binge_record=passes.binge_record(rows),
            lazy_day=passes.lazy_day(rows),
            activity_type=passes.activity_type(rows),
            longest_break=passes.longest_break(rows),
            top_show_by_episodes=passes.top_show_by_episodes(rows),
            value_proposition=passes.value_proposition(rows),
            penalty_value=passes.penalty_value(rows),
            comparison=build_comparison(user_id, total_seconds, peers),
            period=Period(start=start, end=end),
        )

    async def _peer_totals(self, db: AsyncSession, start: date, end: date) -> list[PeerTotal]:
        """Every user with their seconds in the period, zero when they watched nothing."""
        user_ids = (await db.scalars(select(User.id).order_by(User.id))).all()
        sums = await db.execute(
            select(WatchHistory.user_id, func.sum(WatchHistory.duration))
            .where(WatchHistory.watched_on >= start, WatchHistory.watched_on < end)
            .group_by(WatchHistory.user_id)
        )
        seconds = {uid: int(total or 0) for uid, total in sums}
        return [PeerTotal(user_id=uid, seconds=seconds.get(uid, 0)) for uid in user_ids]

    async def _decorate_cast(self, document: StatisticsDocument) -> None:
        if self.catalog is None:
            return
        for entry in document.top_cast:
            try:
                entry.image_url = await self.catalog.search_person_image(entry.actor)
            except EnrichmentProviderFailure as e:
                logger.warning(f"No portrait for {entry.actor}: {e}")

    # ── Bulk regeneration ────────────────────────────────────────

    async def generate_all_stats(self, on_progress: Optional[ProgressSink] = None) -> int:
        """Force-refresh the default-period document for every user.

        One user failing is reported and skipped. Returns how many succeeded.
        """
        async with self.session_factory() as db:
            users = (await db.execute(select(User.id, User.username).order_by(User.id))).all()

        total = len(users)
        generated = 0
        await emit(on_progress, f"{INFO} Starting generation for {total} users...")

        for count, (user_id, username) in enumerate(users, start=1):
            name = username or f"User {user_id}"
            await emit(on_progress, f"{GENERATING} [{count}/{total}] {name} ({round(count / total * 100)}%)")
            try:
                await self.get_stats(user_id, force_refresh=True)
                generated += 1
            except Exception as e:
                logger.exception(f"Stats generation failed for user {user_id}")
                await emit(on_progress, f"{ERROR} Failed for {name}: {e}")

        await emit(on_progress, f"{INFO} Generation Complete!")
        return generated
