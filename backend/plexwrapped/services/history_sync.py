"""History sync — day-checkpointed import of watch history.

Walks a date range one calendar day at a time. A day that has been fully
imported carries a completed SyncLog row and is skipped on later runs unless
forced; the current day and anything after it are never marked complete
because their history is still growing.

Two entry points:
- sync_user_history: one user, strictly sequential days
- sync_global_history: all active users from the global feed, several days
  in flight at once, checkpoints written in bulk
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Awaitable, Callable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.clients.base import HistoryEntry, IHistorySource, ItemDescriptor
from plexwrapped.config import Settings, settings as default_settings
from plexwrapped.dates import as_day, iter_days, local_datetime, local_today, month_label, zone
from plexwrapped.errors import Cancelled, MetadataFetchFailure
from plexwrapped.models.tables import SyncLog, User, WatchHistory
from plexwrapped.services.progress import INFO, MONTH_START, PROGRESS, WARN, ProgressSink, emit

logger = logging.getLogger(__name__)

# Called with the ids of users whose history changed
InvalidationHook = Callable[[Sequence[int]], Awaitable[None]]


@dataclass
class SyncResult:
    days_imported: int = 0
    total_events_imported: int = 0

    def to_dict(self) -> dict:
        return {"syncedDays": self.days_imported, "totalEntries": self.total_events_imported}


@dataclass
class DayBatch:
    """One day's feed split into rows that belong to the day and rows that don't."""
    day: date
    fetched: int
    kept: list[tuple[HistoryEntry, datetime]] = field(default_factory=list)
    discarded: list[tuple[HistoryEntry, datetime]] = field(default_factory=list)


class HistorySyncService:
    """Imports watch history from an IHistorySource into watch_history."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        source: IHistorySource,
        on_synced: Optional[InvalidationHook] = None,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.source = source
        self.on_synced = on_synced
        self.settings = settings
        self.tz = zone(settings.timezone)

    # ── Per-user sync ────────────────────────────────────────────

    async def sync_user_history(
        self,
        user_id: int,
        from_day: date | datetime,
        to_day: date | datetime,
        force: bool = False,
        on_progress: Optional[ProgressSink] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Import one user's history for an inclusive day range.

        Any UpstreamFetchFailure aborts the whole range: a history fetch that
        fails is almost always a connectivity problem, not a bad day.
        """
        start, end = as_day(from_day), as_day(to_day)
        days = list(iter_days(start, end))
        today = local_today(self.tz)
        result = SyncResult()
        last_pct = 0
        last_month = None

        await emit(on_progress, f"{INFO} Starting sync from {start.isoformat()} to {end.isoformat()}")

        for index, day in enumerate(days, start=1):
            self._check_cancel(cancel)

            pct = round(index / len(days) * 100)
            if pct > last_pct:
                await emit(on_progress, f"{PROGRESS}{pct}")
                last_pct = pct
            month = month_label(day)
            if month != last_month:
                await emit(on_progress, f"{MONTH_START}{month}")
                last_month = month

            if force:
                await self._drop_checkpoint(user_id, day)
            elif await self._is_completed(user_id, day):
                continue

            entries = await self.source.fetch_history(user_id, day, self.settings.history_page_length)
            batch = self._split_day(entries, day)
            await self._report_discards(batch, on_progress)

            descriptors = await self._resolve_metadata([e for e, _ in batch.kept], cancel)

            is_partial = day >= today
            async with self.session_factory() as db:
                async with db.begin():
                    await db.execute(
                        delete(WatchHistory).where(
                            WatchHistory.user_id == user_id,
                            WatchHistory.watched_on == day,
                        )
                    )
                    db.add_all([
                        self._build_row(user_id, entry, started, descriptors.get(entry.rating_key))
                        for entry, started in batch.kept
                    ])
                    if not is_partial:
                        await self._mark_completed(db, user_id, day)

            if not is_partial:
                result.days_imported += 1
            result.total_events_imported += len(batch.kept)

        logger.info(
            f"User {user_id}: synced {result.days_imported} days, "
            f"{result.total_events_imported} entries ({start} → {end})"
        )
        await self._publish([user_id])
        return result

    # ── Global sync ──────────────────────────────────────────────

    async def sync_global_history(
        self,
        from_day: date | datetime,
        to_day: date | datetime,
        on_progress: Optional[ProgressSink] = None,
        cancel: Optional[asyncio.Event] = None,
        force: bool = False,
    ) -> SyncResult:
        """Import every active user's history from the all-users feed.

        Days run in windows of ``global_sync_concurrency``; upstream fetches
        and metadata lookups overlap, store writes take turns. Progress is
        reported once per window.
        """
        start, end = as_day(from_day), as_day(to_day)
        days = list(iter_days(start, end))
        today = local_today(self.tz)
        result = SyncResult()

        active = await self._active_user_ids()
        if not active:
            await emit(on_progress, f"{INFO} No active users to sync")
            return result

        await emit(
            on_progress,
            f"{INFO} Starting global sync for {len(active)} users from {start.isoformat()} to {end.isoformat()}",
        )

        write_lock = asyncio.Lock()
        window = max(1, self.settings.global_sync_concurrency)
        last_month = None

        for offset in range(0, len(days), window):
            self._check_cancel(cancel)
            chunk = days[offset:offset + window]

            for day in chunk:
                month = month_label(day)
                if month != last_month:
                    await emit(on_progress, f"{MONTH_START}{month}")
                    last_month = month

            outcomes = await asyncio.gather(
                *(self._sync_global_day(day, active, today, force, write_lock, on_progress, cancel) for day in chunk),
                return_exceptions=True,
            )
            # Let every day in the window settle before surfacing the first failure
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            for imported, events in outcomes:
                result.days_imported += imported
                result.total_events_imported += events

            pct = round((offset + len(chunk)) / len(days) * 100)
            await emit(on_progress, f"{PROGRESS}{pct}")

        logger.info(
            f"Global sync: {result.days_imported} days, {result.total_events_imported} entries "
            f"for {len(active)} users ({start} → {end})"
        )
        await self._publish(sorted(active))
        return result

    async def _sync_global_day(
        self,
        day: date,
        active: set[int],
        today: date,
        force: bool,
        write_lock: asyncio.Lock,
        on_progress: Optional[ProgressSink],
        cancel: Optional[asyncio.Event],
    ) -> tuple[int, int]:
        """Fetch and store one day for all active users. Returns (days, entries)."""
        if not force and await self._all_completed(day, active):
            return 0, 0

        entries = await self.source.fetch_history(None, day, self.settings.history_page_length)
        batch = self._split_day(entries, day)
        await self._report_discards(batch, on_progress)

        kept = [(e, started) for e, started in batch.kept if e.user_id in active]
        descriptors = await self._resolve_metadata([e for e, _ in kept], cancel)

        is_partial = day >= today
        async with write_lock:
            async with self.session_factory() as db:
                async with db.begin():
                    await db.execute(
                        delete(WatchHistory).where(
                            WatchHistory.watched_on == day,
                            WatchHistory.user_id.in_(active),
                        )
                    )
                    db.add_all([
                        self._build_row(entry.user_id, entry, started, descriptors.get(entry.rating_key))
                        for entry, started in kept
                    ])
                    if not is_partial:
                        await db.execute(
                            delete(SyncLog).where(SyncLog.day == day, SyncLog.user_id.in_(active))
                        )
                        db.add_all([SyncLog(user_id=uid, day=day, completed=True) for uid in sorted(active)])

        return (0 if is_partial else 1), len(kept)

    # ── Day filtering ────────────────────────────────────────────

    def _split_day(self, entries: list[HistoryEntry], day: date) -> DayBatch:
        """Keep entries that started on ``day`` in the configured timezone."""
        batch = DayBatch(day=day, fetched=len(entries))
        for entry in entries:
            started = local_datetime(entry.timestamp, self.tz)
            if started.date() == day:
                batch.kept.append((entry, started))
            else:
                batch.discarded.append((entry, started))
        return batch

    async def _report_discards(self, batch: DayBatch, on_progress: Optional[ProgressSink]) -> None:
        """Warn only about discards that a midnight overlap cannot explain."""
        if not batch.discarded:
            return
        tolerance = self.settings.sync_boundary_tolerance_days
        far = [
            started for _, started in batch.discarded
            if abs((started.date() - batch.day).days) > tolerance
        ]
        if not far:
            logger.debug(f"{batch.day}: dropped {len(batch.discarded)} boundary entries")
            return
        message = (
            f"{WARN} Found {batch.fetched} items for {batch.day.isoformat()} but discarded "
            f"{len(far)} outside the day. Sample: {far[0]:%Y-%m-%d %H:%M}"
        )
        logger.warning(message)
        await emit(on_progress, message)

    # ── Metadata ─────────────────────────────────────────────────

    async def _resolve_metadata(
        self,
        entries: list[HistoryEntry],
        cancel: Optional[asyncio.Event],
    ) -> dict[str, ItemDescriptor]:
        """Descriptors for every distinct item, fetching only what we lack.

        Items already stored with cast and genres are reused as-is; the rest
        are fetched in small batches with a pause in between.
        """
        keys = list(dict.fromkeys(e.rating_key for e in entries if e.rating_key))
        if not keys:
            return {}

        resolved = await self._local_descriptors(keys)
        missing = [k for k in keys if k not in resolved]

        size = max(1, self.settings.metadata_batch_size)
        for i in range(0, len(missing), size):
            self._check_cancel(cancel)
            if i > 0 and self.settings.metadata_batch_pause > 0:
                await asyncio.sleep(self.settings.metadata_batch_pause)
            batch = missing[i:i + size]
            descriptors = await asyncio.gather(*(self._fetch_descriptor(k) for k in batch))
            for key, descriptor in zip(batch, descriptors):
                if descriptor is not None:
                    resolved[key] = descriptor
        return resolved

    async def _fetch_descriptor(self, rating_key: str) -> Optional[ItemDescriptor]:
        try:
            return await self.source.fetch_metadata(rating_key)
        except MetadataFetchFailure as e:
            logger.warning(f"Metadata unavailable for {rating_key}, storing bare entry: {e}")
            return None

    async def _local_descriptors(self, keys: list[str]) -> dict[str, ItemDescriptor]:
        """Enrichment already stored on earlier rows for the same items."""
        async with self.session_factory() as db:
            rows = await db.execute(
                select(
                    WatchHistory.rating_key, WatchHistory.actors, WatchHistory.genres,
                    WatchHistory.rating, WatchHistory.file_size,
                ).where(
                    WatchHistory.rating_key.in_(keys),
                    WatchHistory.actors.is_not(None),
                    WatchHistory.actors != "",
                    WatchHistory.genres.is_not(None),
                    WatchHistory.genres != "",
                )
            )
            found: dict[str, ItemDescriptor] = {}
            for key, actors, genres, rating, file_size in rows:
                if key in found:
                    continue
                descriptor = ItemDescriptor(
                    cast=[a for a in actors.split(",") if a],
                    genres=[g for g in genres.split(",") if g],
                    rating=rating,
                    file_size=file_size,
                )
                # A stored list of bare separators still needs a fresh lookup
                if descriptor.has_credits:
                    found[key] = descriptor
        return found

    def _build_row(
        self,
        user_id: int,
        entry: HistoryEntry,
        started: datetime,
        meta: Optional[ItemDescriptor],
    ) -> WatchHistory:
        rating = None
        if meta is not None:
            rating = meta.rating if meta.rating is not None else meta.audience_rating

        return WatchHistory(
            user_id=user_id,
            tautulli_id=entry.row_id,
            started_at=started,
            watched_on=started.date(),
            duration=max(entry.duration or 0, 0),
            percent_complete=min(max(entry.percent_complete or 0, 0), 100),
            media_type=entry.media_type,
            title=entry.title,
            parent_title=entry.parent_title,
            grandparent_title=entry.grandparent_title,
            full_title=entry.full_title,
            rating_key=entry.rating_key,
            parent_rating_key=entry.parent_rating_key,
            grandparent_rating_key=entry.grandparent_rating_key,
            year=entry.year,
            actors=",".join(meta.cast) if meta and meta.cast else None,
            genres=",".join(meta.genres) if meta and meta.genres else None,
            rating=rating,
            file_size=meta.file_size if meta else None,
            transcode_decision=entry.transcode_decision,
            player=entry.player,
        )

    # ── Checkpoints ──────────────────────────────────────────────

    async def _is_completed(self, user_id: int, day: date) -> bool:
        async with self.session_factory() as db:
            completed = await db.scalar(
                select(SyncLog.completed).where(SyncLog.user_id == user_id, SyncLog.day == day)
            )
        return bool(completed)

    async def _all_completed(self, day: date, user_ids: set[int]) -> bool:
        async with self.session_factory() as db:
            count = await db.scalar(
                select(func.count()).select_from(SyncLog).where(
                    SyncLog.day == day,
                    SyncLog.completed.is_(True),
                    SyncLog.user_id.in_(user_ids),
                )
            )
        return count == len(user_ids)

    async def _drop_checkpoint(self, user_id: int, day: date) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(SyncLog).where(SyncLog.user_id == user_id, SyncLog.day == day))
            await db.commit()

    @staticmethod
    async def _mark_completed(db: AsyncSession, user_id: int, day: date) -> None:
        log = await db.scalar(select(SyncLog).where(SyncLog.user_id == user_id, SyncLog.day == day))
        if log is None:
            db.add(SyncLog(user_id=user_id, day=day, completed=True))
        else:
            log.completed = True

    # ── Helpers ──────────────────────────────────────────────────

    async def _active_user_ids(self) -> set[int]:
        async with self.session_factory() as db:
            rows = await db.scalars(select(User.id).where(User.is_active.is_(True)))
            return set(rows.all())

    async def _publish(self, user_ids: Sequence[int]) -> None:
        if self.on_synced is not None:
            await self.on_synced(user_ids)

    @staticmethod
    def _check_cancel(cancel: Optional[asyncio.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise Cancelled()
