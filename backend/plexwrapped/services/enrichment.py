"""Metadata enrichment — external ids and a unified 0-100 quality score.

For every distinct movie and series in the watch history that has no score
yet:
1. Read the item descriptor from the history source (guids, Plex ratings)
2. Resolve the TMDB id by search and the IMDb id by cross-reference if needed
3. Pull the TMDB vote average and the OMDb ratings (IMDb + Rotten Tomatoes)
4. Combine them into one weighted score and upsert media_enrichment

Items run concurrently in fixed-size batches. A provider failure drops only
that provider's contribution; anything else fails only the one item.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plexwrapped.clients.base import ICatalogProvider, IHistorySource, IRatingsAggregator
from plexwrapped.config import Settings, settings as default_settings
from plexwrapped.errors import EnrichmentProviderFailure, MetadataFetchFailure
from plexwrapped.models.tables import MediaEnrichment, WatchHistory
from plexwrapped.services.progress import DONE, INFO, WARN, ProgressSink, emit

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Weights of the unified score; missing sources hand their share to the rest
POPULAR_WEIGHT = 0.4
CRITIC_WEIGHT = 0.4
CATALOG_WEIGHT = 0.2

# Ordered strategies: agent/namespace-prefixed guids first, then bare patterns
IMDB_PATTERNS = [
    re.compile(r"^(?:imdb://|com\.plexapp\.agents\.imdb://)(tt\d+)"),
    re.compile(r"(tt\d+)"),
]
TMDB_PATTERNS = [
    re.compile(r"^(?:tmdb://|com\.plexapp\.agents\.themoviedb://)(\d+)"),
    re.compile(r"(?:tmdb|themoviedb)\D*(\d+)"),
]


def _first_match(guids: list[str], patterns: list[re.Pattern]) -> Optional[str]:
    for pattern in patterns:
        for guid in guids:
            match = pattern.search(guid)
            if match:
                return match.group(1)
    return None


def extract_external_ids(guids: list[str]) -> tuple[Optional[str], Optional[str]]:
    """(imdb_id, tmdb_id) from Plex guid strings, either may be None."""
    guids = [g for g in guids if isinstance(g, str)]
    return _first_match(guids, IMDB_PATTERNS), _first_match(guids, TMDB_PATTERNS)


def compute_unified_score(
    popular: Optional[float],
    critic: Optional[float],
    catalog: Optional[float],
) -> Optional[int]:
    """Weighted 0-100 score.

    ``popular`` and ``catalog`` are on a 0-10 scale, ``critic`` is a
    percentage. Weights are renormalized over the sources present; None when
    there is nothing to combine.
    """
    parts = []
    if popular is not None:
        parts.append((round(popular * 10), POPULAR_WEIGHT))
    if critic is not None:
        parts.append((round(critic), CRITIC_WEIGHT))
    if catalog is not None:
        parts.append((round(catalog * 10), CATALOG_WEIGHT))
    if not parts:
        return None
    total_weight = sum(w for _, w in parts)
    return round(sum(score * w for score, w in parts) / total_weight)


@dataclass
class Candidate:
    rating_key: str
    title: str
    kind: str               # "movie" | "series"
    year: Optional[int] = None


@dataclass
class EnrichedItem:
    rating_key: str
    title: str
    kind: str
    imdb_id: Optional[str] = None
    tmdb_id: Optional[str] = None
    rating_imdb: Optional[float] = None
    rating_rt_critic: Optional[int] = None
    rating_tmdb: Optional[float] = None
    unified_score: Optional[int] = None
    poster: Optional[str] = None
    omdb_response: Optional[str] = None

    def describe(self) -> str:
        if self.unified_score is None:
            return f'  > saved "{self.title}" (No score calculated)'
        return (
            f'  > Enriched "{self.title}": Unified Score {self.unified_score} '
            f"(IMDb:{self.rating_imdb or '-'}, RT:{self.rating_rt_critic or '-'}%, "
            f"TMDB:{self.rating_tmdb or '-'})"
        )


@dataclass
class EnrichmentResult:
    processed: int = 0
    scored: int = 0
    failed: int = 0


class MetadataEnrichmentService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        source: IHistorySource,
        catalog: Optional[ICatalogProvider] = None,
        ratings: Optional[IRatingsAggregator] = None,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.source = source
        self.catalog = catalog
        self.ratings = ratings
        self.settings = settings

    async def enrich_metadata(self, on_progress: Optional[ProgressSink] = None) -> EnrichmentResult:
        result = EnrichmentResult()
        todo = await self._candidates()
        if not todo:
            await emit(on_progress, f"{INFO} No new items to enrich.")
            return result

        await emit(on_progress, f"{INFO} Starting enrichment for {len(todo)} items.")

        size = max(1, self.settings.enrichment_concurrency)
        for i in range(0, len(todo), size):
            if i > 0 and self.settings.enrichment_batch_pause > 0:
                await asyncio.sleep(self.settings.enrichment_batch_pause)

            batch = todo[i:i + size]
            outcomes = await asyncio.gather(
                *(self._enrich_item(item, on_progress) for item in batch),
                return_exceptions=True,
            )

            enriched: list[EnrichedItem] = []
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    result.failed += 1
                    logger.warning(f"Enrichment failed for {item.title}: {outcome}")
                    await emit(on_progress, f"ERROR processing {item.title}: {outcome}")
                    continue
                enriched.append(outcome)
                await emit(on_progress, outcome.describe())

            saved = await self._save(enriched, on_progress)
            result.failed += len(enriched) - len(saved)
            result.processed += len(saved)
            result.scored += sum(1 for e in saved if e.unified_score is not None)

        logger.info(
            f"Enrichment: {result.processed} processed, {result.scored} scored, {result.failed} failed"
        )
        await emit(on_progress, f"{DONE} Enrichment complete.")
        return result

    # ── Candidate selection ──────────────────────────────────────

    async def _candidates(self) -> list[Candidate]:
        """Distinct movies and series from history that have no score yet."""
        async with self.session_factory() as db:
            rows = await db.execute(
                select(
                    WatchHistory.media_type, WatchHistory.rating_key, WatchHistory.title,
                    WatchHistory.grandparent_rating_key, WatchHistory.grandparent_title,
                    WatchHistory.year,
                ).distinct()
            )
            scored = set((await db.scalars(
                select(MediaEnrichment.rating_key).where(MediaEnrichment.unified_score.is_not(None))
            )).all())

        items: dict[str, Candidate] = {}
        for media_type, key, title, series_key, series_title, year in rows:
            if media_type == "movie" and key and title:
                items[key] = Candidate(rating_key=key, title=title, kind="movie", year=year)
            elif media_type == "episode" and series_key and series_title:
                items[series_key] = Candidate(rating_key=series_key, title=series_title, kind="series")

        return [item for key, item in items.items() if key not in scored]

    # ── Per-item pipeline ────────────────────────────────────────

    async def _enrich_item(self, item: Candidate, on_progress: Optional[ProgressSink]) -> EnrichedItem:
        meta = EnrichedItem(rating_key=item.rating_key, title=item.title, kind=item.kind)

        try:
            descriptor = await self.source.fetch_metadata(item.rating_key)
        except MetadataFetchFailure as e:
            await emit(on_progress, f"{WARN} Plex metadata fetch failed for {item.title}: {e}")
            descriptor = None

        if descriptor is not None:
            meta.imdb_id, meta.tmdb_id = extract_external_ids(descriptor.guids)
            if descriptor.rating:
                meta.rating_tmdb = descriptor.rating
            if descriptor.audience_rating is not None:
                value = descriptor.audience_rating
                meta.rating_rt_critic = round(value) if value > 10 else round(value * 10)

        if self.catalog is not None:
            if not meta.tmdb_id:
                meta.tmdb_id = await self._optional(
                    self.catalog.search_title(item.title, item.year, item.kind), "TMDB search", item,
                )
            if meta.tmdb_id and not meta.imdb_id:
                meta.imdb_id = await self._optional(
                    self.catalog.get_imdb_id(meta.tmdb_id, item.kind), "TMDB external ids", item,
                )
            if meta.tmdb_id:
                rating = await self._optional(
                    self.catalog.get_rating(meta.tmdb_id, item.kind), "TMDB rating", item,
                )
                if rating is not None:
                    meta.rating_tmdb = rating

        if self.ratings is not None:
            found = await self._optional(
                self.ratings.fetch(item.title, item.year, item.kind, imdb_id=meta.imdb_id), "OMDb", item,
            )
            if found is not None:
                meta.omdb_response = found.raw
                meta.imdb_id = meta.imdb_id or found.imdb_id
                meta.poster = found.poster_url
                meta.rating_imdb = found.popular_rating
                if found.critic_percent is not None:
                    meta.rating_rt_critic = found.critic_percent

        meta.unified_score = compute_unified_score(meta.rating_imdb, meta.rating_rt_critic, meta.rating_tmdb)
        return meta

    @staticmethod
    async def _optional(call: Awaitable[T], provider: str, item: Candidate) -> Optional[T]:
        """Await a provider call; a provider failure counts as no answer."""
        try:
            return await call
        except EnrichmentProviderFailure as e:
            logger.warning(f"{provider} unavailable for {item.title}: {e}")
            return None

    # ── Persistence ──────────────────────────────────────────────

    async def _save(self, items: list[EnrichedItem], on_progress: Optional[ProgressSink]) -> list[EnrichedItem]:
        """Store a batch, falling back to one write per item when the batch fails.

        Returns the items that were stored.
        """
        try:
            await self._store(items)
            return items
        except SQLAlchemyError as e:
            logger.warning(f"Enrichment batch write failed, retrying item by item: {e}")

        saved: list[EnrichedItem] = []
        for item in items:
            try:
                await self._store([item])
            except SQLAlchemyError as e:
                logger.warning(f"Could not store enrichment for {item.title}: {e}")
                await emit(on_progress, f"ERROR processing {item.title}: {e}")
                continue
            saved.append(item)
        return saved

    async def _store(self, items: list[EnrichedItem]) -> None:
        """Upsert one batch by rating key."""
        if not items:
            return
        async with self.session_factory() as db:
            existing = {
                row.rating_key: row
                for row in (await db.scalars(
                    select(MediaEnrichment).where(MediaEnrichment.rating_key.in_([i.rating_key for i in items]))
                )).all()
            }
            for item in items:
                row = existing.get(item.rating_key)
                if row is None:
                    row = MediaEnrichment(rating_key=item.rating_key, title=item.title, media_type=item.kind)
                    db.add(row)
                row.imdb_id = item.imdb_id
                row.tmdb_id = item.tmdb_id
                row.rating_imdb = item.rating_imdb
                row.rating_rt_critic = item.rating_rt_critic
                row.rating_tmdb = item.rating_tmdb
                row.unified_score = item.unified_score
                row.poster = item.poster
                row.omdb_response = item.omdb_response
            await db.commit()
