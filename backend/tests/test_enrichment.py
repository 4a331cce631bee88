from datetime import date, datetime

import pytest
from sqlalchemy import select, text

from plexwrapped.clients.base import ItemDescriptor
from plexwrapped.models.tables import MediaEnrichment, WatchHistory
from plexwrapped.services.enrichment import (
    MetadataEnrichmentService, compute_unified_score, extract_external_ids,
)

from fakes import FakeCatalog, FakeRatings, FakeSource, ratings


class TestExternalIds:

    def test_agent_prefixed_guids(self):
        guids = ["com.plexapp.agents.imdb://tt0113277?lang=en", "com.plexapp.agents.themoviedb://949?lang=en"]
        assert extract_external_ids(guids) == ("tt0113277", "949")

    def test_namespace_guids(self):
        assert extract_external_ids(["plex://movie/5d776", "imdb://tt0113277", "tmdb://949"]) == ("tt0113277", "949")

    def test_prefixed_form_wins_over_bare_match(self):
        guids = ["local://tt9999999", "imdb://tt0113277"]
        assert extract_external_ids(guids)[0] == "tt0113277"

    def test_bare_fallbacks(self):
        assert extract_external_ids(["something/tt0306414/x", "themoviedb-1438"]) == ("tt0306414", "1438")

    def test_nothing_to_find(self):
        assert extract_external_ids(["plex://movie/5d776"]) == (None, None)
        assert extract_external_ids([]) == (None, None)


class TestUnifiedScore:

    def test_all_sources(self):
        assert compute_unified_score(8.3, 87, 7.9) == 84

    def test_missing_catalog_renormalizes(self):
        assert compute_unified_score(8.0, 80, None) == 80

    def test_single_source(self):
        assert compute_unified_score(None, None, 8.2) == 82
        assert compute_unified_score(None, None, 8.0) == 80

    def test_aggregator_only(self):
        assert compute_unified_score(7.0, 90, None) == 80

    def test_no_sources(self):
        assert compute_unified_score(None, None, None) is None


async def seed_history(session_factory):
    when = datetime(2024, 5, 4, 20, 0)
    rows = [
        WatchHistory(user_id=1, started_at=when, watched_on=date(2024, 5, 4), media_type="movie",
                     title="Heat", rating_key="101", year=1995),
        WatchHistory(user_id=1, started_at=when, watched_on=date(2024, 5, 4), media_type="movie",
                     title="Heat", rating_key="101", year=1995),
        WatchHistory(user_id=1, started_at=when, watched_on=date(2024, 5, 4), media_type="episode",
                     title="The Target", grandparent_title="The Wire", rating_key="601",
                     grandparent_rating_key="500", year=2002),
        WatchHistory(user_id=1, started_at=when, watched_on=date(2024, 5, 4), media_type="episode",
                     title="The Detail", grandparent_title="The Wire", rating_key="602",
                     grandparent_rating_key="500", year=2002),
    ]
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()


def providers():
    source = FakeSource(metadata={
        "101": ItemDescriptor(guids=["imdb://tt0113277", "tmdb://949"]),
    })
    catalog = FakeCatalog(
        search={"The Wire": "1438"},
        imdb={"1438": "tt0306414"},
        ratings={"949": 7.9, "1438": 8.6},
    )
    omdb = FakeRatings(by_imdb={
        "tt0113277": ratings("tt0113277", popular=8.3, critic=87, poster="https://img/heat.jpg"),
        "tt0306414": ratings("tt0306414", popular=9.3, critic=94),
    })
    return source, catalog, omdb


async def enrichment_rows(session_factory) -> dict[str, MediaEnrichment]:
    async with session_factory() as db:
        return {row.rating_key: row for row in (await db.scalars(select(MediaEnrichment))).all()}


@pytest.mark.asyncio
async def test_movies_and_series_are_scored(session_factory, add_users, test_settings, progress_log):
    await add_users(1)
    await seed_history(session_factory)
    source, catalog, omdb = providers()
    service = MetadataEnrichmentService(session_factory, source, catalog, omdb, settings=test_settings)

    result = await service.enrich_metadata(on_progress=progress_log)

    assert result.processed == 2
    assert result.scored == 2
    rows = await enrichment_rows(session_factory)
    assert set(rows) == {"101", "500"}

    heat = rows["101"]
    assert heat.media_type == "movie"
    assert (heat.imdb_id, heat.tmdb_id) == ("tt0113277", "949")
    assert heat.rating_imdb == 8.3
    assert heat.rating_rt_critic == 87
    assert heat.rating_tmdb == 7.9
    assert heat.unified_score == 84
    assert heat.poster == "https://img/heat.jpg"
    assert heat.omdb_response

    wire = rows["500"]
    assert wire.media_type == "series"
    assert wire.title == "The Wire"
    assert (wire.imdb_id, wire.tmdb_id) == ("tt0306414", "1438")
    assert wire.unified_score == 92

    assert progress_log.lines[0] == "INFO: Starting enrichment for 2 items."
    assert progress_log.lines[-1] == "DONE: Enrichment complete."
    assert any(line.startswith('  > Enriched "Heat": Unified Score 84') for line in progress_log.lines)


@pytest.mark.asyncio
async def test_second_run_has_nothing_to_do(session_factory, add_users, test_settings, progress_log):
    await add_users(1)
    await seed_history(session_factory)
    source, catalog, omdb = providers()
    service = MetadataEnrichmentService(session_factory, source, catalog, omdb, settings=test_settings)

    await service.enrich_metadata()
    calls = len(omdb.calls)
    result = await service.enrich_metadata(on_progress=progress_log)

    assert result.processed == 0
    assert progress_log.lines == ["INFO: No new items to enrich."]
    assert len(omdb.calls) == calls
    assert len(await enrichment_rows(session_factory)) == 2


@pytest.mark.asyncio
async def test_unscored_items_are_retried(session_factory, add_users, test_settings):
    await add_users(1)
    await seed_history(session_factory)
    source, _, _ = providers()
    service = MetadataEnrichmentService(session_factory, source, settings=test_settings)

    first = await service.enrich_metadata()
    assert first.processed == 2
    assert first.scored == 0

    rows = await enrichment_rows(session_factory)
    assert rows["101"].unified_score is None
    assert rows["101"].imdb_id == "tt0113277"

    _, catalog, omdb = providers()
    service = MetadataEnrichmentService(session_factory, source, catalog, omdb, settings=test_settings)
    second = await service.enrich_metadata()

    assert second.scored == 2
    assert len(await enrichment_rows(session_factory)) == 2


@pytest.mark.asyncio
async def test_provider_failure_drops_only_that_provider(session_factory, add_users, test_settings):
    await add_users(1)
    await seed_history(session_factory)
    source, _, omdb = providers()
    catalog = FakeCatalog(failing={"The Wire", "949"})
    omdb.by_title["The Wire"] = ratings("tt0306414", popular=9.0, critic=None)
    service = MetadataEnrichmentService(session_factory, source, catalog, omdb, settings=test_settings)

    result = await service.enrich_metadata()

    assert result.failed == 0
    rows = await enrichment_rows(session_factory)
    assert rows["500"].tmdb_id is None
    assert rows["500"].imdb_id == "tt0306414"
    assert rows["500"].unified_score == 90
    # (83 * 0.4 + 87 * 0.4) / 0.8
    assert rows["101"].rating_tmdb is None
    assert rows["101"].unified_score == 85


@pytest.mark.asyncio
async def test_unexpected_error_fails_one_item(session_factory, add_users, test_settings, progress_log):
    await add_users(1)
    await seed_history(session_factory)
    source, catalog, omdb = providers()
    omdb.broken.add("The Wire")
    service = MetadataEnrichmentService(session_factory, source, catalog, omdb, settings=test_settings)

    result = await service.enrich_metadata(on_progress=progress_log)

    assert result.failed == 1
    assert result.processed == 1
    assert "ERROR processing The Wire: unexpected payload" in progress_log.lines
    assert set(await enrichment_rows(session_factory)) == {"101"}


@pytest.mark.asyncio
async def test_plex_ratings_seed_the_score(session_factory, add_users, test_settings):
    await add_users(1)
    await seed_history(session_factory)
    source = FakeSource(metadata={
        "101": ItemDescriptor(rating=7.5, audience_rating=9.1),
        "500": ItemDescriptor(audience_rating=88.0),
    })
    service = MetadataEnrichmentService(session_factory, source, settings=test_settings)

    await service.enrich_metadata()

    rows = await enrichment_rows(session_factory)
    assert rows["101"].rating_tmdb == 7.5
    assert rows["101"].rating_rt_critic == 91
    # (91 * 0.4 + 75 * 0.2) / 0.6
    assert rows["101"].unified_score == 86
    assert rows["500"].rating_rt_critic == 88
    assert rows["500"].unified_score == 88


@pytest.mark.asyncio
async def test_store_failure_fails_only_that_item(session_factory, add_users, test_settings, progress_log):
    await add_users(1)
    await seed_history(session_factory)
    async with session_factory() as db:
        await db.execute(text(
            "CREATE TRIGGER reject_heat BEFORE INSERT ON media_enrichment "
            "WHEN NEW.title = 'Heat' BEGIN SELECT RAISE(ABORT, 'row rejected'); END"
        ))
        await db.commit()
    source, catalog, omdb = providers()
    service = MetadataEnrichmentService(session_factory, source, catalog, omdb, settings=test_settings)

    result = await service.enrich_metadata(on_progress=progress_log)

    assert (result.processed, result.failed) == (1, 1)
    assert any(line.startswith("ERROR processing Heat:") for line in progress_log.lines)
    assert progress_log.lines[-1] == "DONE: Enrichment complete."
    assert set(await enrichment_rows(session_factory)) == {"500"}
