import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from plexwrapped.clients.base import ItemDescriptor
from plexwrapped.dates import local_datetime, local_today, zone
from plexwrapped.errors import Cancelled, UpstreamFetchFailure
from plexwrapped.models.tables import SyncLog, WatchHistory
from plexwrapped.services.history_sync import HistorySyncService

from fakes import FakeSource, entry, ts

FEB_28 = date(2024, 2, 28)
FEB_29 = date(2024, 2, 29)
MAR_1 = date(2024, 3, 1)


def three_day_source() -> FakeSource:
    return FakeSource(
        history={
            FEB_28: [entry(1, FEB_28, "101", "Heat")],
            FEB_29: [entry(1, FEB_29, "102", "Ronin")],
            MAR_1: [entry(1, MAR_1, "103", "Collateral")],
        },
        metadata={
            "101": ItemDescriptor(cast=["Al Pacino", "Robert De Niro"], genres=["Crime"], rating=8.3),
            "102": ItemDescriptor(cast=["Robert De Niro"], genres=["Action"], audience_rating=7.4),
            "103": ItemDescriptor(cast=["Tom Cruise"], genres=["Thriller"], file_size=4_000_000_000),
        },
    )


async def count_rows(session_factory, model, **filters) -> int:
    async with session_factory() as db:
        stmt = select(func.count()).select_from(model)
        for name, value in filters.items():
            stmt = stmt.where(getattr(model, name) == value)
        return await db.scalar(stmt)


@pytest.mark.asyncio
async def test_second_run_skips_checkpointed_days(session_factory, add_users, test_settings):
    await add_users(1)
    service = HistorySyncService(session_factory, three_day_source(), settings=test_settings)

    first = await service.sync_user_history(1, FEB_28, MAR_1)
    assert first.days_imported == 3
    assert first.total_events_imported == 3
    assert await count_rows(session_factory, WatchHistory) == 3

    second = await service.sync_user_history(1, FEB_28, MAR_1)
    assert second.days_imported == 0
    assert second.total_events_imported == 0
    assert await count_rows(session_factory, WatchHistory) == 3


@pytest.mark.asyncio
async def test_force_reimports_every_day(session_factory, add_users, test_settings):
    await add_users(1)
    source = three_day_source()
    service = HistorySyncService(session_factory, source, settings=test_settings)

    await service.sync_user_history(1, FEB_28, MAR_1)
    forced = await service.sync_user_history(1, FEB_28, MAR_1, force=True)

    assert forced.days_imported == 3
    assert await count_rows(session_factory, WatchHistory) == 3
    assert await count_rows(session_factory, SyncLog, completed=True) == 3
    assert len(source.history_calls) == 6


@pytest.mark.asyncio
async def test_today_is_never_checkpointed(session_factory, add_users, test_settings):
    await add_users(1)
    today = local_today(zone("UTC"))
    yesterday = today - timedelta(days=1)
    source = FakeSource(history={
        yesterday: [entry(1, yesterday, "201", "Alien", hour=12)],
        today: [entry(1, today, "202", "Aliens", hour=0)],
    })
    service = HistorySyncService(session_factory, source, settings=test_settings)

    result = await service.sync_user_history(1, yesterday, today)
    assert result.days_imported == 1
    assert result.total_events_imported == 2
    assert await count_rows(session_factory, SyncLog, day=today) == 0

    source.history_calls.clear()
    again = await service.sync_user_history(1, yesterday, today)
    assert source.history_calls == [(1, today)]
    assert again.days_imported == 0
    assert await count_rows(session_factory, WatchHistory, watched_on=today) == 1


@pytest.mark.asyncio
async def test_future_days_are_never_checkpointed(session_factory, add_users, test_settings):
    await add_users(1)
    today = local_today(zone("UTC"))
    tomorrow = today + timedelta(days=1)
    source = FakeSource()
    service = HistorySyncService(session_factory, source, settings=test_settings)

    result = await service.sync_user_history(1, today, tomorrow)
    assert result.days_imported == 0
    assert await count_rows(session_factory, SyncLog) == 0

    source.history[tomorrow] = [entry(1, tomorrow, "203", "Alien 3", hour=1)]
    await service.sync_user_history(1, tomorrow, tomorrow)
    assert await count_rows(session_factory, WatchHistory, watched_on=tomorrow) == 1


@pytest.mark.asyncio
async def test_forced_resync_replaces_the_days_rows(session_factory, add_users, test_settings):
    await add_users(1)
    service = HistorySyncService(session_factory, three_day_source(), settings=test_settings)
    await service.sync_user_history(1, FEB_29, FEB_29)

    async with session_factory() as db:
        db.add(WatchHistory(
            user_id=1, started_at=local_datetime(ts(FEB_29, 9), zone("UTC")), watched_on=FEB_29,
            media_type="movie", title="Stray", rating_key="999",
        ))
        await db.commit()
    assert await count_rows(session_factory, WatchHistory, watched_on=FEB_29) == 2

    await service.sync_user_history(1, FEB_29, FEB_29, force=True)

    assert await count_rows(session_factory, WatchHistory, watched_on=FEB_29) == 1
    assert await count_rows(session_factory, WatchHistory, title="Stray") == 0


@pytest.mark.asyncio
async def test_rows_carry_metadata_and_clamped_values(session_factory, add_users, test_settings):
    await add_users(1)
    source = FakeSource(
        history={FEB_28: [entry(1, FEB_28, "101", "Heat", duration=-5, percent_complete=140,
                                transcode_decision="transcode", player="Living Room")]},
        metadata={"101": ItemDescriptor(cast=["Al Pacino", "Robert De Niro"], genres=["Crime", "Drama"],
                                        audience_rating=7.9, file_size=8_000_000_000)},
    )
    service = HistorySyncService(session_factory, source, settings=test_settings)
    await service.sync_user_history(1, FEB_28, FEB_28)

    async with session_factory() as db:
        row = await db.scalar(select(WatchHistory))
    assert row.actors == "Al Pacino,Robert De Niro"
    assert row.genres == "Crime,Drama"
    assert row.rating == 7.9
    assert row.file_size == 8_000_000_000
    assert row.duration == 0
    assert row.percent_complete == 100
    assert row.transcode_decision == "transcode"
    assert row.player == "Living Room"
    assert row.watched_on == FEB_28
    assert row.started_at.hour == 20


@pytest.mark.asyncio
async def test_out_of_day_entries_are_dropped(session_factory, add_users, test_settings, progress_log):
    await add_users(1)
    source = FakeSource(history={
        MAR_1: [
            entry(1, MAR_1, "101", "Heat"),
            entry(1, FEB_29, "102", "Ronin", hour=23, minute=30),
        ],
    })
    service = HistorySyncService(session_factory, source, settings=test_settings)

    result = await service.sync_user_history(1, MAR_1, MAR_1, on_progress=progress_log)

    assert result.total_events_imported == 1
    assert not any(line.startswith("WARN:") for line in progress_log.lines)


@pytest.mark.asyncio
async def test_far_out_of_day_entries_warn(session_factory, add_users, test_settings, progress_log):
    await add_users(1)
    far = MAR_1 - timedelta(days=5)
    source = FakeSource(history={
        MAR_1: [entry(1, MAR_1, "101", "Heat"), entry(1, far, "102", "Ronin")],
    })
    service = HistorySyncService(session_factory, source, settings=test_settings)

    await service.sync_user_history(1, MAR_1, MAR_1, on_progress=progress_log)

    warnings = [line for line in progress_log.lines if line.startswith("WARN:")]
    assert len(warnings) == 1
    assert "2024-03-01" in warnings[0]
    assert await count_rows(session_factory, WatchHistory) == 1


@pytest.mark.asyncio
async def test_metadata_is_fetched_once_and_reused(session_factory, add_users, test_settings):
    await add_users(1)
    source = FakeSource(
        history={
            FEB_28: [entry(1, FEB_28, "101", "Heat", hour=10), entry(1, FEB_28, "101", "Heat", hour=21)],
            FEB_29: [entry(1, FEB_29, "101", "Heat")],
        },
        metadata={"101": ItemDescriptor(cast=["Al Pacino"], genres=["Crime"])},
    )
    service = HistorySyncService(session_factory, source, settings=test_settings)

    await service.sync_user_history(1, FEB_28, FEB_29)

    assert source.metadata_calls == ["101"]
    async with session_factory() as db:
        actors = (await db.scalars(select(WatchHistory.actors))).all()
    assert actors == ["Al Pacino"] * 3


@pytest.mark.asyncio
async def test_stored_separators_alone_are_not_reused(session_factory, add_users, test_settings):
    await add_users(1)
    async with session_factory() as db:
        db.add(WatchHistory(
            user_id=1, started_at=local_datetime(ts(FEB_28, 9), zone("UTC")), watched_on=FEB_28,
            media_type="movie", title="Heat", rating_key="101", actors=",", genres=",",
        ))
        await db.commit()
    source = FakeSource(
        history={FEB_29: [entry(1, FEB_29, "101", "Heat")]},
        metadata={"101": ItemDescriptor(cast=["Al Pacino"], genres=["Crime"])},
    )
    service = HistorySyncService(session_factory, source, settings=test_settings)

    await service.sync_user_history(1, FEB_29, FEB_29)

    assert source.metadata_calls == ["101"]
    async with session_factory() as db:
        row = await db.scalar(select(WatchHistory).where(WatchHistory.watched_on == FEB_29))
    assert row.actors == "Al Pacino"


@pytest.mark.asyncio
async def test_metadata_failure_stores_bare_entry(session_factory, add_users, test_settings):
    await add_users(1)
    source = FakeSource(history={FEB_28: [entry(1, FEB_28, "101", "Heat")]})
    source.fail_metadata.add("101")
    service = HistorySyncService(session_factory, source, settings=test_settings)

    result = await service.sync_user_history(1, FEB_28, FEB_28)

    assert result.days_imported == 1
    async with session_factory() as db:
        row = await db.scalar(select(WatchHistory))
    assert row.title == "Heat"
    assert row.actors is None
    assert row.genres is None


@pytest.mark.asyncio
async def test_cancel_before_start_raises(session_factory, add_users, test_settings):
    await add_users(1)
    source = three_day_source()
    service = HistorySyncService(session_factory, source, settings=test_settings)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(Cancelled):
        await service.sync_user_history(1, FEB_28, MAR_1, cancel=cancel)
    assert source.history_calls == []


@pytest.mark.asyncio
async def test_cancel_mid_range_keeps_finished_days(session_factory, add_users, test_settings):
    await add_users(1)
    source = three_day_source()
    cancel = asyncio.Event()
    source.after_fetch = lambda day: cancel.set() if day == FEB_29 else None
    service = HistorySyncService(session_factory, source, settings=test_settings)

    with pytest.raises(Cancelled):
        await service.sync_user_history(1, FEB_28, MAR_1, cancel=cancel)

    # Feb 29 was fetched but its metadata batch saw the cancel
    assert await count_rows(session_factory, SyncLog, day=FEB_28) == 1
    assert await count_rows(session_factory, SyncLog, day=FEB_29) == 0
    assert (1, MAR_1) not in source.history_calls


@pytest.mark.asyncio
async def test_upstream_failure_aborts_range(session_factory, add_users, test_settings):
    await add_users(1)
    source = three_day_source()
    source.fail_days.add(FEB_29)
    invalidated = []

    async def on_synced(user_ids):
        invalidated.extend(user_ids)

    service = HistorySyncService(session_factory, source, on_synced=on_synced, settings=test_settings)

    with pytest.raises(UpstreamFetchFailure):
        await service.sync_user_history(1, FEB_28, MAR_1)

    assert await count_rows(session_factory, SyncLog, day=FEB_28) == 1
    assert (1, MAR_1) not in source.history_calls
    assert invalidated == []


@pytest.mark.asyncio
async def test_success_publishes_invalidation(session_factory, add_users, test_settings):
    await add_users(1)
    invalidated = []

    async def on_synced(user_ids):
        invalidated.append(list(user_ids))

    service = HistorySyncService(session_factory, three_day_source(), on_synced=on_synced, settings=test_settings)
    await service.sync_user_history(1, FEB_28, MAR_1)

    assert invalidated == [[1]]


@pytest.mark.asyncio
async def test_progress_lines(session_factory, add_users, test_settings, progress_log):
    await add_users(1)
    service = HistorySyncService(session_factory, three_day_source(), settings=test_settings)

    await service.sync_user_history(1, FEB_28, MAR_1, on_progress=progress_log)

    lines = progress_log.lines
    assert lines[0].startswith("INFO:")
    assert [l for l in lines if l.startswith("MONTH_START:")] == [
        "MONTH_START:February 2024", "MONTH_START:March 2024",
    ]
    assert [l for l in lines if l.startswith("PROGRESS:")] == ["PROGRESS:33", "PROGRESS:67", "PROGRESS:100"]
