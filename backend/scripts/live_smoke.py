"""Live integration smoke check — runs against actual services.

Usage: python backend/scripts/live_smoke.py
NOT for CI — requires live Tautulli, TMDB and OMDb access.
"""

import asyncio
import os
from datetime import date, timedelta

from plexwrapped.clients.omdb import OmdbClient
from plexwrapped.clients.tautulli import TautulliClient
from plexwrapped.clients.tmdb import TmdbClient
from plexwrapped.errors import WrappedError
from plexwrapped.services.enrichment import compute_unified_score, extract_external_ids


async def check_tautulli(client: TautulliClient):
    """Connection, users, yesterday's feed and one item's metadata."""
    print("\n═══ TAUTULLI ═══")
    ok = await client.check_connection()
    print(f"  Connection: {'✅' if ok else '❌'}")
    if not ok:
        return

    users = await client.list_users()
    print(f"  Users: {len(users)}")
    for u in users[:10]:
        print(f"    [{u.id}] {u.username}{'' if u.is_active else ' (inactive)'}")

    day = date.today() - timedelta(days=1)
    history = await client.fetch_history(None, day, length=50)
    print(f"  History for {day} ({len(history)} entries):")
    for h in history[:5]:
        print(f"    user={h.user_id} key={h.rating_key} {h.percent_complete}% ({h.media_type}) {h.full_title or h.title}")

    keyed = [h for h in history if h.rating_key]
    if keyed:
        meta = await client.fetch_metadata(keyed[0].rating_key)
        if meta is None:
            print("  Metadata: (empty)")
        else:
            imdb_id, tmdb_id = extract_external_ids(meta.guids)
            print(f"  Metadata for {keyed[0].rating_key}:")
            print(f"    Cast: {meta.cast[:3]}")
            print(f"    Genres: {meta.genres}")
            print(f"    IMDb={imdb_id} TMDB={tmdb_id} size={meta.file_size}")


async def check_tmdb(api_key: str):
    client = TmdbClient(api_key)
    print("\n═══ TMDB ═══")
    ok = await client.test_connection()
    print(f"  Connection: {'✅' if ok else '❌'}")
    if not ok:
        return

    tmdb_id = await client.search_title("Oppenheimer", 2023, "movie")
    print(f"  Search: Oppenheimer → {tmdb_id}")
    if tmdb_id:
        print(f"    Rating: {await client.get_rating(tmdb_id, 'movie')}")
        print(f"    IMDb: {await client.get_imdb_id(tmdb_id, 'movie')}")
    print(f"  Portrait: {await client.search_person_image('Cillian Murphy')}")


async def check_omdb(api_key: str):
    client = OmdbClient(api_key)
    print("\n═══ OMDB ═══")
    try:
        ratings = await client.fetch("Oppenheimer", 2023, "movie")
    except WrappedError as e:
        print(f"  Connection: ❌ ({e})")
        return
    if ratings is None:
        print("  Lookup: no match")
        return
    print(f"  Lookup: {ratings.imdb_id} IMDb={ratings.popular_rating} RT={ratings.critic_percent}%")
    print(f"  Unified score: {compute_unified_score(ratings.popular_rating, ratings.critic_percent, None)}")


async def main():
    print("╔══════════════════════════════════════════════════╗")
    print("║  PLEX WRAPPED — Live Integration Smoke Check    ║")
    print("╚══════════════════════════════════════════════════╝")

    tautulli_host = os.environ.get("TAUTULLI_HOST", "localhost")
    tautulli_port = int(os.environ.get("TAUTULLI_PORT", "8181"))
    tautulli_key = os.environ.get("TAUTULLI_API_KEY", "")
    tmdb_key = os.environ.get("TMDB_API_KEY", "")
    omdb_key = os.environ.get("OMDB_API_KEY", "")

    if tautulli_key:
        await check_tautulli(TautulliClient(tautulli_host, tautulli_port, tautulli_key))
    else:
        print("\n═══ TAUTULLI ═══\n  ⏭ Skipped (TAUTULLI_API_KEY not set)")

    if tmdb_key:
        await check_tmdb(tmdb_key)
    else:
        print("\n═══ TMDB ═══\n  ⏭ Skipped (TMDB_API_KEY not set)")

    if omdb_key:
        await check_omdb(omdb_key)
    else:
        print("\n═══ OMDB ═══\n  ⏭ Skipped (OMDB_API_KEY not set)")

    print("\n══════════════════════════════════════════════════")
    print("Done. Review results above for any ❌ failures.")


if __name__ == "__main__":
    asyncio.run(main())
