import httpx
import pytest

from plexwrapped.clients.llm import LlmClient
from plexwrapped.clients.omdb import OmdbClient
from plexwrapped.clients.tmdb import TmdbClient
from plexwrapped.errors import AIGenerationFailure, EnrichmentProviderFailure

OMDB_HEAT = {
    "Title": "Heat", "Year": "1995", "imdbID": "tt0113277", "imdbRating": "8.3",
    "Poster": "https://m.media-amazon.com/heat.jpg",
    "Ratings": [
        {"Source": "Internet Movie Database", "Value": "8.3/10"},
        {"Source": "Rotten Tomatoes", "Value": "88%"},
    ],
    "Response": "True",
}


@pytest.mark.asyncio
async def test_omdb_lookup_by_imdb_id():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json=OMDB_HEAT)

    client = OmdbClient("key", transport=httpx.MockTransport(handler))
    found = await client.fetch("Heat", 1995, "movie", imdb_id="tt0113277")

    assert seen["i"] == "tt0113277"
    assert "t" not in seen
    assert (found.imdb_id, found.popular_rating, found.critic_percent) == ("tt0113277", 8.3, 88)
    assert found.poster_url == "https://m.media-amazon.com/heat.jpg"
    assert '"imdbID"' in found.raw


@pytest.mark.asyncio
async def test_omdb_title_search_and_missing_values():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json={"imdbID": "tt0306414", "imdbRating": "N/A", "Poster": "N/A", "Response": "True"})

    client = OmdbClient("key", transport=httpx.MockTransport(handler))
    found = await client.fetch("The Wire", None, "series")

    assert (seen["t"], seen["type"]) == ("The Wire", "series")
    assert "y" not in seen
    assert found.popular_rating is None
    assert found.critic_percent is None
    assert found.poster_url is None


@pytest.mark.asyncio
async def test_omdb_no_match_and_failure():
    not_found = OmdbClient("key", transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"Response": "False", "Error": "Movie not found!"})
    ))
    rejected = OmdbClient("key", transport=httpx.MockTransport(lambda request: httpx.Response(401)))

    assert await not_found.fetch("Nothing", None, "movie") is None
    with pytest.raises(EnrichmentProviderFailure):
        await rejected.fetch("Heat", 1995, "movie")


@pytest.mark.asyncio
async def test_tmdb_lookups():
    def handler(request):
        path = request.url.path
        if path == "/3/search/tv":
            assert request.url.params["first_air_date_year"] == "2002"
            return httpx.Response(200, json={"results": [{"id": 1438}]})
        if path == "/3/tv/1438":
            return httpx.Response(200, json={"vote_average": 8.6})
        if path == "/3/tv/1438/external_ids":
            return httpx.Response(200, json={"imdb_id": "tt0306414"})
        if path == "/3/search/person":
            return httpx.Response(200, json={"results": [{"profile_path": "/west.jpg"}]})
        return httpx.Response(404)

    client = TmdbClient("plainkey", transport=httpx.MockTransport(handler))

    assert await client.search_title("The Wire", 2002, "series") == "1438"
    assert await client.get_rating("1438", "series") == 8.6
    assert await client.get_imdb_id("1438", "series") == "tt0306414"
    assert await client.search_person_image("Dominic West") == "https://image.tmdb.org/t/p/w185/west.jpg"


@pytest.mark.asyncio
async def test_tmdb_auth_modes_and_failures():
    seen = []

    def handler(request):
        seen.append((request.headers.get("authorization"), request.url.params.get("api_key")))
        return httpx.Response(200, json={"results": []})

    bearer = TmdbClient("eyJhbGciOi.token", transport=httpx.MockTransport(handler))
    plain = TmdbClient("plainkey", transport=httpx.MockTransport(handler))
    await bearer.search_title("Heat", None, "movie")
    await plain.search_title("Heat", None, "movie")

    assert seen == [("Bearer eyJhbGciOi.token", None), (None, "plainkey")]

    broken = TmdbClient("plainkey", transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    with pytest.raises(EnrichmentProviderFailure):
        await broken.get_rating("949", "movie")


@pytest.mark.asyncio
async def test_llm_completion():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.read()
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Touch grass.  "}}]})

    client = LlmClient("https://llm.local/v1/", "sk-test", model="gpt-4o-mini", transport=httpx.MockTransport(handler))

    assert await client.complete("Be mean.", "stats") == "Touch grass."
    assert seen["url"] == "https://llm.local/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert b'"gpt-4o-mini"' in seen["body"]


@pytest.mark.asyncio
async def test_llm_failures():
    empty = LlmClient("https://llm.local/v1", "sk", transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": []})
    ))
    down = LlmClient("https://llm.local/v1", "sk", transport=httpx.MockTransport(
        lambda request: httpx.Response(502)
    ))

    with pytest.raises(AIGenerationFailure):
        await empty.complete("s", "u")
    with pytest.raises(AIGenerationFailure):
        await down.complete("s", "u")
