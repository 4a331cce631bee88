"""OMDb client — IMDb rating, Rotten Tomatoes critic score and poster."""

import httpx
from typing import Optional

from plexwrapped.clients.base import AggregatorRatings, IRatingsAggregator
from plexwrapped.errors import EnrichmentProviderFailure


class OmdbClient(IRatingsAggregator):
    """OMDb API client. One request per title; no pagination."""

    BASE_URL = "https://www.omdbapi.com/"

    def __init__(
        self,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def fetch(
        self,
        title: str,
        year: Optional[int],
        kind: str,
        imdb_id: Optional[str] = None,
    ) -> Optional[AggregatorRatings]:
        """Look up by IMDb id when known, otherwise by title/year/type."""
        params: dict = {"apikey": self.api_key}
        if imdb_id:
            params["i"] = imdb_id
        else:
            params["t"] = title
            if year:
                params["y"] = year
            params["type"] = kind

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.BASE_URL, params=params)
                resp.raise_for_status()
                raw = resp.text
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EnrichmentProviderFailure(f"OMDb lookup for {imdb_id or title!r} failed: {e}") from e

        if not isinstance(data, dict) or data.get("Response") == "False":
            return None
        return self._parse(data, raw)

    @staticmethod
    def _parse(data: dict, raw: str) -> AggregatorRatings:
        """Pick out the fields the unified score needs. OMDb uses 'N/A' for missing."""
        popular = None
        if data.get("imdbRating") not in (None, "", "N/A"):
            try:
                popular = float(data["imdbRating"])
            except ValueError:
                pass

        critic = None
        for r in data.get("Ratings") or []:
            if r.get("Source") == "Rotten Tomatoes":
                try:
                    critic = int(str(r.get("Value", "")).rstrip("%"))
                except ValueError:
                    pass
                break

        imdb_id = data.get("imdbID")
        poster = data.get("Poster")
        return AggregatorRatings(
            imdb_id=imdb_id if imdb_id and imdb_id != "N/A" else None,
            popular_rating=popular,
            critic_percent=critic,
            poster_url=poster if poster and poster != "N/A" else None,
            raw=raw,
        )
