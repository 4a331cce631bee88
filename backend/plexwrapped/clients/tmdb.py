"""TMDB client — catalog lookups for metadata enrichment and cast portraits.

Handles: title search, vote averages, IMDb cross-references, person search.
"""

import httpx
from typing import Optional

from plexwrapped.clients.base import ICatalogProvider
from plexwrapped.errors import EnrichmentProviderFailure


class TmdbClient(ICatalogProvider):
    """The Movie Database API v3 client."""

    BASE_URL = "https://api.themoviedb.org/3"
    IMAGE_BASE = "https://image.tmdb.org/t/p"

    def __init__(
        self,
        api_key: str,
        language: str = "en-US",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.language = language
        self.timeout = timeout
        self._transport = transport
        # Detect auth mode: JWT (v4 bearer) vs plain key (v3 query param)
        self._is_bearer = api_key.startswith("eyJ")

    def auth(self, params: dict | None = None) -> tuple[dict, dict]:
        """Query params and headers for one request.

        Supports both v3 (api_key query param) and v4 (Bearer token header).
        """
        all_params = dict(params or {})
        headers = {}
        if self._is_bearer:
            headers["Authorization"] = f"Bearer {self.api_key}"
        else:
            all_params["api_key"] = self.api_key
        return all_params, headers

    async def _get(self, path: str, params: dict | None = None) -> dict:
        """Make authenticated GET request to TMDB.

        Any transport or status failure surfaces as EnrichmentProviderFailure.
        """
        all_params, headers = self.auth({"language": self.language, **(params or {})})

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.BASE_URL}{path}", params=all_params, headers=headers)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EnrichmentProviderFailure(f"TMDB {path} failed: {e}") from e

    @staticmethod
    def _endpoint(kind: str) -> str:
        return "tv" if kind == "series" else "movie"

    # ── ICatalogProvider implementation ──────────────────────────

    async def search_title(self, title: str, year: Optional[int], kind: str) -> Optional[str]:
        """Search by title (localized titles included); first hit wins."""
        params: dict = {"query": title}
        if year:
            params["first_air_date_year" if kind == "series" else "year"] = year
        data = await self._get(f"/search/{self._endpoint(kind)}", params)
        results = data.get("results", [])
        if results:
            return str(results[0]["id"])
        return None

    async def get_rating(self, tmdb_id: str, kind: str) -> Optional[float]:
        """Vote average (0-10). A zero average means 'no votes'."""
        data = await self._get(f"/{self._endpoint(kind)}/{tmdb_id}")
        return data.get("vote_average") or None

    async def get_imdb_id(self, tmdb_id: str, kind: str) -> Optional[str]:
        """Resolve a TMDB id to its IMDb id."""
        data = await self._get(f"/{self._endpoint(kind)}/{tmdb_id}/external_ids")
        return data.get("imdb_id") or None

    # ── People ───────────────────────────────────────────────────

    async def search_person_image(self, name: str) -> Optional[str]:
        """Portrait URL of the best match for an actor name."""
        data = await self._get("/search/person", {"query": name})
        results = data.get("results", [])
        if results and results[0].get("profile_path"):
            return self.profile_url(results[0]["profile_path"])
        return None

    # ── Test connection ──────────────────────────────────────────

    async def test_connection(self) -> bool:
        """Test TMDB API key validity."""
        try:
            await self._get("/configuration")
            return True
        except EnrichmentProviderFailure:
            return False

    # ── Image URL helpers ────────────────────────────────────────

    @classmethod
    def profile_url(cls, path: Optional[str], size: str = "w185") -> Optional[str]:
        """Build full profile image URL from TMDB path."""
        if not path:
            return None
        return f"{cls.IMAGE_BASE}/{size}{path}"
