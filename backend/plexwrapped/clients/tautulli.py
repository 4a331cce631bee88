"""Tautulli client — IHistorySource implementation.

Handles: per-day watch history, item metadata, user list, connection check.
Every failure is translated into the application's error types here so the
sync services never see raw httpx exceptions.
"""

import httpx
import logging
from datetime import date
from typing import Optional

from plexwrapped.clients.base import HistoryEntry, IHistorySource, ItemDescriptor, ServerUser
from plexwrapped.errors import MetadataFetchFailure, UpstreamFetchFailure

logger = logging.getLogger(__name__)


class TautulliError(Exception):
    """Tautulli answered, but not with a usable success envelope."""


class TautulliClient(IHistorySource):
    """Tautulli API v2 implementation of IHistorySource."""

    def __init__(
        self,
        host: str,
        port: int,
        api_key: str,
        use_ssl: bool = False,
        root_path: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        protocol = "https" if use_ssl else "http"
        root = (root_path or "").strip()
        if root:
            if not root.startswith("/"):
                root = "/" + root
            root = root.rstrip("/")
        self.url = f"{protocol}://{host}:{port}{root}"
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config, timeout: float = 30.0) -> "TautulliClient":
        """Build from a TautulliConfig row."""
        return cls(
            host=config.host,
            port=config.port,
            api_key=config.api_key,
            use_ssl=config.use_ssl,
            root_path=config.root_path or "",
            timeout=timeout,
        )

    async def _get(self, cmd: str, params: dict | None = None):
        """Make authenticated GET request to Tautulli API v2.

        Returns the ``response.data`` payload. Raises httpx.HTTPError on
        transport/status problems and TautulliError on a failure envelope.
        """
        all_params = {
            "apikey": self.api_key,
            "cmd": cmd,
            **(params or {}),
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.get(f"{self.url}/api/v2", params=all_params)
            resp.raise_for_status()
            try:
                body = resp.json()
            except ValueError as e:
                raise TautulliError(f"Malformed response to {cmd}") from e

        response = body.get("response", {}) if isinstance(body, dict) else {}
        if response.get("result") != "success":
            raise TautulliError(f"Tautulli API Error: {response.get('message')}")
        return response.get("data")

    # ── IHistorySource implementation ────────────────────────────

    async def fetch_history(
        self,
        user_id: Optional[int],
        day: date,
        length: int = 2000,
    ) -> list[HistoryEntry]:
        """Pull one day of history, oldest first.

        Tautulli's ``start_date`` filter is loose around midnight, so callers
        must still filter the result to the exact day.
        """
        params: dict = {
            "grouping": 1,
            "include_activity": 0,
            "start_date": day.isoformat(),
            "length": length,
            "order_column": "date",
            "order_dir": "asc",
        }
        if user_id is not None:
            params["user_id"] = user_id

        try:
            data = await self._get("get_history", params)
        except (httpx.HTTPError, TautulliError) as e:
            raise UpstreamFetchFailure(f"Failed to fetch history for {day.isoformat()}: {e}") from e

        # Tautulli returns either {"data": [...]} or a bare list
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            records = data["data"]
        elif isinstance(data, list):
            records = data
        else:
            records = []

        entries = []
        for r in records:
            entry = self._parse_history_record(r)
            if entry is not None:
                entries.append(entry)
        return entries

    async def fetch_metadata(self, rating_key: str) -> Optional[ItemDescriptor]:
        """Item metadata: cast, genres, ratings, file size, external guids."""
        try:
            data = await self._get("get_metadata", {"rating_key": rating_key})
        except (httpx.HTTPError, TautulliError) as e:
            raise MetadataFetchFailure(f"Failed to fetch metadata for {rating_key}: {e}") from e
        if not data or not isinstance(data, dict):
            return None
        return self._parse_metadata(data)

    async def check_connection(self) -> bool:
        """Test Tautulli reachability."""
        try:
            await self._get("status")
            return True
        except (httpx.HTTPError, TautulliError) as e:
            logger.warning(f"Tautulli connection check failed: {e}")
            return False

    async def list_users(self) -> list[ServerUser]:
        """Get Tautulli user list with IDs and names."""
        try:
            data = await self._get("get_users")
        except (httpx.HTTPError, TautulliError) as e:
            raise UpstreamFetchFailure(f"Failed to fetch users: {e}") from e
        if not isinstance(data, list):
            return []
        return [
            ServerUser(
                id=int(u["user_id"]),
                username=u.get("username"),
                email=u.get("email"),
                thumb_url=u.get("user_thumb"),
                # Tautulli reports is_active as 1/0
                is_active=u.get("is_active") in (1, True, "1"),
            )
            for u in data
            if u.get("user_id") is not None
        ]

    # ── Internal helpers ─────────────────────────────────────────

    @staticmethod
    def _parse_history_record(r: dict) -> Optional[HistoryEntry]:
        """Parse a single Tautulli history record."""
        try:
            timestamp = int(r["date"])
            user_id = int(r["user_id"])
        except (KeyError, TypeError, ValueError):
            return None

        return HistoryEntry(
            user_id=user_id,
            timestamp=timestamp,
            title=r.get("title") or "",
            row_id=_int_or_none(r.get("row_id") or r.get("id")),
            media_type=r.get("media_type", "movie"),
            rating_key=_str_or_none(r.get("rating_key")),
            parent_rating_key=_str_or_none(r.get("parent_rating_key")),
            grandparent_rating_key=_str_or_none(r.get("grandparent_rating_key")),
            parent_title=r.get("parent_title") or None,
            grandparent_title=r.get("grandparent_title") or None,
            full_title=r.get("full_title") or None,
            duration=_int_or_none(r.get("duration")) or 0,
            percent_complete=_int_or_none(r.get("percent_complete")) or 0,
            year=_int_or_none(r.get("year")),
            transcode_decision=normalize_transcode(r.get("transcode_decision")),
            player=r.get("player") or None,
        )

    @staticmethod
    def _parse_metadata(data: dict) -> ItemDescriptor:
        """Normalize a get_metadata payload.

        Genres arrive either as plain strings or as ``{"tag": ...}`` objects;
        guids either as strings or as ``{"id": ...}`` objects.
        """
        genres = []
        for g in data.get("genres") or []:
            name = g.get("tag") if isinstance(g, dict) else g
            if isinstance(name, str) and name.strip():
                genres.append(name.strip())

        cast = [a.strip() for a in data.get("actors") or [] if isinstance(a, str) and a.strip()]

        guids = []
        for g in data.get("guids") or []:
            value = g.get("id") if isinstance(g, dict) else g
            if isinstance(value, str):
                guids.append(value)
        if isinstance(data.get("guid"), str):
            guids.append(data["guid"])

        file_size = None
        try:
            file_size = int(data["media_info"][0]["parts"][0]["file_size"])
        except (KeyError, IndexError, TypeError, ValueError):
            pass

        return ItemDescriptor(
            cast=cast,
            genres=genres,
            rating=_float_or_none(data.get("rating")),
            audience_rating=_float_or_none(data.get("audience_rating")),
            file_size=file_size,
            guids=guids,
            year=_int_or_none(data.get("year")),
        )


def normalize_transcode(value: Optional[str]) -> Optional[str]:
    """Map Tautulli's decision strings onto direct | transcode | copy."""
    if not value:
        return None
    value = value.strip().lower()
    if value == "transcode":
        return "transcode"
    if value == "copy":
        return "copy"
    if value.startswith("direct"):
        return "direct"
    return value


def _int_or_none(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _float_or_none(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _str_or_none(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
