"""Abstract interfaces for watch history sources and rating providers.

These define the contracts the sync, enrichment and stats services consume.
Tautulli is the history source implementation; TMDB and OMDb are the
catalog and ratings-aggregator implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Optional


# ── Data Transfer Objects ────────────────────────────────────────

@dataclass
class HistoryEntry:
    """A single raw playback record as reported by the history source."""
    user_id: int
    timestamp: int                     # epoch seconds, start of playback
    title: str = ""
    row_id: Optional[int] = None
    media_type: str = "movie"          # "movie" | "episode"
    rating_key: Optional[str] = None
    parent_rating_key: Optional[str] = None
    grandparent_rating_key: Optional[str] = None
    parent_title: Optional[str] = None
    grandparent_title: Optional[str] = None
    full_title: Optional[str] = None
    duration: int = 0                  # seconds actually watched
    percent_complete: int = 0
    year: Optional[int] = None
    transcode_decision: Optional[str] = None
    player: Optional[str] = None


@dataclass
class ItemDescriptor:
    """Per-item metadata. Any field may be empty when the source lacks it."""
    cast: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    rating: Optional[float] = None            # critic-style, 0-10
    audience_rating: Optional[float] = None   # 0-10 (occasionally a percentage)
    file_size: Optional[int] = None           # bytes
    guids: list[str] = field(default_factory=list)
    year: Optional[int] = None

    @property
    def has_credits(self) -> bool:
        return bool(self.cast) and bool(self.genres)


@dataclass
class ServerUser:
    """A user known to the history source."""
    id: int
    username: Optional[str] = None
    email: Optional[str] = None
    thumb_url: Optional[str] = None
    is_active: bool = True


@dataclass
class AggregatorRatings:
    """What the ratings aggregator knows about one title."""
    imdb_id: Optional[str] = None
    popular_rating: Optional[float] = None    # 0-10
    critic_percent: Optional[int] = None      # 0-100
    poster_url: Optional[str] = None
    raw: Optional[str] = None                 # response body, kept for audit


# ── Abstract Interfaces ──────────────────────────────────────────

class IHistorySource(ABC):
    """Interface for watch history sources (Tautulli)."""

    @abstractmethod
    async def fetch_history(
        self,
        user_id: Optional[int],
        day: date,
        length: int = 2000,
    ) -> list[HistoryEntry]:
        """History for one day. ``user_id=None`` requests the all-users feed.

        Raises UpstreamFetchFailure when the source cannot be read.
        """
        ...

    @abstractmethod
    async def fetch_metadata(self, rating_key: str) -> Optional[ItemDescriptor]:
        """Descriptor for one item. Raises MetadataFetchFailure on error."""
        ...

    @abstractmethod
    async def check_connection(self) -> bool:
        """Test if the source is reachable and the key is accepted."""
        ...

    @abstractmethod
    async def list_users(self) -> list[ServerUser]:
        """All users the source knows about."""
        ...


class ICatalogProvider(ABC):
    """Interface for the movie/TV catalog (TMDB)."""

    @abstractmethod
    async def search_title(self, title: str, year: Optional[int], kind: str) -> Optional[str]:
        """Best-match catalog id for a title, or None."""
        ...

    @abstractmethod
    async def get_rating(self, tmdb_id: str, kind: str) -> Optional[float]:
        """Catalog vote average on a 0-10 scale."""
        ...

    @abstractmethod
    async def get_imdb_id(self, tmdb_id: str, kind: str) -> Optional[str]:
        """Cross-reference a catalog id to an IMDb id."""
        ...


class IRatingsAggregator(ABC):
    """Interface for the multi-source ratings aggregator (OMDb)."""

    @abstractmethod
    async def fetch(
        self,
        title: str,
        year: Optional[int],
        kind: str,
        imdb_id: Optional[str] = None,
    ) -> Optional[AggregatorRatings]:
        """Ratings by IMDb id when given, else by title + year."""
        ...
