"""SQLAlchemy ORM models — all database tables."""

from datetime import datetime, date
from typing import Optional
from sqlalchemy import (
    Integer, BigInteger, String, Text, Boolean, DateTime, Date, Float,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from plexwrapped.database import Base


# ── Users ────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    # Tautulli user id — assigned upstream, never generated here
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    username: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(300))
    thumb_url: Mapped[Optional[str]] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── Integration configuration (single-row tables) ────────────────

class TautulliConfig(Base):
    __tablename__ = "tautulli_config"

    id: Mapped[int] = mapped_column(primary_key=True)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False)
    api_key: Mapped[str] = mapped_column(String(100), nullable=False)
    use_ssl: Mapped[bool] = mapped_column(Boolean, default=False)
    root_path: Mapped[str] = mapped_column(String(200), default="")


class MediaConfig(Base):
    __tablename__ = "media_config"

    id: Mapped[int] = mapped_column(primary_key=True)
    tmdb_api_key: Mapped[Optional[str]] = mapped_column(String(300))
    omdb_api_key: Mapped[Optional[str]] = mapped_column(String(100))


class AiConfig(Base):
    __tablename__ = "ai_config"

    id: Mapped[int] = mapped_column(primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    api_key: Mapped[Optional[str]] = mapped_column(String(300))
    base_url: Mapped[str] = mapped_column(String(300), default="https://api.openai.com/v1")
    model: Mapped[str] = mapped_column(String(100), default="gpt-4o")
    instructions: Mapped[Optional[str]] = mapped_column(Text)


# ── Watch History ────────────────────────────────────────────────

class WatchHistory(Base):
    __tablename__ = "watch_history"
    __table_args__ = (
        Index("idx_watch_history_user_day", "user_id", "watched_on"),
        Index("idx_watch_history_rating_key", "rating_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    tautulli_id: Mapped[Optional[int]] = mapped_column(Integer)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # naive local time
    watched_on: Mapped[date] = mapped_column(Date, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=0)
    percent_complete: Mapped[int] = mapped_column(Integer, default=0)
    media_type: Mapped[str] = mapped_column(String(10), nullable=False)  # movie | episode
    title: Mapped[Optional[str]] = mapped_column(String(500))
    parent_title: Mapped[Optional[str]] = mapped_column(String(500))
    grandparent_title: Mapped[Optional[str]] = mapped_column(String(500))
    full_title: Mapped[Optional[str]] = mapped_column(String(1000))
    rating_key: Mapped[Optional[str]] = mapped_column(String(50))
    parent_rating_key: Mapped[Optional[str]] = mapped_column(String(50))
    grandparent_rating_key: Mapped[Optional[str]] = mapped_column(String(50))
    year: Mapped[Optional[int]] = mapped_column(Integer)
    actors: Mapped[Optional[str]] = mapped_column(Text)       # comma-joined, credit order
    genres: Mapped[Optional[str]] = mapped_column(Text)       # comma-joined
    rating: Mapped[Optional[float]] = mapped_column(Float)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger)
    transcode_decision: Mapped[Optional[str]] = mapped_column(String(20))  # direct | transcode | copy
    player: Mapped[Optional[str]] = mapped_column(String(200))


class SyncLog(Base):
    """Day checkpoint — one row per (user, calendar day) once imported."""
    __tablename__ = "sync_log"
    __table_args__ = (
        UniqueConstraint("user_id", "day"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)


# ── Metadata enrichment ──────────────────────────────────────────

class MediaEnrichment(Base):
    __tablename__ = "media_enrichment"

    id: Mapped[int] = mapped_column(primary_key=True)
    rating_key: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    media_type: Mapped[str] = mapped_column(String(10), nullable=False)  # movie | series
    imdb_id: Mapped[Optional[str]] = mapped_column(String(20))
    tmdb_id: Mapped[Optional[str]] = mapped_column(String(20))
    rating_imdb: Mapped[Optional[float]] = mapped_column(Float)        # 0-10
    rating_rt_critic: Mapped[Optional[int]] = mapped_column(Integer)   # 0-100
    rating_tmdb: Mapped[Optional[float]] = mapped_column(Float)        # 0-10
    unified_score: Mapped[Optional[int]] = mapped_column(Integer)      # 0-100
    poster: Mapped[Optional[str]] = mapped_column(String(500))
    omdb_response: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )


# ── Stats cache ──────────────────────────────────────────────────

class StatsCache(Base):
    __tablename__ = "stats_cache"
    __table_args__ = (
        UniqueConstraint("user_id", "period_start", "period_end"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    document: Mapped[str] = mapped_column(Text, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
