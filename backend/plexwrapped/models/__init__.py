"""Re-export all SQLAlchemy models for Alembic and import convenience."""

from plexwrapped.models.tables import (  # noqa: F401
    User,
    TautulliConfig, MediaConfig, AiConfig,
    WatchHistory, SyncLog,
    MediaEnrichment,
    StatsCache,
)
