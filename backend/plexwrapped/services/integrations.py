"""Build integration clients from the admin-managed config tables."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from plexwrapped.clients.omdb import OmdbClient
from plexwrapped.clients.tautulli import TautulliClient
from plexwrapped.clients.tmdb import TmdbClient
from plexwrapped.config import Settings, settings as default_settings
from plexwrapped.errors import ConfigurationMissing
from plexwrapped.models.tables import AiConfig, MediaConfig, TautulliConfig


async def load_tautulli_config(db: AsyncSession) -> Optional[TautulliConfig]:
    return await db.scalar(select(TautulliConfig).limit(1))


async def load_media_config(db: AsyncSession) -> Optional[MediaConfig]:
    return await db.scalar(select(MediaConfig).limit(1))


async def load_ai_config(db: AsyncSession) -> Optional[AiConfig]:
    return await db.scalar(select(AiConfig).limit(1))


async def load_history_source(
    db: AsyncSession,
    settings: Settings = default_settings,
) -> TautulliClient:
    """The configured Tautulli client. Raises ConfigurationMissing if unset."""
    config = await load_tautulli_config(db)
    if config is None:
        raise ConfigurationMissing("Tautulli configuration missing")
    return TautulliClient.from_config(config, timeout=settings.http_timeout)


async def load_catalog(db: AsyncSession) -> Optional[TmdbClient]:
    config = await load_media_config(db)
    if config is None or not config.tmdb_api_key:
        return None
    return TmdbClient(config.tmdb_api_key)


async def load_ratings(db: AsyncSession) -> Optional[OmdbClient]:
    config = await load_media_config(db)
    if config is None or not config.omdb_api_key:
        return None
    return OmdbClient(config.omdb_api_key)
