"""Setup endpoints — Tautulli connection, media keys and AI settings."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Optional

from plexwrapped.api.deps import get_settings, require_admin
from plexwrapped.clients.tautulli import TautulliClient
from plexwrapped.config import Settings
from plexwrapped.database import get_db, get_session_factory
from plexwrapped.models.tables import AiConfig, MediaConfig, TautulliConfig, User
from plexwrapped.services.integrations import (
    load_ai_config, load_media_config, load_tautulli_config,
)
from plexwrapped.services.users import sync_users

router = APIRouter()


class TautulliSetup(BaseModel):
    host: str = Field(min_length=1)
    port: int = Field(gt=0, lt=65536)
    api_key: str = Field(min_length=1)
    use_ssl: bool = False
    root_path: str = ""


class MediaSetup(BaseModel):
    tmdb_api_key: Optional[str] = None
    omdb_api_key: Optional[str] = None


class AiSetup(BaseModel):
    enabled: bool = False
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    instructions: Optional[str] = None


@router.get("/setup/status")
async def setup_status(db: AsyncSession = Depends(get_db)):
    """Check which setup steps have been completed."""
    user_count = await db.scalar(select(func.count()).select_from(User))
    media = await load_media_config(db)
    ai = await load_ai_config(db)
    return {
        "tautulli_configured": await load_tautulli_config(db) is not None,
        "users_synced": bool(user_count),
        "media_configured": bool(media and (media.tmdb_api_key or media.omdb_api_key)),
        "ai_enabled": bool(ai and ai.enabled),
    }


@router.post("/setup", dependencies=[Depends(require_admin)])
async def save_tautulli(
    body: TautulliSetup,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Test the connection, store it, then import the user list."""
    client = TautulliClient(
        host=body.host, port=body.port, api_key=body.api_key,
        use_ssl=body.use_ssl, root_path=body.root_path, timeout=settings.http_timeout,
    )
    if not await client.check_connection():
        raise HTTPException(status_code=400, detail="Failed to connect to Tautulli. Check settings.")

    config = await load_tautulli_config(db)
    if config is None:
        config = TautulliConfig()
        db.add(config)
    for field, value in body.model_dump().items():
        setattr(config, field, value)
    await db.commit()

    return {"success": True, "synced_users": await sync_users(session_factory, client)}


@router.put("/setup/media", dependencies=[Depends(require_admin)])
async def save_media(body: MediaSetup, db: AsyncSession = Depends(get_db)):
    config = await load_media_config(db)
    if config is None:
        config = MediaConfig()
        db.add(config)
    config.tmdb_api_key = body.tmdb_api_key or None
    config.omdb_api_key = body.omdb_api_key or None
    await db.commit()
    return {"success": True}


@router.put("/setup/ai", dependencies=[Depends(require_admin)])
async def save_ai(body: AiSetup, db: AsyncSession = Depends(get_db)):
    """Store text-generation settings. Instructions are passed through verbatim."""
    config = await load_ai_config(db)
    if config is None:
        config = AiConfig()
        db.add(config)
    for field, value in body.model_dump().items():
        setattr(config, field, value)
    await db.commit()
    return {"success": True}
