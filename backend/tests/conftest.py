import os

# Must be set before plexwrapped.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-wrapped.db")
os.environ.setdefault("TIMEZONE", "UTC")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import plexwrapped.models  # noqa: F401
from plexwrapped.config import Settings
from plexwrapped.database import Base
from plexwrapped.models.tables import User


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    db_path = tmp_path / "wrapped.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory
    await engine.dispose()


@pytest.fixture
def test_settings():
    return Settings(
        timezone="UTC",
        admin_token="test-admin",
        metadata_batch_pause=0,
        enrichment_batch_pause=0,
        global_sync_concurrency=3,
    )


@pytest.fixture
def add_users(session_factory):
    async def _add(*user_ids: int, active: bool = True):
        async with session_factory() as db:
            db.add_all([
                User(id=uid, username=f"user{uid}", is_active=active) for uid in user_ids
            ])
            await db.commit()
    return _add


@pytest.fixture
def progress_log():
    """A progress sink that records every line."""
    lines: list[str] = []

    async def sink(message: str) -> None:
        lines.append(message)

    sink.lines = lines
    return sink
