import os
from pathlib import Path

os.environ.setdefault("VIDSYNC_DB_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VIDSYNC_WEBSUB_SECRET", "websub-test-secret")
os.environ.setdefault("VIDSYNC_REVALIDATE_SECRET", "revalidate-test-secret")
os.environ.setdefault("VIDSYNC_CONFIG_DIR", str(Path(__file__).resolve().parent.parent / "config"))

from typing import Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from vidsync.core.database import Base  # noqa: E402
from vidsync.models.models import Playlist  # noqa: E402
from tests.fakes import FakeYouTubeClient  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_playlist(session_factory):
    """Seed an active tracked playlist."""
    async def _make(playlist_id: str, title: str = "", slug: Optional[str] = None):
        async with session_factory() as session:
            session.add(Playlist(playlist_id=playlist_id, title=title or playlist_id, slug=slug, is_active=True))
            await session.commit()
    return _make


@pytest.fixture
def fake_youtube():
    return FakeYouTubeClient()
