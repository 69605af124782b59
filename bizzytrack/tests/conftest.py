from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from bizzytrack.core.config import get_settings
from bizzytrack.domain.models import Base
from bizzytrack.persistence.db import SessionProvider, build_engine


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Settings are memoised; tests that monkeypatch env vars need a fresh read.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    # One SQLite file per test keeps state isolated without a Postgres dependency.
    url = f"sqlite+aiosqlite:///{tmp_path / 'bizzytrack.db'}"
    engine = build_engine(database_url=url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def provider(engine: AsyncEngine) -> SessionProvider:
    return SessionProvider.from_engine(engine)
