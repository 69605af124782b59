from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator
import logging

from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from bizzytrack.core.config import Settings, get_settings
from bizzytrack.core.errors import PoolExhaustedError


logger = logging.getLogger(__name__)


def build_engine(settings: Settings | None = None, *, database_url: str | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    url = database_url or settings.database_url
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Configure bounded asyncpg pools; SQLite uses the driver defaults.
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        engine_kwargs["pool_timeout"] = max(1, int(settings.db_pool_timeout_s))
        engine_kwargs["pool_recycle"] = 1800
    return create_async_engine(url, **engine_kwargs)


class SessionProvider:
    """Hands out pooled sessions; services receive one at construction."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> SessionProvider:
        return cls(async_sessionmaker(engine, expire_on_commit=False))

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[AsyncSession]:
        # Check out a connection up front so pool exhaustion surfaces before any work starts.
        session = self._sessionmaker()
        try:
            try:
                await session.connection()
            except PoolTimeoutError as exc:
                logger.warning("db_pool_exhausted")
                raise PoolExhaustedError("No database connection available") from exc
            yield session
        finally:
            # AsyncSession.close is idempotent and returns the connection to the pool.
            await session.close()


@lru_cache
def get_engine() -> AsyncEngine:
    return build_engine()


@lru_cache
def default_provider() -> SessionProvider:
    return SessionProvider.from_engine(get_engine())
