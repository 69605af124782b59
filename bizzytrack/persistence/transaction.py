from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.persistence.db import SessionProvider


logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction(provider: SessionProvider) -> AsyncIterator[AsyncSession]:
    """Run the block in one database transaction.

    Commits when the block exits normally. Any exception rolls the whole unit
    back (mutation and audit rows alike) and is re-raised unchanged. The
    connection goes back to the pool on every path. Helpers called inside the
    block take the yielded session; opening a second transaction from within
    is not supported.
    """
    async with provider.acquire() as session:
        try:
            yield session
            await session.commit()
        except BaseException as exc:
            await session.rollback()
            logger.debug("transaction_rolled_back error=%s", type(exc).__name__)
            raise


@asynccontextmanager
async def read_session(provider: SessionProvider) -> AsyncIterator[AsyncSession]:
    # Reads skip commit; closing the session releases the connection.
    async with provider.acquire() as session:
        yield session
