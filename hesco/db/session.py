from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession, async_sessionmaker,
                                    create_async_engine)

from hesco.core.config import make_async_db_url, settings

T = TypeVar("T")

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None

log = logging.getLogger(__name__)


def init_engine(database_url: str) -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        return
    _engine = create_async_engine(make_async_db_url(database_url), pool_pre_ping=True)
    _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
    log.info("db_engine_initialized")


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessionmaker = None
    log.info("db_engine_disposed")


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        raise RuntimeError("DB engine not initialized. Call init_engine() first.")
    return _sessionmaker


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """AsyncSession context manager."""
    sm = get_sessionmaker()
    async with sm() as session:
        yield session


async def run_atomic(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    timeout: float | None = None,
) -> T:
    """Run `work` and commit it as one unit, bounded by the ledger timeout.

    Any failure (including the timeout) rolls the session back and re-raises,
    so nothing from a half-finished unit is ever persisted.
    """
    limit = settings.ledger_timeout_seconds if timeout is None else timeout

    async def _unit() -> T:
        result = await work()
        await session.commit()
        return result

    try:
        return await asyncio.wait_for(_unit(), timeout=limit)
    except Exception:
        await session.rollback()
        raise
