from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

SCHEDULER_LOCK_KEY = 947_382_611  # arbitrary stable int


def _is_postgres(session: AsyncSession) -> bool:
    return session.bind is not None and session.bind.dialect.name == "postgresql"


async def try_advisory_lock(session: AsyncSession) -> bool:
    # SQLite deployments are single-process; there is nothing to coordinate.
    if not _is_postgres(session):
        return True
    res = await session.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": SCHEDULER_LOCK_KEY})
    return bool(res.scalar())


async def advisory_unlock(session: AsyncSession) -> None:
    if not _is_postgres(session):
        return
    await session.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": SCHEDULER_LOCK_KEY})
