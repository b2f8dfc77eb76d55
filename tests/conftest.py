import os

os.environ.setdefault("BOT_TOKEN", "123456:test-token")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OWNER_TG_ID", "1")
os.environ.setdefault("SCHEDULER_ENABLED", "0")

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import hesco.db.models  # noqa: F401
from hesco.db.base import Base
from hesco.services.plans.service import plan_service

# 2026-10-17 is a Saturday, the default withdrawal day
SATURDAY = datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)
FRIDAY = datetime(2026, 10, 16, 9, 30, tzinfo=timezone.utc)

ADMIN_ID = 1


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(sessionmaker):
    async with sessionmaker() as s:
        yield s


@pytest.fixture
def activate(session):
    """Submit and approve a plan application for `user_id`."""

    async def _activate(user_id: int, plan_amount: int, *, now: datetime | None = None):
        app = await plan_service.submit_application(
            session,
            user_id=user_id,
            plan_amount=plan_amount,
            mpesa_number="0712345678",
            mpesa_message=f"QFX{user_id} Confirmed. Ksh{plan_amount}.00 sent",
        )
        return await plan_service.approve_application(session, app.id, actor=ADMIN_ID, now=now)

    return _activate
