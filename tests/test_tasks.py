import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from hesco.db.models import TaskCompletion
from hesco.services.errors import NoActivePlan
from hesco.services.ledger.service import ledger_store
from hesco.services.tasks.service import task_service

USER = 2001
DAY = date(2026, 10, 17)


class TestDailyTasks:
    async def test_reward_follows_plan_tier(self, session, activate):
        await activate(USER, 1000)
        outcome = await task_service.complete_task(session, USER, "video", task_date=DAY)

        assert outcome.credited
        assert outcome.completion.reward_amount == Decimal("30")
        snap = await ledger_store.snapshot(session, USER)
        assert snap.available_balance == Decimal("30.00")
        assert snap.total_earned == Decimal("1030.00")

    async def test_same_day_is_rewarded_once(self, session, activate):
        await activate(USER, 500)
        first = await task_service.complete_task(session, USER, "video", task_date=DAY)
        second = await task_service.complete_task(session, USER, "video", task_date=DAY)

        assert first.credited
        assert not second.credited
        assert second.completion.id == first.completion.id
        assert (await ledger_store.snapshot(session, USER)).available_balance == Decimal("15.00")

    async def test_replay_from_another_session(self, sessionmaker, session, activate):
        await activate(USER, 2000)
        async with sessionmaker() as a, sessionmaker() as b:
            first = await task_service.complete_task(a, USER, "survey", task_date=DAY)
            second = await task_service.complete_task(b, USER, "survey", task_date=DAY)

        assert [first.credited, second.credited] == [True, False]
        assert (await ledger_store.snapshot(session, USER)).available_balance == Decimal("25.00")

    async def test_concurrent_duplicate_credits_once(self, sessionmaker, session, activate):
        await activate(USER, 1000)

        async def attempt():
            async with sessionmaker() as s:
                return await task_service.complete_task(s, USER, "video", task_date=DAY)

        outcomes = await asyncio.gather(attempt(), attempt())

        assert sorted(o.credited for o in outcomes) == [False, True]
        rows = await session.scalar(select(func.count()).select_from(TaskCompletion).where(TaskCompletion.user_id == USER))
        assert rows == 1
        assert (await ledger_store.snapshot(session, USER)).available_balance == Decimal("30.00")
        assert (await ledger_store.replay(session, USER)).consistent

    async def test_types_and_days_are_independent(self, session, activate):
        await activate(USER, 5000)
        await task_service.complete_task(session, USER, "video", task_date=DAY)
        await task_service.complete_task(session, USER, "survey", task_date=DAY)
        nxt = await task_service.complete_task(session, USER, "video", task_date=DAY + timedelta(days=1))

        assert nxt.credited
        assert (await ledger_store.snapshot(session, USER)).available_balance == Decimal("170.00")
        report = await ledger_store.replay(session, USER)
        assert report.consistent

    async def test_requires_active_plan(self, session):
        with pytest.raises(NoActivePlan):
            await task_service.complete_task(session, USER, "video", task_date=DAY)

    async def test_unknown_task_type(self, session, activate):
        await activate(USER, 500)
        with pytest.raises(ValueError):
            await task_service.complete_task(session, USER, "quiz", task_date=DAY)
