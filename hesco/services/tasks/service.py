from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.time import utc_today, utcnow
from hesco.db.models import TaskCompletion
from hesco.db.session import run_atomic
from hesco.services.errors import AlreadyApplied, NoActivePlan
from hesco.services.ledger.guard import idempotency_guard, task_key
from hesco.services.ledger.service import TransactionType, ledger_store
from hesco.services.plans.service import plan_service
from hesco.services.plans.tiers import TaskType, task_reward

log = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    completion: TaskCompletion
    # False when the task had already been rewarded for that day
    credited: bool


class TaskService:
    async def complete_task(
        self,
        session: AsyncSession,
        user_id: int,
        task_type: TaskType | str,
        *,
        task_date: date | None = None,
        now: datetime | None = None,
    ) -> TaskOutcome:
        """Reward one video or survey task per user per UTC day.

        `task_date` defaults to the server's UTC day; client clocks are never
        consulted.
        """
        task_type = TaskType(task_type)
        task_date = task_date or utc_today(now)

        tier = await plan_service.plan_tier_for_user(session, user_id)
        if tier is None:
            raise NoActivePlan(f"user {user_id} has no active plan")
        reward = task_reward(task_type, tier)
        key = task_key(user_id, task_type.value, task_date)

        async def work() -> TaskOutcome:
            try:
                await idempotency_guard.reserve(session, key)
            except AlreadyApplied:
                existing = await self.get_completion(session, user_id, task_type, task_date)
                if existing is None:
                    raise RuntimeError(f"reserved task key without completion row: {key}")
                return TaskOutcome(completion=existing, credited=False)

            tx = await ledger_store.apply(
                session,
                user_id,
                reward,
                TransactionType.TASK_REWARD,
                key,
                f"Daily {task_type.value} task reward",
            )
            completion = TaskCompletion(
                user_id=user_id,
                task_type=task_type.value,
                task_date=task_date,
                reward_amount=reward,
                status="completed",
                transaction_id=tx.id,
                created_at=utcnow(),
            )
            session.add(completion)
            await session.flush()
            return TaskOutcome(completion=completion, credited=True)

        outcome = await run_atomic(session, work)
        if outcome.credited:
            log.info("task_rewarded", extra={"user_id": user_id, "reference_key": key})
        else:
            log.info("task_reward_duplicate", extra={"user_id": user_id, "reference_key": key})
        return outcome

    async def get_completion(
        self,
        session: AsyncSession,
        user_id: int,
        task_type: TaskType | str,
        task_date: date,
    ) -> TaskCompletion | None:
        q = select(TaskCompletion).where(
            TaskCompletion.user_id == user_id,
            TaskCompletion.task_type == TaskType(task_type).value,
            TaskCompletion.task_date == task_date,
        )
        return await session.scalar(q)

    async def completions_for_day(
        self,
        session: AsyncSession,
        user_id: int,
        *,
        now: datetime | None = None,
    ) -> list[TaskCompletion]:
        q = (
            select(TaskCompletion)
            .where(TaskCompletion.user_id == user_id, TaskCompletion.task_date == utc_today(now))
            .order_by(TaskCompletion.id.asc())
        )
        return list((await session.scalars(q)).all())


task_service = TaskService()
