from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.time import utcnow
from hesco.db.models import IdempotencyKey
from hesco.services.errors import AlreadyApplied

log = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_if_absent(session: AsyncSession, model):
    """Dialect `INSERT ... ON CONFLICT DO NOTHING` builder for `model`."""
    dialect = session.bind.dialect.name if session.bind is not None else ""
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"unsupported database dialect: {dialect!r}") from None
    return insert(model)


def task_key(user_id: int, task_type: str, task_date: date) -> str:
    return f"task:{user_id}:{task_type}:{task_date.isoformat()}"


def referral_key(referrer_id: int, referred_id: int, level: int) -> str:
    return f"referral:{referrer_id}:{referred_id}:{level}"


def referral_edge_key(referred_id: int) -> str:
    return f"referral-edge:{referred_id}"


def plan_activation_key(application_id: int) -> str:
    return f"plan-activation:{application_id}"


def withdrawal_key(request_key: str) -> str:
    return f"withdrawal:{request_key}"


def withdrawal_plan_key(request_key: str) -> str:
    return f"withdrawal-plan:{request_key}"


def withdrawal_refund_key(request_id: int) -> str:
    return f"withdrawal-refund:{request_id}"


def withdrawal_plan_refund_key(request_id: int) -> str:
    return f"withdrawal-plan-refund:{request_id}"


class IdempotencyGuard:
    async def reserve(self, session: AsyncSession, key: str) -> None:
        """Atomically claim `key` inside the caller's transaction.

        Raises AlreadyApplied when the key was claimed before. On PostgreSQL a
        concurrent claimer blocks until the first transaction finishes, then
        either sees the committed key or takes it over after a rollback.
        """
        stmt = (
            insert_if_absent(session, IdempotencyKey)
            .values(key=key, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=[IdempotencyKey.key])
            .returning(IdempotencyKey.key)
        )
        claimed = (await session.execute(stmt)).scalar_one_or_none()
        if claimed is None:
            log.info("idempotency_key_taken", extra={"reference_key": key})
            raise AlreadyApplied(key)

    async def is_reserved(self, session: AsyncSession, key: str) -> bool:
        return await session.get(IdempotencyKey, key) is not None


idempotency_guard = IdempotencyGuard()
