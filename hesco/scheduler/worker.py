from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.config import settings
from hesco.db.locks import advisory_unlock, try_advisory_lock
from hesco.db.session import session_scope
from hesco.services.plans.service import plan_service

log = logging.getLogger(__name__)


async def retry_referral_distributions(session: AsyncSession, *, limit: int = 100) -> int:
    """Re-run the activation hook for approved applications not yet settled.

    Activation credit and every referral level are keyed, so re-running only
    fills in whatever a previous attempt did not finish.
    """
    settled = 0
    for app in await plan_service.pending_distributions(session, limit=limit):
        outcome = await plan_service.on_approved(session, app.id, app.user_id, app.plan_amount)
        if outcome.referrals_settled:
            settled += 1
    return settled


async def run_scheduler() -> None:
    """Scheduler jobs loop (single replica) protected by advisory lock.

    Jobs:
    - Retry referral distribution for approved applications.
    """
    log.info("scheduler_start")

    while True:
        try:
            async with session_scope() as lock_session:
                locked = await try_advisory_lock(lock_session)
                if not locked:
                    await asyncio.sleep(3)
                    continue

                try:
                    async with session_scope() as session:
                        settled = await retry_referral_distributions(session)
                    if settled:
                        log.info("referral_retry_settled", extra={"count": settled})
                finally:
                    await advisory_unlock(lock_session)
        except Exception:
            log.exception("scheduler_loop_error")

        await asyncio.sleep(settings.scheduler_sleep_seconds)
