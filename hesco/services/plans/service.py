from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.time import utcnow
from hesco.db.models import BalanceTransaction, ReferralReward, UserApplication
from hesco.db.session import run_atomic
from hesco.services.errors import AlreadyApplied, InvalidTransition, NotFound
from hesco.services.ledger.guard import idempotency_guard, plan_activation_key
from hesco.services.ledger.service import TransactionType, ledger_store, to_money
from hesco.services.plans.tiers import PlanTier, tier_for_amount
from hesco.services.referrals.service import referral_service

log = logging.getLogger(__name__)


def plan_price(tier: PlanTier) -> int:
    return tier.price


@dataclass
class ActivationOutcome:
    application_id: int
    # None when the activation credit had already been posted
    transaction: BalanceTransaction | None
    rewards: list[ReferralReward] = field(default_factory=list)
    referrals_settled: bool = False


class PlanService:
    async def plan_tier_for_user(self, session: AsyncSession, user_id: int) -> PlanTier | None:
        """Active tier = plan of the most recently approved application."""
        q = (
            select(UserApplication.plan_amount)
            .where(UserApplication.user_id == user_id, UserApplication.status == "approved")
            .order_by(UserApplication.reviewed_at.desc(), UserApplication.id.desc())
            .limit(1)
        )
        amount = await session.scalar(q)
        if amount is None:
            return None
        return tier_for_amount(amount)

    async def submit_application(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        plan_amount: int,
        mpesa_number: str,
        mpesa_message: str,
    ) -> UserApplication:
        tier = tier_for_amount(plan_amount)
        mpesa_number = (mpesa_number or "").strip()
        mpesa_message = (mpesa_message or "").strip()
        if not mpesa_number or not mpesa_message:
            raise ValueError("mpesa number and confirmation message are required")

        async def work() -> UserApplication:
            app = UserApplication(
                user_id=user_id,
                plan_amount=tier.price,
                mpesa_number=mpesa_number,
                mpesa_message=mpesa_message,
                status="pending",
                created_at=utcnow(),
            )
            session.add(app)
            await session.flush()
            return app

        app = await run_atomic(session, work)
        log.info("application_submitted", extra={"user_id": user_id, "application_id": app.id})
        return app

    async def _get_application(self, session: AsyncSession, application_id: int, *, lock: bool = False) -> UserApplication:
        q = select(UserApplication).where(UserApplication.id == application_id).execution_options(populate_existing=True)
        if lock:
            q = q.with_for_update()
        app = await session.scalar(q)
        if not app:
            raise NotFound(f"application {application_id} not found")
        return app

    async def approve_application(
        self,
        session: AsyncSession,
        application_id: int,
        *,
        actor: int,
        now: datetime | None = None,
    ) -> ActivationOutcome:
        """Mark the application approved, then run the activation hook."""

        async def work() -> UserApplication:
            app = await self._get_application(session, application_id, lock=True)
            if app.status != "approved":
                app.status = "approved"
                app.reviewed_by = actor
                app.reviewed_at = now or utcnow()
                await session.flush()
            return app

        app = await run_atomic(session, work)
        log.info("application_approved", extra={"application_id": app.id, "user_id": app.user_id})
        return await self.on_approved(session, app.id, app.user_id, app.plan_amount, now=now)

    async def reject_application(
        self,
        session: AsyncSession,
        application_id: int,
        *,
        actor: int,
        now: datetime | None = None,
    ) -> UserApplication:
        """Reject a pending or approved application.

        Posted ledger lines stay as they are; a later re-approval is a no-op for
        both the activation credit and the referral rewards.
        """

        async def work() -> UserApplication:
            app = await self._get_application(session, application_id, lock=True)
            if app.status == "rejected":
                return app
            app.status = "rejected"
            app.reviewed_by = actor
            app.reviewed_at = now or utcnow()
            await session.flush()
            return app

        app = await run_atomic(session, work)
        log.info("application_rejected", extra={"application_id": app.id, "user_id": app.user_id})
        return app

    async def on_approved(
        self,
        session: AsyncSession,
        application_id: int,
        user_id: int,
        plan_amount: int,
        *,
        now: datetime | None = None,
    ) -> ActivationOutcome:
        """Plan activation hook.

        1. credit plan_balance/total_earned once per application;
        2. distribute referral rewards up to three levels.

        A failure in step 2 is logged and left for the retry job; it never undoes
        step 1.
        """
        tier = tier_for_amount(plan_amount)

        async def credit() -> BalanceTransaction | None:
            app = await self._get_application(session, application_id)
            if app.status != "approved":
                raise InvalidTransition(f"application {application_id} is {app.status}, not approved")
            if int(app.user_id) != int(user_id) or tier_for_amount(app.plan_amount) is not tier:
                raise InvalidTransition(
                    f"application {application_id} belongs to user {app.user_id} on plan {app.plan_amount}"
                )
            key = plan_activation_key(application_id)
            try:
                await idempotency_guard.reserve(session, key)
            except AlreadyApplied:
                return None
            return await ledger_store.apply(
                session,
                user_id,
                to_money(plan_price(tier)),
                TransactionType.PLAN_ACTIVATION,
                key,
                f"Subscription plan activation - {tier.price}",
            )

        tx = await run_atomic(session, credit)
        if tx is None:
            log.info("plan_activation_duplicate", extra={"application_id": application_id, "user_id": user_id})
        outcome = ActivationOutcome(application_id=application_id, transaction=tx)

        try:
            outcome.rewards = await referral_service.distribute_referral_rewards(session, user_id, tier.price)

            async def mark() -> None:
                app = await self._get_application(session, application_id)
                if app.referrals_distributed_at is None:
                    app.referrals_distributed_at = now or utcnow()
                    await session.flush()

            await run_atomic(session, mark)
            outcome.referrals_settled = True
        except Exception:
            log.exception(
                "referral_distribution_failed",
                extra={"application_id": application_id, "user_id": user_id},
            )
        return outcome

    async def pending_distributions(self, session: AsyncSession, *, limit: int = 100) -> list[UserApplication]:
        q = (
            select(UserApplication)
            .where(
                UserApplication.status == "approved",
                UserApplication.referrals_distributed_at.is_(None),
            )
            .order_by(UserApplication.id.asc())
            .limit(limit)
        )
        return list((await session.scalars(q)).all())

    async def list_applications(
        self,
        session: AsyncSession,
        *,
        status: str | None = None,
        user_id: int | None = None,
        limit: int = 50,
    ) -> list[UserApplication]:
        q = select(UserApplication)
        if status:
            q = q.where(UserApplication.status == status)
        if user_id is not None:
            q = q.where(UserApplication.user_id == user_id)
        q = q.order_by(UserApplication.id.desc()).limit(limit)
        return list((await session.scalars(q)).all())


plan_service = PlanService()
