from __future__ import annotations

import logging
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.time import utcnow
from hesco.db.models import Referral, ReferralReward, User, UserApplication
from hesco.db.session import run_atomic
from hesco.services.errors import AlreadyApplied
from hesco.services.ledger.guard import idempotency_guard, referral_edge_key, referral_key
from hesco.services.ledger.service import TransactionType, ledger_store
from hesco.services.plans.tiers import REFERRAL_LEVELS, referral_reward, tier_for_amount

log = logging.getLogger(__name__)


class ReferralService:
    async def ensure_ref_code(self, session: AsyncSession, tg_id: int) -> str:
        user = await session.get(User, tg_id)
        if not user:
            user = User(tg_id=tg_id, created_at=utcnow())
            session.add(user)
            await session.flush()

        if user.ref_code:
            return user.ref_code

        # Generate unique short code.
        # 10-12 chars url-safe.
        for _ in range(8):
            code = secrets.token_urlsafe(8).rstrip("=")
            exists = await session.scalar(select(User.tg_id).where(User.ref_code == code).limit(1))
            if not exists:
                user.ref_code = code
                await session.flush()
                return code

        # fallback (should never happen)
        code = f"u{tg_id}"
        user.ref_code = code
        await session.flush()
        return code

    async def referrer_of(self, session: AsyncSession, user_id: int) -> int | None:
        return await session.scalar(
            select(Referral.referrer_id).where(Referral.referred_id == user_id, Referral.level == 1).limit(1)
        )

    async def upline(self, session: AsyncSession, user_id: int) -> list[Referral]:
        """Stored edges above `user_id`, level 1 first."""
        q = select(Referral).where(Referral.referred_id == user_id).order_by(Referral.level.asc())
        return list((await session.scalars(q)).all())

    async def register_referral(self, session: AsyncSession, *, referred_id: int, ref_code: str) -> list[Referral]:
        """Attach `referred_id` under the owner of `ref_code`.

        Creates the level-1 edge plus level-2/3 edges copied from the referrer's
        own upline. Happens once per referred user and only before their first
        plan application; unknown codes, self-referral and codes that would
        close a loop are ignored.
        """
        ref_code = (ref_code or "").strip()
        if not ref_code:
            return []
        referrer = await session.scalar(select(User).where(User.ref_code == ref_code).limit(1))
        if not referrer:
            return []
        referrer_id = int(referrer.tg_id)
        if referrer_id == int(referred_id):
            return []

        async def work() -> list[Referral]:
            applied = await session.scalar(
                select(UserApplication.id).where(UserApplication.user_id == referred_id).limit(1)
            )
            if applied is not None:
                log.info("referral_after_signup_ignored", extra={"user_id": referred_id})
                return []

            chain = await self.upline(session, referrer_id)
            if any(int(e.referrer_id) == int(referred_id) for e in chain):
                log.info("referral_loop_ignored", extra={"user_id": referred_id})
                return []

            try:
                await idempotency_guard.reserve(session, referral_edge_key(referred_id))
            except AlreadyApplied:
                return []

            now = utcnow()
            edges = [Referral(referrer_id=referrer_id, referred_id=referred_id, level=1, created_at=now)]
            for e in chain:
                level = int(e.level) + 1
                if level > REFERRAL_LEVELS[-1]:
                    break
                edges.append(Referral(referrer_id=int(e.referrer_id), referred_id=referred_id, level=level, created_at=now))
            session.add_all(edges)
            await session.flush()
            return edges

        edges = await run_atomic(session, work)
        if edges:
            log.info("referral_registered", extra={"user_id": referred_id, "tg_id": referrer_id})
        return edges

    async def distribute_referral_rewards(
        self,
        session: AsyncSession,
        referred_user_id: int,
        plan_amount: int,
    ) -> list[ReferralReward]:
        """Credit up to three upline members for `referred_user_id`'s plan.

        Each level is its own committed unit keyed by (referrer, referred, level),
        so a crash half-way converges on retry without paying a level twice.
        Returns only the rewards paid by this call.
        """
        tier = tier_for_amount(plan_amount)
        edges = {int(e.level): e for e in await self.upline(session, referred_user_id)}

        paid: list[ReferralReward] = []
        for level in REFERRAL_LEVELS:
            edge = edges.get(level)
            if edge is None:
                break
            referrer_id = int(edge.referrer_id)
            amount = referral_reward(level, tier)
            key = referral_key(referrer_id, referred_user_id, level)

            async def pay_level(
                referrer_id: int = referrer_id,
                level: int = level,
                amount=amount,
                key: str = key,
            ) -> ReferralReward | None:
                try:
                    await idempotency_guard.reserve(session, key)
                except AlreadyApplied:
                    return None
                tx = await ledger_store.apply(
                    session,
                    referrer_id,
                    amount,
                    TransactionType.REFERRAL_REWARD,
                    key,
                    f"Level {level} referral reward for user {referred_user_id}",
                )
                reward = ReferralReward(
                    referrer_id=referrer_id,
                    referred_id=referred_user_id,
                    level=level,
                    referred_plan_amount=tier.price,
                    reward_amount=amount,
                    status="paid",
                    transaction_id=tx.id,
                    created_at=utcnow(),
                )
                session.add(reward)
                await session.flush()
                return reward

            reward = await run_atomic(session, pay_level)
            if reward is None:
                log.info("referral_reward_duplicate", extra={"user_id": referrer_id, "reference_key": key})
                continue
            paid.append(reward)
        return paid

    async def list_rewards(self, session: AsyncSession, *, referrer_id: int) -> list[ReferralReward]:
        q = (
            select(ReferralReward)
            .where(ReferralReward.referrer_id == referrer_id)
            .order_by(ReferralReward.id.desc())
        )
        return list((await session.scalars(q)).all())

    async def list_referrals(self, session: AsyncSession, *, referrer_id: int) -> list[Referral]:
        q = select(Referral).where(Referral.referrer_id == referrer_id).order_by(Referral.id.desc())
        return list((await session.scalars(q)).all())


referral_service = ReferralService()
