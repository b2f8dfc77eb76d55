from decimal import Decimal

from hesco.repo import ensure_user
from hesco.services.ledger.service import ledger_store
from hesco.services.referrals.service import referral_service

A, B, C, D, E = 3001, 3002, 3003, 3004, 3005


async def _join(session, user_id, referrer_id=None):
    await ensure_user(session, user_id)
    await session.commit()
    if referrer_id is None:
        return []
    code = await referral_service.ensure_ref_code(session, referrer_id)
    return await referral_service.register_referral(session, referred_id=user_id, ref_code=code)


class TestRegistration:
    async def test_chain_is_copied_up_to_three_levels(self, session):
        await _join(session, A)
        await _join(session, B, A)
        await _join(session, C, B)
        await _join(session, D, C)
        edges = await _join(session, E, D)

        assert [(e.referrer_id, e.level) for e in edges] == [(D, 1), (C, 2), (B, 3)]
        upline = await referral_service.upline(session, E)
        assert [(e.referrer_id, e.level) for e in upline] == [(D, 1), (C, 2), (B, 3)]
        assert await referral_service.referrer_of(session, E) == D

    async def test_registered_once(self, session):
        await _join(session, A)
        await _join(session, C)
        await _join(session, B, A)
        assert await _join(session, B, C) == []
        assert await referral_service.referrer_of(session, B) == A

    async def test_self_and_unknown_codes_ignored(self, session):
        await _join(session, A)
        assert await _join(session, A, A) == []
        assert await referral_service.register_referral(session, referred_id=B, ref_code="nope") == []

    async def test_loop_ignored(self, session):
        await _join(session, A)
        await _join(session, B, A)
        await _join(session, C, B)
        code = await referral_service.ensure_ref_code(session, C)
        await session.commit()

        assert await referral_service.register_referral(session, referred_id=A, ref_code=code) == []
        assert await referral_service.upline(session, A) == []


class TestDistribution:
    async def test_direct_referrer_paid_on_approval(self, session, activate):
        await _join(session, A)
        await activate(A, 500)
        await _join(session, B, A)
        before = await ledger_store.snapshot(session, A)

        outcome = await activate(B, 1000)

        assert outcome.referrals_settled
        assert [(r.referrer_id, r.level, r.reward_amount) for r in outcome.rewards] == [(A, 1, Decimal("50"))]
        after = await ledger_store.snapshot(session, A)
        assert after.available_balance == before.available_balance + Decimal("50")

        latest = (await ledger_store.history(session, A, limit=1))[0]
        assert latest.type == "referral_reward"
        assert latest.balance_after == latest.balance_before + Decimal("50")

    async def test_three_levels_use_referred_plan(self, session, activate):
        for user, referrer in ((A, None), (B, A), (C, B), (D, C), (E, D)):
            await _join(session, user, referrer)

        outcome = await activate(E, 500)

        paid = {r.referrer_id: r.reward_amount for r in outcome.rewards}
        assert paid == {D: Decimal("25"), C: Decimal("15"), B: Decimal("5")}
        assert (await ledger_store.snapshot(session, A)).available_balance == Decimal("0.00")

    async def test_upgrade_is_not_retroactive(self, session, activate):
        await _join(session, A)
        await _join(session, B, A)
        await activate(B, 500)
        upgrade = await activate(B, 2000)

        assert upgrade.rewards == []
        rewards = await referral_service.list_rewards(session, referrer_id=A)
        assert [r.reward_amount for r in rewards] == [Decimal("25")]
        assert (await ledger_store.snapshot(session, A)).available_balance == Decimal("25.00")

    async def test_rerun_pays_nothing_new(self, session, activate):
        await _join(session, A)
        await _join(session, B, A)
        await activate(B, 1000)

        again = await referral_service.distribute_referral_rewards(session, B, 1000)

        assert again == []
        assert (await ledger_store.snapshot(session, A)).available_balance == Decimal("50.00")


class TestLateAttachment:
    async def test_paying_user_cannot_join_an_upline(self, session, activate):
        await _join(session, A)
        await _join(session, B)
        await activate(B, 500)

        assert await _join(session, B, A) == []
        assert await referral_service.upline(session, B) == []

        upgrade = await activate(B, 5000)
        assert upgrade.rewards == []
        assert await referral_service.list_rewards(session, referrer_id=A) == []
        assert (await ledger_store.snapshot(session, A)).available_balance == Decimal("0.00")
