from decimal import Decimal

import pytest

from hesco.repo import ensure_user
from hesco.scheduler.worker import retry_referral_distributions
from hesco.services.errors import InvalidTransition, UnknownPlanTier
from hesco.services.ledger.service import ledger_store
from hesco.services.plans.service import plan_service
from hesco.services.referrals.service import referral_service

from .conftest import ADMIN_ID

REFERRER, USER = 4001, 4002


async def _submit(session, user_id=USER, plan_amount=1000):
    return await plan_service.submit_application(
        session,
        user_id=user_id,
        plan_amount=plan_amount,
        mpesa_number="0712345678",
        mpesa_message="QFX1 Confirmed. Ksh1,000.00 sent to HESCO",
    )


class TestActivation:
    async def test_approval_credits_plan_balance(self, session, activate):
        outcome = await activate(USER, 1000)

        assert outcome.transaction is not None
        assert outcome.transaction.type == "plan_activation"
        snap = await ledger_store.snapshot(session, USER)
        assert snap.plan_balance == Decimal("1000.00")
        assert snap.total_earned == Decimal("1000.00")
        assert snap.available_balance == Decimal("0.00")
        assert (await plan_service.plan_tier_for_user(session, USER)).price == 1000

    async def test_second_approval_is_a_no_op(self, session):
        app = await _submit(session)
        await plan_service.approve_application(session, app.id, actor=ADMIN_ID)
        again = await plan_service.approve_application(session, app.id, actor=ADMIN_ID)
        hook = await plan_service.on_approved(session, app.id, USER, 1000)

        assert again.transaction is None
        assert hook.transaction is None
        assert len(await ledger_store.history(session, USER)) == 1
        assert (await ledger_store.snapshot(session, USER)).plan_balance == Decimal("1000.00")

    async def test_hook_requires_approved_application(self, session):
        app = await _submit(session)
        with pytest.raises(InvalidTransition):
            await plan_service.on_approved(session, app.id, USER, 1000)
        assert await ledger_store.history(session, USER) == []

    async def test_rejected_application_grants_no_plan(self, session):
        app = await _submit(session)
        await plan_service.reject_application(session, app.id, actor=ADMIN_ID)
        assert await plan_service.plan_tier_for_user(session, USER) is None

    async def test_unknown_amount_rejected_at_submit(self, session):
        with pytest.raises(UnknownPlanTier):
            await _submit(session, plan_amount=750)


class TestDistributionFailure:
    async def test_failure_keeps_activation_and_retry_settles(self, session, monkeypatch):
        await ensure_user(session, REFERRER)
        await session.commit()
        code = await referral_service.ensure_ref_code(session, REFERRER)
        await referral_service.register_referral(session, referred_id=USER, ref_code=code)

        async def boom(*args, **kwargs):
            raise RuntimeError("referral store unavailable")

        monkeypatch.setattr(referral_service, "distribute_referral_rewards", boom)
        app = await _submit(session)
        outcome = await plan_service.approve_application(session, app.id, actor=ADMIN_ID)

        assert outcome.transaction is not None
        assert not outcome.referrals_settled
        assert (await ledger_store.snapshot(session, USER)).plan_balance == Decimal("1000.00")
        assert (await ledger_store.snapshot(session, REFERRER)).available_balance == Decimal("0.00")
        assert [a.id for a in await plan_service.pending_distributions(session)] == [app.id]

        monkeypatch.undo()
        assert await retry_referral_distributions(session) == 1

        assert (await ledger_store.snapshot(session, REFERRER)).available_balance == Decimal("50.00")
        assert (await ledger_store.snapshot(session, USER)).plan_balance == Decimal("1000.00")
        assert await plan_service.pending_distributions(session) == []
        assert await retry_referral_distributions(session) == 0


class TestHookArguments:
    async def test_mismatched_user_or_plan_rejected(self, session):
        app = await _submit(session)
        app_id = app.id
        await plan_service.approve_application(session, app_id, actor=ADMIN_ID)

        with pytest.raises(InvalidTransition):
            await plan_service.on_approved(session, app_id, REFERRER, 1000)
        with pytest.raises(InvalidTransition):
            await plan_service.on_approved(session, app_id, USER, 5000)

        assert await ledger_store.history(session, REFERRER) == []
        assert (await ledger_store.snapshot(session, USER)).plan_balance == Decimal("1000.00")
