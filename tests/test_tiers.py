from decimal import Decimal

import pytest

from hesco.services.errors import UnknownPlanTier
from hesco.services.plans.tiers import (REFERRAL_LEVELS, PlanTier, TaskType, referral_reward,
                                        task_reward, tier_for_amount, withdrawal_base_cap)
from hesco.services.withdrawals.service import compute_tax, max_withdrawal


class TestTierLookup:
    @pytest.mark.parametrize("amount", [500, 1000, 2000, 5000, "1000", Decimal("2000.00")])
    def test_known_price_points(self, amount):
        assert tier_for_amount(amount).price == int(Decimal(str(amount)))

    @pytest.mark.parametrize("amount", [0, 750, 1000.5, "abc", -500, 10**30])
    def test_unknown_amount_rejected(self, amount):
        with pytest.raises(UnknownPlanTier):
            tier_for_amount(amount)


class TestRewardTables:
    def test_task_rewards(self):
        assert [task_reward(TaskType.VIDEO, t) for t in PlanTier] == [15, 30, 50, 70]
        assert [task_reward("survey", t) for t in PlanTier] == [10, 20, 25, 30]

    def test_referral_rewards_by_level(self):
        assert REFERRAL_LEVELS == (1, 2, 3)
        assert [referral_reward(1, t) for t in PlanTier] == [25, 50, 100, 200]
        assert [referral_reward(2, t) for t in PlanTier] == [15, 30, 75, 150]
        assert [referral_reward(3, t) for t in PlanTier] == [5, 15, 50, 100]

    def test_withdrawal_caps(self):
        assert [withdrawal_base_cap(t) for t in PlanTier] == [125, 250, 325, 500]
        assert max_withdrawal(PlanTier.STANDARD, Decimal("300")) == Decimal("550")


class TestTax:
    def test_fifteen_percent(self):
        quote = compute_tax(Decimal("100"))
        assert quote.tax_amount == Decimal("15.00")
        assert quote.net_amount == Decimal("85.00")

    def test_rounds_half_up_to_cents(self):
        quote = compute_tax(Decimal("33.33"))
        assert quote.tax_amount == Decimal("5.00")
        assert quote.amount == quote.tax_amount + quote.net_amount
