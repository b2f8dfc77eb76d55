"""Plan tiers and every reward table keyed by them.

Each table is a plain dict over the full enum; `tier_for_amount` is the only
way in from a raw amount and rejects anything that is not a known price point.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum

from hesco.services.errors import UnknownPlanTier


class PlanTier(int, Enum):
    BASIC = 500
    STANDARD = 1000
    PREMIUM = 2000
    ELITE = 5000

    @property
    def price(self) -> int:
        return int(self.value)


class TaskType(str, Enum):
    VIDEO = "video"
    SURVEY = "survey"


TASK_REWARDS: dict[TaskType, dict[PlanTier, Decimal]] = {
    TaskType.VIDEO: {
        PlanTier.BASIC: Decimal("15"),
        PlanTier.STANDARD: Decimal("30"),
        PlanTier.PREMIUM: Decimal("50"),
        PlanTier.ELITE: Decimal("70"),
    },
    TaskType.SURVEY: {
        PlanTier.BASIC: Decimal("10"),
        PlanTier.STANDARD: Decimal("20"),
        PlanTier.PREMIUM: Decimal("25"),
        PlanTier.ELITE: Decimal("30"),
    },
}

# level -> referred user's tier -> commission
REFERRAL_REWARDS: dict[int, dict[PlanTier, Decimal]] = {
    1: {
        PlanTier.BASIC: Decimal("25"),
        PlanTier.STANDARD: Decimal("50"),
        PlanTier.PREMIUM: Decimal("100"),
        PlanTier.ELITE: Decimal("200"),
    },
    2: {
        PlanTier.BASIC: Decimal("15"),
        PlanTier.STANDARD: Decimal("30"),
        PlanTier.PREMIUM: Decimal("75"),
        PlanTier.ELITE: Decimal("150"),
    },
    3: {
        PlanTier.BASIC: Decimal("5"),
        PlanTier.STANDARD: Decimal("15"),
        PlanTier.PREMIUM: Decimal("50"),
        PlanTier.ELITE: Decimal("100"),
    },
}

REFERRAL_LEVELS = tuple(sorted(REFERRAL_REWARDS))

WITHDRAWAL_BASE_CAPS: dict[PlanTier, Decimal] = {
    PlanTier.BASIC: Decimal("125"),
    PlanTier.STANDARD: Decimal("250"),
    PlanTier.PREMIUM: Decimal("325"),
    PlanTier.ELITE: Decimal("500"),
}


def tier_for_amount(amount: int | Decimal | str) -> PlanTier:
    try:
        value = Decimal(str(amount))
    except ArithmeticError:
        raise UnknownPlanTier(f"unknown plan amount: {amount!r}") from None
    if value != value.to_integral_value():
        raise UnknownPlanTier(f"unknown plan amount: {amount!r}")
    try:
        return PlanTier(int(value))
    except (ValueError, OverflowError):
        raise UnknownPlanTier(f"unknown plan amount: {amount!r}") from None


def task_reward(task_type: TaskType | str, tier: PlanTier) -> Decimal:
    return TASK_REWARDS[TaskType(task_type)][tier]


def referral_reward(level: int, tier: PlanTier) -> Decimal:
    return REFERRAL_REWARDS[level][tier]


def withdrawal_base_cap(tier: PlanTier) -> Decimal:
    return WITHDRAWAL_BASE_CAPS[tier]
