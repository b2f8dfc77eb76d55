from .user import User
from .application import UserApplication
from .balance import Balance
from .balance_transaction import BalanceTransaction
from .idempotency_key import IdempotencyKey
from .task_completion import TaskCompletion
from .referral import Referral
from .referral_reward import ReferralReward
from .withdrawal_request import WithdrawalRequest
from .app_setting import AppSetting

__all__ = [
    "User",
    "UserApplication",
    "Balance",
    "BalanceTransaction",
    "IdempotencyKey",
    "TaskCompletion",
    "Referral",
    "ReferralReward",
    "WithdrawalRequest",
    "AppSetting",
]
