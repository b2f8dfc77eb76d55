from __future__ import annotations

from decimal import Decimal

from hesco.services.errors import (ExceedsMaxWithdrawal, InsufficientBalance, InvalidTransition,
                                   LedgerError, NoActivePlan, NotFound, OutsideWithdrawalWindow,
                                   UnknownPlanTier)

CURRENCY = "KES"

_ERROR_TEXT: dict[type[LedgerError], str] = {
    NoActivePlan: "❌ You have no active plan yet. Choose one with /plans.",
    UnknownPlanTier: "❌ Unknown plan. Available plans: /plans",
    InsufficientBalance: "❌ Insufficient balance.",
    ExceedsMaxWithdrawal: "❌ Amount is above your withdrawal limit.",
    OutsideWithdrawalWindow: "❌ Withdrawals are only accepted on the weekly withdrawal day.",
    InvalidTransition: "❌ That status change is not allowed.",
    NotFound: "❌ Not found.",
}


def fmt_money(value: Decimal | int) -> str:
    return f"{CURRENCY} {Decimal(value):,.2f}"


def error_text(exc: Exception) -> str:
    for cls in type(exc).__mro__:
        text = _ERROR_TEXT.get(cls)
        if text:
            detail = str(exc)
            return f"{text}\n{detail}" if detail else text
    return f"❌ {exc}"
