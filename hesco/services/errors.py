from __future__ import annotations


class LedgerError(Exception):
    """Base for every rejection raised by the balance and rewards core."""


class NotFound(LedgerError):
    pass


class UnknownPlanTier(LedgerError):
    pass


class NoActivePlan(LedgerError):
    pass


class AlreadyApplied(LedgerError):
    """Natural key was reserved before. Engines treat this as a no-op success."""


class DuplicateReference(LedgerError):
    pass


class InsufficientBalance(LedgerError):
    pass


class ExceedsMaxWithdrawal(LedgerError):
    pass


class OutsideWithdrawalWindow(LedgerError):
    pass


class InvalidTransition(LedgerError):
    pass
