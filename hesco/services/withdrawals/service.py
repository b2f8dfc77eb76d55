from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.config import settings
from hesco.core.time import ensure_tz, next_weekday, utc_today, utcnow
from hesco.db.models import WithdrawalRequest
from hesco.db.session import run_atomic
from hesco.services.errors import (AlreadyApplied, ExceedsMaxWithdrawal, InsufficientBalance,
                                   InvalidTransition, NoActivePlan, NotFound,
                                   OutsideWithdrawalWindow)
from hesco.services.ledger.guard import (idempotency_guard, withdrawal_key, withdrawal_plan_key,
                                         withdrawal_plan_refund_key, withdrawal_refund_key)
from hesco.services.ledger.service import CENTS, ZERO, TransactionType, ledger_store, to_money
from hesco.services.plans.service import plan_service
from hesco.services.plans.tiers import PlanTier, withdrawal_base_cap

log = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
REJECTED = "rejected"

# allowed moves; completed and rejected are terminal
TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({PROCESSING, COMPLETED, REJECTED}),
    PROCESSING: frozenset({COMPLETED, REJECTED}),
    COMPLETED: frozenset(),
    REJECTED: frozenset(),
}


@dataclass(frozen=True)
class WithdrawalQuote:
    amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal


def compute_tax(amount: Decimal, rate: Decimal | None = None) -> WithdrawalQuote:
    rate = settings.withdrawal_tax_rate if rate is None else rate
    amount = to_money(amount)
    tax = (amount * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return WithdrawalQuote(amount=amount, tax_amount=tax, net_amount=amount - tax)


def max_withdrawal(tier: PlanTier, available_balance: Decimal) -> Decimal:
    return withdrawal_base_cap(tier) + to_money(available_balance)


def is_withdrawal_day(now: datetime | None = None, weekday: int | None = None) -> bool:
    weekday = settings.withdrawal_weekday if weekday is None else weekday
    return utc_today(now).weekday() == weekday


def next_withdrawal_date(now: datetime | None = None, weekday: int | None = None) -> date:
    weekday = settings.withdrawal_weekday if weekday is None else weekday
    return next_weekday(utc_today(now), weekday)


class WithdrawalService:
    async def request_withdrawal(
        self,
        session: AsyncSession,
        user_id: int,
        amount: Decimal | int | str,
        destination: str,
        *,
        request_key: str | None = None,
        now: datetime | None = None,
        weekday: int | None = None,
        tax_rate: Decimal | None = None,
    ) -> WithdrawalRequest:
        """Validate, debit and record a withdrawal in one unit.

        The debit takes `available_balance` first and the remainder, up to the
        tier's base cap, from `plan_balance`. Replaying the same `request_key`
        returns the original request without a second debit.
        """
        now = ensure_tz(now or utcnow())
        if not is_withdrawal_day(now, weekday):
            raise OutsideWithdrawalWindow(f"withdrawals open on {next_withdrawal_date(now, weekday).isoformat()}")

        quote = compute_tax(Decimal(str(amount)), tax_rate)
        if quote.amount <= ZERO:
            raise ValueError("withdrawal amount must be positive")
        destination = (destination or "").strip()
        if not destination:
            raise ValueError("withdrawal destination is required")

        tier = await plan_service.plan_tier_for_user(session, user_id)
        if tier is None:
            raise NoActivePlan(f"user {user_id} has no active plan")

        request_key = request_key or uuid4().hex
        key = withdrawal_key(request_key)

        async def work() -> WithdrawalRequest:
            try:
                await idempotency_guard.reserve(session, key)
            except AlreadyApplied:
                existing = await session.scalar(
                    select(WithdrawalRequest).where(WithdrawalRequest.request_key == request_key)
                )
                if existing is None or int(existing.user_id) != int(user_id):
                    raise
                return existing

            snap = await ledger_store.snapshot(session, user_id)
            cap = max_withdrawal(tier, snap.available_balance)
            if quote.amount > cap:
                raise ExceedsMaxWithdrawal(f"maximum withdrawal is {cap}")

            from_available = min(quote.amount, snap.available_balance)
            from_plan = quote.amount - from_available
            if from_plan > snap.plan_balance:
                raise InsufficientBalance(f"balance cannot cover {quote.amount}")

            if from_available > ZERO:
                await ledger_store.apply(
                    session,
                    user_id,
                    -from_available,
                    TransactionType.WITHDRAWAL,
                    key,
                    f"Withdrawal to {destination}",
                )
            if from_plan > ZERO:
                await ledger_store.apply(
                    session,
                    user_id,
                    -from_plan,
                    TransactionType.PLAN_WITHDRAWAL,
                    withdrawal_plan_key(request_key),
                    f"Withdrawal to {destination} (plan allowance)",
                )

            req = WithdrawalRequest(
                user_id=user_id,
                request_key=request_key,
                amount=quote.amount,
                tax_amount=quote.tax_amount,
                net_amount=quote.net_amount,
                plan_portion=from_plan,
                destination=destination,
                status=PENDING,
                created_at=now,
                updated_at=now,
            )
            session.add(req)
            await session.flush()
            return req

        req = await run_atomic(session, work)
        log.info("withdrawal_requested", extra={"user_id": user_id, "request_id": req.id})
        return req

    async def update_status(
        self,
        session: AsyncSession,
        request_id: int,
        new_status: str,
        *,
        actor: int,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> WithdrawalRequest:
        """Admin transition. Rejection refunds the debit with its own ledger lines."""
        new_status = (new_status or "").strip().lower()
        if new_status not in TRANSITIONS:
            raise InvalidTransition(f"unknown withdrawal status {new_status!r}")

        async def work() -> WithdrawalRequest:
            q = (
                select(WithdrawalRequest)
                .where(WithdrawalRequest.id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            req = await session.scalar(q)
            if not req:
                raise NotFound(f"withdrawal request {request_id} not found")

            if req.status == new_status:
                # retried admin action
                return req
            if new_status not in TRANSITIONS[req.status]:
                raise InvalidTransition(f"{req.status} -> {new_status}")

            if new_status == REJECTED:
                await self._refund(session, req)

            ts = now or utcnow()
            req.status = new_status
            req.processed_by = actor
            req.processed_at = ts
            req.updated_at = ts
            if notes is not None:
                req.notes = notes.strip() or None
            await session.flush()
            return req

        req = await run_atomic(session, work)
        log.info(
            "withdrawal_status_updated",
            extra={"request_id": req.id, "user_id": req.user_id, "tg_id": actor},
        )
        return req

    async def _refund(self, session: AsyncSession, req: WithdrawalRequest) -> None:
        key = withdrawal_refund_key(req.id)
        try:
            await idempotency_guard.reserve(session, key)
        except AlreadyApplied:
            return

        plan_portion = to_money(req.plan_portion)
        available_portion = to_money(req.amount) - plan_portion
        if available_portion > ZERO:
            await ledger_store.apply(
                session,
                req.user_id,
                available_portion,
                TransactionType.WITHDRAWAL_REFUND,
                key,
                f"Refund of rejected withdrawal #{req.id}",
            )
        if plan_portion > ZERO:
            await ledger_store.apply(
                session,
                req.user_id,
                plan_portion,
                TransactionType.PLAN_WITHDRAWAL_REFUND,
                withdrawal_plan_refund_key(req.id),
                f"Refund of rejected withdrawal #{req.id} (plan allowance)",
            )

    async def get_request(self, session: AsyncSession, request_id: int) -> WithdrawalRequest:
        req = await session.get(WithdrawalRequest, request_id, populate_existing=True)
        if not req:
            raise NotFound(f"withdrawal request {request_id} not found")
        return req

    async def list_requests(
        self,
        session: AsyncSession,
        *,
        user_id: int | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[WithdrawalRequest]:
        q = select(WithdrawalRequest)
        if user_id is not None:
            q = q.where(WithdrawalRequest.user_id == user_id)
        if status:
            q = q.where(WithdrawalRequest.status == status)
        q = q.order_by(WithdrawalRequest.id.desc()).limit(limit)
        return list((await session.scalars(q)).all())


withdrawal_service = WithdrawalService()
