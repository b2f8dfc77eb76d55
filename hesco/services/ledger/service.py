from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.time import utcnow
from hesco.db.models import Balance, BalanceTransaction
from hesco.services.errors import DuplicateReference, InsufficientBalance
from hesco.services.ledger.guard import insert_if_absent

log = logging.getLogger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")


class TransactionType(str, Enum):
    PLAN_ACTIVATION = "plan_activation"
    TASK_REWARD = "task_reward"
    REFERRAL_REWARD = "referral_reward"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_REFUND = "withdrawal_refund"
    PLAN_WITHDRAWAL = "plan_withdrawal"
    PLAN_WITHDRAWAL_REFUND = "plan_withdrawal_refund"


@dataclass(frozen=True)
class _Effect:
    bucket: str  # Balance attribute moved by this type
    earns: bool  # also moves total_earned
    debit: bool  # delta must be negative (otherwise positive)


_EFFECTS: dict[TransactionType, _Effect] = {
    TransactionType.PLAN_ACTIVATION: _Effect("plan_balance", earns=True, debit=False),
    TransactionType.TASK_REWARD: _Effect("available_balance", earns=True, debit=False),
    TransactionType.REFERRAL_REWARD: _Effect("available_balance", earns=True, debit=False),
    TransactionType.WITHDRAWAL: _Effect("available_balance", earns=False, debit=True),
    TransactionType.WITHDRAWAL_REFUND: _Effect("available_balance", earns=False, debit=False),
    TransactionType.PLAN_WITHDRAWAL: _Effect("plan_balance", earns=False, debit=True),
    TransactionType.PLAN_WITHDRAWAL_REFUND: _Effect("plan_balance", earns=False, debit=False),
}


def to_money(value: Decimal | int | str) -> Decimal:
    return Decimal(str(value)).quantize(CENTS)


@dataclass
class BalanceSnapshot:
    plan_balance: Decimal = ZERO
    available_balance: Decimal = ZERO
    total_earned: Decimal = ZERO

    def as_tuple(self) -> tuple[Decimal, Decimal, Decimal]:
        return (to_money(self.plan_balance), to_money(self.available_balance), to_money(self.total_earned))


@dataclass
class ReplayReport:
    user_id: int
    replayed: BalanceSnapshot
    stored: BalanceSnapshot
    entries: int
    # ids of lines whose balance_before did not match the running total
    broken_links: list[int]

    @property
    def consistent(self) -> bool:
        return not self.broken_links and self.replayed.as_tuple() == self.stored.as_tuple()


class LedgerStore:
    """Single write path for balances.

    Every mutation is a guarded `UPDATE ... RETURNING` on the user's balance row
    plus one appended `BalanceTransaction`, both inside the caller's database
    transaction. The row-level lock taken by the UPDATE serialises concurrent
    writers for the same user. The caller commits (see `run_atomic`) and must
    roll back on any exception raised here.
    """

    async def _ensure_row(self, session: AsyncSession, user_id: int) -> None:
        now = utcnow()
        stmt = (
            insert_if_absent(session, Balance)
            .values(user_id=user_id, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=[Balance.user_id])
        )
        await session.execute(stmt)

    async def apply(
        self,
        session: AsyncSession,
        user_id: int,
        delta: Decimal,
        tx_type: TransactionType,
        reference_key: str,
        description: str = "",
    ) -> BalanceTransaction:
        effect = _EFFECTS[TransactionType(tx_type)]
        delta = to_money(delta)
        if delta == ZERO:
            raise ValueError("ledger delta must be non-zero")
        if effect.debit != (delta < ZERO):
            raise ValueError(f"{tx_type.value} does not accept delta {delta}")

        existing = await session.scalar(
            select(BalanceTransaction.id).where(BalanceTransaction.reference_key == reference_key).limit(1)
        )
        if existing:
            raise DuplicateReference(reference_key)

        await self._ensure_row(session, user_id)

        bucket = getattr(Balance, effect.bucket)
        values = {effect.bucket: bucket + delta, "updated_at": utcnow()}
        if effect.earns:
            values["total_earned"] = Balance.total_earned + delta

        stmt = update(Balance).where(Balance.user_id == user_id)
        if delta < ZERO:
            stmt = stmt.where(bucket >= -delta)
        stmt = stmt.values(**values).returning(bucket).execution_options(synchronize_session=False)

        after = (await session.execute(stmt)).scalar_one_or_none()
        if after is None:
            log.info(
                "ledger_insufficient_balance",
                extra={"user_id": user_id, "reference_key": reference_key},
            )
            raise InsufficientBalance(f"{effect.bucket} of user {user_id} cannot cover {-delta}")

        after = to_money(after)
        tx = BalanceTransaction(
            user_id=user_id,
            type=tx_type.value,
            amount=delta,
            balance_before=after - delta,
            balance_after=after,
            reference_key=reference_key,
            description=description,
            created_at=utcnow(),
        )
        session.add(tx)
        try:
            await session.flush()
        except IntegrityError:
            # lost a race on reference_key between the check above and the insert
            raise DuplicateReference(reference_key) from None

        log.info(
            "ledger_applied",
            extra={"user_id": user_id, "reference_key": reference_key},
        )
        return tx

    async def get_balance(self, session: AsyncSession, user_id: int) -> Balance | None:
        return await session.get(Balance, user_id, populate_existing=True)

    async def snapshot(self, session: AsyncSession, user_id: int) -> BalanceSnapshot:
        row = await self.get_balance(session, user_id)
        if row is None:
            return BalanceSnapshot()
        return BalanceSnapshot(
            plan_balance=to_money(row.plan_balance),
            available_balance=to_money(row.available_balance),
            total_earned=to_money(row.total_earned),
        )

    async def history(
        self,
        session: AsyncSession,
        user_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BalanceTransaction]:
        q = (
            select(BalanceTransaction)
            .where(BalanceTransaction.user_id == user_id)
            .order_by(BalanceTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list((await session.scalars(q)).all())

    async def replay(self, session: AsyncSession, user_id: int) -> ReplayReport:
        """Rebuild the balance from zero by folding the user's ledger in order."""
        q = (
            select(BalanceTransaction)
            .where(BalanceTransaction.user_id == user_id)
            .order_by(BalanceTransaction.id.asc())
        )
        entries = (await session.scalars(q)).all()

        running = {"plan_balance": ZERO, "available_balance": ZERO, "total_earned": ZERO}
        broken: list[int] = []
        for tx in entries:
            effect = _EFFECTS[TransactionType(tx.type)]
            amount = to_money(tx.amount)
            if to_money(tx.balance_before) != running[effect.bucket]:
                broken.append(tx.id)
            running[effect.bucket] += amount
            if effect.earns:
                running["total_earned"] += amount
            if to_money(tx.balance_after) != running[effect.bucket]:
                broken.append(tx.id)

        return ReplayReport(
            user_id=user_id,
            replayed=BalanceSnapshot(**running),
            stored=await self.snapshot(session, user_id),
            entries=len(entries),
            broken_links=sorted(set(broken)),
        )


ledger_store = LedgerStore()
