from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column

from hesco.core.time import utcnow
from hesco.db.base import Base

MONEY = Numeric(12, 2)


class Balance(Base):
    """Per-user balance snapshot. Written only by the ledger."""

    __tablename__ = "balances"
    __table_args__ = (
        CheckConstraint("plan_balance >= 0", name="ck_balances_plan_non_negative"),
        CheckConstraint("available_balance >= 0", name="ck_balances_available_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_balances_total_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    plan_balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), server_default="0", nullable=False)
    available_balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), server_default="0", nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), server_default="0", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
