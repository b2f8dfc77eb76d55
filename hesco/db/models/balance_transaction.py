from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from hesco.core.time import utcnow
from hesco.db.base import Base
from hesco.db.models.balance import MONEY


class BalanceTransaction(Base):
    """Append-only ledger line.

    balance_before/balance_after describe the bucket the transaction type moves
    (plan_balance for plan activations, available_balance for everything else).
    Rows are never updated or deleted.
    """

    __tablename__ = "balance_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    reference_key: Mapped[str] = mapped_column(String(191), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, server_default="", default="", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
