from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from hesco.core.time import utcnow
from hesco.db.base import Base
from hesco.db.models.balance import MONEY


class WithdrawalRequest(Base):
    """User withdraw request.

    The amount is debited when the request is created. Processed manually by an
    admin; rejection refunds the debit through a separate ledger line.
    """

    __tablename__ = "withdrawal_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    user_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    # client-supplied natural key; a retried request maps onto the same row
    request_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    # part of `amount` drawn from plan_balance (the rest came from available_balance)
    plan_portion: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), server_default="0", nullable=False)

    # M-Pesa number the payout goes to
    destination: Mapped[str] = mapped_column(String(32), nullable=False)

    # pending -> processing -> completed | rejected
    status: Mapped[str] = mapped_column(String(16), server_default="pending", default="pending", nullable=False)

    processed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
