from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from hesco.core.time import utcnow
from hesco.db.base import Base
from hesco.db.models.balance import MONEY


class ReferralReward(Base):
    """Commission line paid to one upline member for one referred user."""

    __tablename__ = "referral_rewards"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_id", "level", name="uq_referral_rewards_referrer_referred_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    referrer_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    referred_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    # snapshot of the referred user's plan at approval time
    referred_plan_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    status: Mapped[str] = mapped_column(String(16), server_default="paid", default="paid", nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
