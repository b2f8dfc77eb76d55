from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from hesco.core.time import utcnow
from hesco.db.base import Base


class UserApplication(Base):
    """Subscription application backed by a pasted M-Pesa confirmation message.

    pending -> approved | rejected; a rejected application may be approved later.
    """

    __tablename__ = "user_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)

    plan_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    mpesa_number: Mapped[str] = mapped_column(String(32), nullable=False)
    mpesa_message: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(16), server_default="pending", default="pending", nullable=False)
    reviewed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # set once every referral level has been settled; the retry job scans for NULL
    referrals_distributed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
