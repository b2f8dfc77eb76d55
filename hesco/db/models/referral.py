from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from hesco.core.time import utcnow
from hesco.db.base import Base


class Referral(Base):
    """Referral edge.

    Created once when the referred user signs up with a code. Level 2 and 3
    edges are copied from the referrer's own chain at that moment and never
    recomputed.
    """

    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referred_id", "level", name="uq_referrals_referred_level"),
        CheckConstraint("level BETWEEN 1 AND 3", name="ck_referrals_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    referrer_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    referred_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(16), server_default="active", default="active", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
