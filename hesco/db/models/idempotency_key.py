from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from hesco.core.time import utcnow
from hesco.db.base import Base


class IdempotencyKey(Base):
    """Reserved natural key. Insert-if-absent is the at-most-once gate."""

    __tablename__ = "idempotency_keys"

    key: Mapped[str] = mapped_column(String(191), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
